from __future__ import annotations
"""
qfund - quadratic-funding round settlement.

Turns an upstream-attested tally into a sealed commitment, computes the
alpha-capped quadratic allocation of a fixed matching budget, and pays each
recipient once (claim) and converts each claim once (redemption).

Public surface (lazily loaded):
- config, errors, metrics, version
- economics, tally, ledger, round, adapters, qtypes, cli
"""


from typing import List

from .version import __version__

__all__: List[str] = [
    "__version__",
    # lazily importable subpackages/modules
    "config",
    "errors",
    "metrics",
    "economics",
    "tally",
    "ledger",
    "round",
    "adapters",
    "qtypes",
    "cli",
]

# --- Lazy module loader (PEP 562) -------------------------------------------------
import importlib


_lazy_modules = set(__all__) - {"__version__"}


def __getattr__(name: str):
    if name in _lazy_modules:
        return importlib.import_module(f".{name}", __name__)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(set(globals().keys()) | _lazy_modules)


def get_version() -> str:
    """Return the qfund package version string."""
    return __version__
