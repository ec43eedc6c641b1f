from __future__ import annotations

"""
qfund.version: semantic version string with optional git-describe suffix.

Rules:
- BASE_VERSION is the semver for this package.
- If QFUND_VERSION is set in the environment, that wins.
- If we're inside a git repo, append a PEP440-compatible local suffix derived
  from `git describe --tags --dirty --always --abbrev=7`, e.g.:
    0.1.0+v0.1.0.3.gabc1234          (3 commits after tag, clean)
    0.1.0+gabc1234.dirty             (no tag, dirty tree)
- If git is unavailable, fall back to BASE_VERSION.
"""


import os
import re
import subprocess
from typing import Optional

# Bump this on intentional releases.
BASE_VERSION = "0.1.0"


def _git_describe() -> Optional[str]:
    try:
        out = subprocess.check_output(
            ["git", "describe", "--tags", "--dirty", "--always", "--abbrev=7"],
            stderr=subprocess.DEVNULL,
            cwd=os.path.dirname(os.path.abspath(__file__)),
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.decode("utf-8", "replace").strip() or None


_PEP440_LOCAL_CLEAN = re.compile(r"[^a-zA-Z0-9.]+")


def _pep440_local_from_describe(desc: str) -> str:
    """
    Convert a `git describe` string to a safe PEP440 local version suffix:
    '-' and '+' become '.', a leading 'v' before a digit is dropped, anything
    else outside [a-zA-Z0-9.] collapses to '.'.
    """
    s = desc.replace("-", ".").replace("+", ".")
    if s.startswith("v") and len(s) > 1 and s[1].isdigit():
        s = s[1:]
    s = _PEP440_LOCAL_CLEAN.sub(".", s)
    s = re.sub(r"\.{2,}", ".", s).strip(".")
    if not s.lower().startswith(("git.", "g")):
        s = f"git.{s}"
    return s


def build_version() -> str:
    v = os.getenv("QFUND_VERSION")
    if v:
        return v
    desc = _git_describe()
    if not desc:
        return BASE_VERSION
    return f"{BASE_VERSION}+{_pep440_local_from_describe(desc)}"


__version__ = build_version()


__all__ = ["__version__", "BASE_VERSION", "build_version"]
