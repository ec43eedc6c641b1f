from __future__ import annotations
"""
qfund.config: configuration for quadratic-funding round settlement

Covers:
- Fixed-point precision for alpha (default 1e18)
- Voice-credit factor: settlement-asset units per voice credit
- Tally tree depth (recipient capacity is 2**tree_depth)
- Policies for the two degenerate alpha cases
- Finalize-time consistency checks and tally ingestion batch size

Environment overrides (all optional; sensible defaults provided):

  QFUND_PRECISION=1000000000000000000
  QFUND_VOICE_CREDIT_FACTOR=1
  QFUND_TREE_DEPTH=2
  QFUND_ALPHA_OVERFLOW=reject        # reject | clamp
  QFUND_ZERO_BOOST=reject            # reject | zero
  QFUND_VERIFY_TOTALS=0
  QFUND_REQUIRE_TALLY_HASH=0
  QFUND_BATCH_SIZE=3

You can also load from a JSON or YAML file via `QFUND_CONFIG_FILE=/path/to/config.(json|yaml|yml)`.
File values override defaults; environment overrides the file.
"""


from dataclasses import dataclass, asdict, fields, replace
from typing import Any, Dict, Optional
import json
import os
from pathlib import Path

import yaml


OVERFLOW_POLICIES = ("reject", "clamp")
ZERO_BOOST_POLICIES = ("reject", "zero")

DEFAULT_PRECISION = 10**18


@dataclass(frozen=True)
class RoundConfig:
    """Per-round settlement parameters. Frozen for the lifetime of a round."""
    precision: int = DEFAULT_PRECISION
    voice_credit_factor: int = 1
    tree_depth: int = 2
    alpha_overflow: str = "reject"
    zero_boost: str = "reject"
    verify_totals: bool = False
    require_tally_hash: bool = False
    batch_size: int = 3

    @property
    def capacity(self) -> int:
        return 1 << self.tree_depth

    def validate(self) -> None:
        if self.precision <= 0:
            raise ValueError(f"precision must be positive (got {self.precision}).")
        if self.voice_credit_factor <= 0:
            raise ValueError(f"voice_credit_factor must be positive (got {self.voice_credit_factor}).")
        if not (0 <= self.tree_depth <= 20):
            raise ValueError(f"tree_depth must be between 0 and 20 (got {self.tree_depth}).")
        if self.alpha_overflow not in OVERFLOW_POLICIES:
            raise ValueError(f"alpha_overflow must be one of {OVERFLOW_POLICIES} (got {self.alpha_overflow!r}).")
        if self.zero_boost not in ZERO_BOOST_POLICIES:
            raise ValueError(f"zero_boost must be one of {ZERO_BOOST_POLICIES} (got {self.zero_boost!r}).")
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive (got {self.batch_size}).")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# -------------------------- Loaders --------------------------


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(str(v).replace("_", ""))
    except ValueError as e:
        raise ValueError(f"Invalid int for {name}: {v!r}") from e


def _getenv_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    s = v.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid bool for {name}: {v!r}")


def _getenv_choice(name: str, default: str, choices: tuple) -> str:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    s = v.strip().lower()
    if s not in choices:
        raise ValueError(f"{name} must be one of {choices} (got {v!r}).")
    return s


def from_env(base: Optional[RoundConfig] = None, prefix: str = "QFUND_") -> RoundConfig:
    """
    Build a RoundConfig from environment variables, optionally layering on top of `base`.
    """
    cfg = base or RoundConfig()
    new_cfg = RoundConfig(
        precision=_getenv_int(f"{prefix}PRECISION", cfg.precision),
        voice_credit_factor=_getenv_int(f"{prefix}VOICE_CREDIT_FACTOR", cfg.voice_credit_factor),
        tree_depth=_getenv_int(f"{prefix}TREE_DEPTH", cfg.tree_depth),
        alpha_overflow=_getenv_choice(f"{prefix}ALPHA_OVERFLOW", cfg.alpha_overflow, OVERFLOW_POLICIES),
        zero_boost=_getenv_choice(f"{prefix}ZERO_BOOST", cfg.zero_boost, ZERO_BOOST_POLICIES),
        verify_totals=_getenv_bool(f"{prefix}VERIFY_TOTALS", cfg.verify_totals),
        require_tally_hash=_getenv_bool(f"{prefix}REQUIRE_TALLY_HASH", cfg.require_tally_hash),
        batch_size=_getenv_int(f"{prefix}BATCH_SIZE", cfg.batch_size),
    )
    new_cfg.validate()
    return new_cfg


def from_file(path: str | os.PathLike[str]) -> RoundConfig:
    """
    Load configuration from a JSON or YAML file. Unknown keys are rejected.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)

    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text or "{}")
    if not isinstance(data, dict):
        raise ValueError(f"config file {p} must contain a mapping")

    known = {f.name: f.default for f in fields(RoundConfig)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"unknown config keys in {p}: {unknown}")
    for key, value in data.items():
        want = type(known[key])
        # bool is an int subclass; neither may stand in for the other.
        if type(value) is not want:
            raise ValueError(f"config key {key!r} in {p} must be {want.__name__} (got {value!r}).")

    cfg = replace(RoundConfig(), **data)
    cfg.validate()
    return cfg


def load() -> RoundConfig:
    """
    Load configuration using the following precedence:
      1) File at $QFUND_CONFIG_FILE (JSON/YAML)
      2) Environment variables (QFUND_*), applied on top of defaults or file values
    """
    file_path = os.getenv("QFUND_CONFIG_FILE")
    base = from_file(file_path) if file_path else RoundConfig()
    return from_env(base=base)


def pretty(cfg: Optional[RoundConfig] = None) -> str:
    """Return a human-readable JSON string of the current config."""
    obj = (cfg or load()).to_dict()
    return json.dumps(obj, indent=2, sort_keys=True)


__all__ = [
    "OVERFLOW_POLICIES",
    "ZERO_BOOST_POLICIES",
    "DEFAULT_PRECISION",
    "RoundConfig",
    "from_env",
    "from_file",
    "load",
    "pretty",
]
