from __future__ import annotations

"""
Typed tally documents.

The upstream tallying process publishes a JSON document shaped like

    {
      "results":                       {"tally": ["10", "20", ...]},
      "totalVoiceCredits":             {"spent": "335", "salt": "0x..."},
      "totalVoiceCreditsPerVoteOption": {"tally": ["60", "250", ...]}
    }

(numbers may be JSON ints or decimal/hex strings; other keys such as
commitments or salts for the per-option arrays are ignored). We validate that
shape exactly once, at ingestion, and hand around a frozen `TallyRecord`
afterwards. Anything malformed is a `MalformedTally` input error.
"""


from dataclasses import dataclass
import json
import os
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple

from qfund.errors import MalformedTally
from qfund.tally.commitment import commitment_digest


def _as_int(value: Any, where: str) -> int:
    if isinstance(value, bool):
        raise MalformedTally(f"{where}: boolean is not a number")
    if isinstance(value, int):
        n = value
    elif isinstance(value, str):
        s = value.strip()
        try:
            n = int(s, 16) if s.lower().startswith("0x") else int(s, 10)
        except ValueError as e:
            raise MalformedTally(f"{where}: not an integer string: {value!r}") from e
    else:
        raise MalformedTally(f"{where}: expected int or numeric string, got {type(value).__name__}")
    if n < 0:
        raise MalformedTally(f"{where}: negative value {n}")
    return n


def _section(doc: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    sec = doc.get(key)
    if not isinstance(sec, Mapping):
        raise MalformedTally(f"missing or non-object section {key!r}")
    return sec


def _int_list(sec: Mapping[str, Any], key: str, where: str) -> Tuple[int, ...]:
    raw = sec.get(key)
    if not isinstance(raw, (list, tuple)):
        raise MalformedTally(f"{where}.{key} must be a list")
    return tuple(_as_int(v, f"{where}.{key}[{i}]") for i, v in enumerate(raw))


@dataclass(frozen=True)
class TallyBatch:
    """A contiguous slice of the per-recipient arrays starting at `start`."""
    start: int
    spent: Tuple[int, ...]
    tally: Tuple[int, ...]

    def __len__(self) -> int:
        return len(self.spent)


@dataclass(frozen=True)
class TallyRecord:
    tally: Tuple[int, ...]
    spent: Tuple[int, ...]
    total_spent: int
    salt: int

    def __post_init__(self) -> None:
        if len(self.tally) != len(self.spent):
            raise MalformedTally(
                "per-recipient arrays differ in length",
                details={"tally": len(self.tally), "spent": len(self.spent)},
            )

    @property
    def size(self) -> int:
        return len(self.tally)

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> "TallyRecord":
        if not isinstance(doc, Mapping):
            raise MalformedTally(f"tally document must be an object, got {type(doc).__name__}")
        results = _section(doc, "results")
        totals = _section(doc, "totalVoiceCredits")
        per_option = _section(doc, "totalVoiceCreditsPerVoteOption")
        if "spent" not in totals:
            raise MalformedTally("totalVoiceCredits.spent is missing")
        return cls(
            tally=_int_list(results, "tally", "results"),
            spent=_int_list(per_option, "tally", "totalVoiceCreditsPerVoteOption"),
            total_spent=_as_int(totals["spent"], "totalVoiceCredits.spent"),
            salt=_as_int(totals.get("salt", 0), "totalVoiceCredits.salt"),
        )

    def to_dict(self) -> dict:
        return {
            "results": {"tally": [str(t) for t in self.tally]},
            "totalVoiceCredits": {"spent": str(self.total_spent), "salt": hex(self.salt)},
            "totalVoiceCreditsPerVoteOption": {"tally": [str(s) for s in self.spent]},
        }

    def tree_depth(self) -> int:
        """Smallest depth whose capacity (2**depth) holds every recipient."""
        return max(self.size - 1, 0).bit_length()

    def pad_to(self, tree_depth: int) -> "TallyRecord":
        """Zero-fill the arrays up to 2**tree_depth entries."""
        cap = 1 << tree_depth
        if self.size > cap:
            raise MalformedTally(
                "tally has more recipients than the tree can hold",
                details={"size": self.size, "capacity": cap},
            )
        pad = (0,) * (cap - self.size)
        return TallyRecord(tally=self.tally + pad, spent=self.spent + pad,
                           total_spent=self.total_spent, salt=self.salt)

    def batches(self, batch_size: int) -> Iterator[TallyBatch]:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        for start in range(0, self.size, batch_size):
            end = start + batch_size
            yield TallyBatch(start=start, spent=self.spent[start:end], tally=self.tally[start:end])

    def digest(self, tree_depth: Optional[int] = None) -> str:
        depth = self.tree_depth() if tree_depth is None else tree_depth
        rec = self.pad_to(depth)
        return commitment_digest(depth, rec.spent, rec.tally, rec.total_spent, rec.salt)


def load_tally(path: str | os.PathLike[str]) -> TallyRecord:
    """Read and validate a tally JSON file."""
    p = Path(path)
    try:
        doc = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise MalformedTally(f"{p}: invalid JSON ({e.msg} at line {e.lineno})") from e
    except UnicodeDecodeError as e:
        raise MalformedTally(f"{p}: not UTF-8 text (byte {e.start})") from e
    return TallyRecord.from_dict(doc)


def split_batches(spent: Sequence[int], tally: Sequence[int], batch_size: int) -> List[TallyBatch]:
    """Batch raw arrays without building a full record (totals unknown yet)."""
    rec = TallyRecord(tally=tuple(tally), spent=tuple(spent), total_spent=0, salt=0)
    return list(rec.batches(batch_size))


__all__ = ["TallyBatch", "TallyRecord", "load_tally", "split_batches"]
