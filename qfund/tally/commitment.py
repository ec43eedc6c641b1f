from __future__ import annotations

"""
Tally commitment: batch accumulation and sealing
------------------------------------------------

A round's tally arrives from upstream in batches of contiguous recipient
indices. `TallyCommitment` owns a dense arena of `2**tree_depth` slots for
per-recipient spent voice credits and quadratic vote tallies, accepts batches
into it, and is sealed once every slot is written:

    Open --seal()--> Sealed        (terminal, read-only)

Batch rules
~~~~~~~~~~~
- A batch that rewrites written slots with identical values and writes nothing
  new is an idempotent resubmission: accepted silently, no state change.
- A batch that writes any written slot with a *different* value is rejected
  with `InconsistentBatch`.
- A batch that overlaps written slots (identically) while also writing new
  ones is rejected with `DuplicateBatch`; the uploader's batch boundaries have
  drifted and the caller should resubmit the exact remainder.

Sealing fixes `total_spent` and its salt, then derives a digest over the whole
commitment so the sealed arena can be compared against a published value.

Concurrency: a `threading.RLock` (shared with the owning round when given)
serialises `accumulate_batch` and `seal`. Reads after sealing take no lock,
since nothing can change once sealed.
"""

import hashlib
import json
import logging
from threading import RLock
from typing import List, Optional, Sequence, Tuple

from qfund import metrics
from qfund.errors import (AlreadySealed, CommitmentMismatch, DuplicateBatch, IncompleteTally,
                          InconsistentBatch, IndexOutOfRange, MalformedBatch, NotSealed)

log = logging.getLogger(__name__)

DOMAIN_TALLY_COMMITMENT = b"QFUND/tally-commitment/v1"


def _domain_separated_hash(domain: bytes, payload: bytes) -> bytes:
    # H = SHA3-256( len(domain)||domain || payload )
    dl = len(domain).to_bytes(4, "big")
    return hashlib.sha3_256(dl + domain + payload).digest()


def commitment_digest(
    tree_depth: int,
    spent: Sequence[int],
    tally: Sequence[int],
    total_spent: int,
    salt: int,
) -> str:
    """Hex digest over the canonical JSON encoding of a complete commitment."""
    body = {
        "tree_depth": int(tree_depth),
        "spent": [str(int(v)) for v in spent],
        "tally": [str(int(v)) for v in tally],
        "total_spent": str(int(total_spent)),
        "salt": str(int(salt)),
    }
    payload = json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return _domain_separated_hash(DOMAIN_TALLY_COMMITMENT, payload).hex()


def _check_values(name: str, values: Sequence[int]) -> Tuple[int, ...]:
    out = []
    for i, v in enumerate(values):
        if isinstance(v, bool) or not isinstance(v, int):
            raise MalformedBatch(f"{name}[{i}] must be int, got {type(v).__name__}")
        if v < 0:
            raise MalformedBatch(f"{name}[{i}] must be non-negative, got {v}")
        out.append(v)
    return tuple(out)


class TallyCommitment:
    """Arena of per-recipient tally results for one round."""

    def __init__(self, tree_depth: int, *, round_id: str = "-", lock: Optional[RLock] = None) -> None:
        if tree_depth < 0:
            raise ValueError(f"tree_depth must be >= 0, got {tree_depth}")
        self.tree_depth = tree_depth
        self.capacity = 1 << tree_depth
        self.round_id = round_id
        self._spent: List[Optional[int]] = [None] * self.capacity
        self._tally: List[Optional[int]] = [None] * self.capacity
        self._batches: List[Tuple[int, int]] = []
        self._lock = lock or RLock()
        self._sealed = False
        self._total_spent: Optional[int] = None
        self._total_spent_salt: Optional[int] = None
        self._digest: Optional[str] = None

    # --- introspection ---

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def batches(self) -> Tuple[Tuple[int, int], ...]:
        """(start, size) of every applied batch, in arrival order."""
        return tuple(self._batches)

    def written_count(self) -> int:
        with self._lock:
            return sum(1 for v in self._spent if v is not None)

    def missing_indices(self) -> List[int]:
        with self._lock:
            return [i for i, v in enumerate(self._spent) if v is None]

    # --- mutations ---

    def accumulate_batch(
        self,
        batch_index_start: int,
        per_recipient_spent: Sequence[int],
        per_recipient_quadratic_votes: Sequence[int],
    ) -> bool:
        """
        Write a batch into the arena. Returns True if applied, False for an
        idempotent resubmission.
        """
        with self._lock:
            if self._sealed:
                metrics.record_batch("sealed")
                raise AlreadySealed("tally commitment is sealed", details={"round": self.round_id})
            if isinstance(batch_index_start, bool) or not isinstance(batch_index_start, int):
                raise MalformedBatch("batch start must be int")
            if batch_index_start < 0:
                raise IndexOutOfRange(index=batch_index_start, capacity=self.capacity)
            spent = _check_values("spent", per_recipient_spent)
            votes = _check_values("tally", per_recipient_quadratic_votes)
            if len(spent) != len(votes):
                raise MalformedBatch(
                    "spent and tally batches differ in length",
                    details={"spent": len(spent), "tally": len(votes), "start": batch_index_start},
                )
            if not spent:
                raise MalformedBatch("empty batch", details={"start": batch_index_start})

            n = len(spent)
            end = batch_index_start + n
            if end > self.capacity:
                metrics.record_batch("out_of_range")
                raise IndexOutOfRange(
                    index=end - 1,
                    capacity=self.capacity,
                    details={"start": batch_index_start, "size": n},
                )

            written: List[int] = []
            conflicting: List[int] = []
            for off in range(n):
                i = batch_index_start + off
                if self._spent[i] is None:
                    continue
                written.append(i)
                if self._spent[i] != spent[off] or self._tally[i] != votes[off]:
                    conflicting.append(i)

            if conflicting:
                metrics.record_batch("inconsistent")
                log.warning("tally: inconsistent batch round=%s start=%d indices=%s",
                            self.round_id, batch_index_start, conflicting[:8])
                raise InconsistentBatch("batch rewrites written indices with different values",
                                        indices=conflicting, details={"start": batch_index_start})
            if written and len(written) == n:
                metrics.record_batch("resubmitted")
                log.debug("tally: idempotent resubmission round=%s start=%d size=%d",
                          self.round_id, batch_index_start, n)
                return False
            if written:
                metrics.record_batch("duplicate")
                raise DuplicateBatch(indices=written, details={"start": batch_index_start, "size": n})

            self._spent[batch_index_start:end] = spent
            self._tally[batch_index_start:end] = votes
            self._batches.append((batch_index_start, n))
            metrics.record_batch("accepted")
            log.debug("tally: batch accepted round=%s start=%d size=%d", self.round_id, batch_index_start, n)
            return True

    def seal(self, total_spent: int, total_spent_salt: int, *, expected_digest: Optional[str] = None) -> str:
        """
        Freeze the commitment. Returns the commitment digest (hex).
        On any failure the commitment stays open.
        """
        if isinstance(total_spent, bool) or not isinstance(total_spent, int) or total_spent < 0:
            raise MalformedBatch(f"total_spent must be a non-negative int, got {total_spent!r}")
        if isinstance(total_spent_salt, bool) or not isinstance(total_spent_salt, int):
            raise MalformedBatch(f"total_spent_salt must be int, got {type(total_spent_salt).__name__}")
        with self._lock:
            if self._sealed:
                raise AlreadySealed("tally commitment is already sealed", details={"round": self.round_id})
            missing = [i for i, v in enumerate(self._spent) if v is None]
            if missing:
                raise IncompleteTally(missing=missing, capacity=self.capacity)

            digest = commitment_digest(self.tree_depth, self._spent, self._tally,  # type: ignore[arg-type]
                                       total_spent, total_spent_salt)
            if expected_digest is not None and expected_digest.lower().removeprefix("0x") != digest:
                raise CommitmentMismatch(
                    "sealed tally does not match the published digest",
                    details={"expected": expected_digest, "actual": digest},
                )

            self._total_spent = total_spent
            self._total_spent_salt = total_spent_salt
            self._digest = digest
            self._sealed = True
            metrics.record_seal()
            log.info("tally: sealed round=%s capacity=%d total_spent=%d digest=%s",
                     self.round_id, self.capacity, total_spent, digest[:16])
            return digest

    # --- sealed reads (lock-free) ---

    def _require_sealed(self) -> None:
        if not self._sealed:
            raise NotSealed("tally commitment is not sealed", details={"round": self.round_id})

    def get_recipient_data(self, index: int) -> Tuple[int, int]:
        """(spent, quadratic_votes) for `index`."""
        self._require_sealed()
        if isinstance(index, bool) or not isinstance(index, int) or not (0 <= index < self.capacity):
            raise IndexOutOfRange(index=index if isinstance(index, int) else -1, capacity=self.capacity)
        return self._spent[index], self._tally[index]  # type: ignore[return-value]

    @property
    def spent(self) -> Tuple[int, ...]:
        self._require_sealed()
        return tuple(self._spent)  # type: ignore[arg-type]

    @property
    def tally(self) -> Tuple[int, ...]:
        self._require_sealed()
        return tuple(self._tally)  # type: ignore[arg-type]

    @property
    def total_spent(self) -> int:
        self._require_sealed()
        return self._total_spent  # type: ignore[return-value]

    @property
    def total_spent_salt(self) -> int:
        self._require_sealed()
        return self._total_spent_salt  # type: ignore[return-value]

    @property
    def digest(self) -> str:
        self._require_sealed()
        return self._digest  # type: ignore[return-value]

    def sum_spent(self) -> int:
        return sum(self.spent)

    def total_quadratic_votes(self) -> int:
        return sum(t * t for t in self.tally)

    def snapshot(self) -> dict:
        with self._lock:
            d = {
                "round": self.round_id,
                "tree_depth": self.tree_depth,
                "capacity": self.capacity,
                "sealed": self._sealed,
                "written": sum(1 for v in self._spent if v is not None),
                "batches": len(self._batches),
            }
            if self._sealed:
                d.update({"total_spent": self._total_spent, "digest": self._digest})
            return d


__all__ = ["DOMAIN_TALLY_COMMITMENT", "commitment_digest", "TallyCommitment"]
