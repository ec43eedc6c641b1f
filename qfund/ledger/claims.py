from __future__ import annotations

"""
Claim ledger: exactly-once payout per recipient index
-----------------------------------------------------

Each recipient index of a finalized round may take its allocation out of the
pooled funds once. The ledger keeps one `ClaimRecord` per index, created
lazily on the first claim attempt.

Ordering inside `claim()` (all under the round lock):

  1) conflicts:   CLAIMED -> AlreadyClaimed, PENDING -> ClaimPending
  2) authorize:   registry says the index is live and `claimant` owns it
  3) compute:     allocation via the caller-supplied function
  4) budget:      total disbursed + amount must stay within the frozen budget
  5) reserve:     record -> PENDING
  6) transfer:    pool.transfer(claimant, amount)
  7) complete:    record -> CLAIMED, emit FundsClaimed

A refused or raising transfer rolls step 5 back to UNCLAIMED and raises
`TransferFailure`; nothing has moved, so the caller may retry the same claim.
Steps 1-4 never mutate anything.
"""

import logging
from threading import RLock
from typing import Callable, Dict, Optional, Tuple

from qfund import metrics
from qfund.adapters.ledger import SettlementAsset
from qfund.adapters.registry import RecipientRegistry
from qfund.errors import (AlreadyClaimed, BudgetExhausted, ClaimPending, InputError,
                          InvalidRecipient, StateError, TransferFailure, UnauthorizedClaimant)
from qfund.qtypes.events import EventSink, FundsClaimed, discard
from qfund.qtypes.records import ClaimRecord, ClaimStatus

log = logging.getLogger(__name__)

AllocationFn = Callable[[int], int]


class ClaimLedger:
    def __init__(
        self,
        registry: RecipientRegistry,
        pool: SettlementAsset,
        *,
        budget: Optional[int] = None,
        lock: Optional[RLock] = None,
        emit: EventSink = discard,
        round_id: str = "-",
    ) -> None:
        self._registry = registry
        self._pool = pool
        self._budget = budget
        self._lock = lock or RLock()
        self._emit = emit
        self.round_id = round_id
        self._records: Dict[int, ClaimRecord] = {}
        self._disbursed = 0

    # --- budget ---

    @property
    def budget(self) -> Optional[int]:
        return self._budget

    def set_budget(self, budget: int) -> None:
        """Freeze the payout ceiling. Allowed once, before any claim."""
        if isinstance(budget, bool) or not isinstance(budget, int) or budget < 0:
            raise InputError(f"budget must be a non-negative int, got {budget!r}")
        with self._lock:
            if self._budget is not None:
                raise StateError("claim budget already frozen",
                                 details={"round": self.round_id, "budget": self._budget})
            self._budget = budget

    @property
    def total_disbursed(self) -> int:
        with self._lock:
            return self._disbursed

    # --- reads ---

    def get_record(self, recipient_index: int) -> Optional[ClaimRecord]:
        with self._lock:
            return self._records.get(recipient_index)

    def is_claimed(self, recipient_index: int) -> bool:
        rec = self.get_record(recipient_index)
        return rec is not None and rec.claimed

    def records(self) -> Tuple[ClaimRecord, ...]:
        with self._lock:
            return tuple(self._records[k] for k in sorted(self._records))

    # --- claim ---

    def claim(self, recipient_index: int, claimant: str, compute_allocation_fn: AllocationFn) -> int:
        """Pay `recipient_index`'s allocation to `claimant` exactly once. Returns the amount."""
        with self._lock:
            rec = self._records.get(recipient_index)
            if rec is not None and rec.status is ClaimStatus.CLAIMED:
                metrics.record_claim("conflict")
                raise AlreadyClaimed(
                    recipient_index=recipient_index,
                    details={"claimant": rec.claimant, "amount": rec.amount},
                )
            if rec is not None and rec.status is ClaimStatus.PENDING:
                metrics.record_claim("conflict")
                raise ClaimPending(recipient_index=recipient_index)

            if not self._registry.is_valid_recipient(recipient_index):
                metrics.record_claim("rejected")
                raise InvalidRecipient(recipient_index=recipient_index)
            owner = self._registry.get_owner(recipient_index)
            if owner != claimant:
                metrics.record_claim("rejected")
                raise UnauthorizedClaimant(recipient_index=recipient_index, claimant=claimant, owner=owner)

            amount = compute_allocation_fn(recipient_index)
            if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
                raise InputError(f"allocation must be a non-negative int, got {amount!r}",
                                 details={"recipient_index": recipient_index})
            if self._budget is not None and self._disbursed + amount > self._budget:
                metrics.record_claim("rejected")
                raise BudgetExhausted(
                    "claim would exceed the round budget",
                    details={
                        "recipient_index": recipient_index,
                        "amount": amount,
                        "disbursed": self._disbursed,
                        "budget": self._budget,
                    },
                )

            attempts = rec.attempts + 1 if rec is not None else 1
            self._records[recipient_index] = ClaimRecord(
                recipient_index=recipient_index,
                claimant=claimant,
                amount=amount,
                status=ClaimStatus.PENDING,
                attempts=attempts,
            )

            cause: Optional[Exception] = None
            try:
                ok = self._pool.transfer(claimant, amount)
            except Exception as e:  # collaborator failure is a retryable outcome
                ok, cause = False, e
            if not ok:
                self._records[recipient_index] = self._records[recipient_index].with_status(ClaimStatus.UNCLAIMED)
                metrics.record_claim("transfer_failed")
                metrics.record_transfer_failure("claim")
                log.warning("claims: transfer failed round=%s index=%d claimant=%s amount=%d attempt=%d",
                            self.round_id, recipient_index, claimant, amount, attempts)
                raise TransferFailure(
                    "pool transfer failed; claim left unclaimed",
                    recipient_index=recipient_index,
                    to=claimant,
                    amount=amount,
                    details={"status": ClaimStatus.UNCLAIMED.value, "attempts": attempts},
                ) from cause

            self._records[recipient_index] = self._records[recipient_index].with_status(ClaimStatus.CLAIMED)
            self._disbursed += amount
            metrics.record_claim("ok", amount)
            log.info("claims: claimed round=%s index=%d claimant=%s amount=%d",
                     self.round_id, recipient_index, claimant, amount)
            self._emit(FundsClaimed(recipient_index=recipient_index, claimant=claimant, amount=amount))
            return amount


__all__ = ["AllocationFn", "ClaimLedger"]
