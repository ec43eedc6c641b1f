from __future__ import annotations

"""
Redemption ledger: exactly-once conversion per completed claim
--------------------------------------------------------------

After a recipient has claimed, its internal accounting-token balance can be
converted into the underlying asset at 1:1. Each claim converts once.

Ordering inside `redeem()` (all under the round lock):

  1) the claim for the index must be CLAIMED          (NotClaimed)
  2) conflicts: REDEEMED / PENDING                    (AlreadyRedeemed / RedemptionPending)
  3) only the claimant redeems; amount must match     (UnauthorizedRedeemer / AmountMismatch)
  4) internal balance covers the amount               (InsufficientBalance)
  5) reserve (PENDING), debit the internal token
  6) transfer underlying from the reserve to the redeemer
  7) complete (REDEEMED), emit TokensRedeemed

If step 6 fails the debit is re-minted to the redeemer and the record returns
to UNREDEEMED, so balances are as before and the call can be retried.
"""

import logging
from threading import RLock
from typing import Dict, Optional, Tuple

from qfund import metrics
from qfund.adapters.ledger import AccountingToken, SettlementAsset
from qfund.errors import (AlreadyRedeemed, AmountMismatch, InsufficientBalance, NotClaimed,
                          RedemptionPending, TransferFailure, UnauthorizedRedeemer)
from qfund.ledger.claims import ClaimLedger
from qfund.qtypes.events import EventSink, TokensRedeemed, discard
from qfund.qtypes.records import RedemptionRecord, RedemptionStatus

log = logging.getLogger(__name__)

# Underlying units per internal token unit after a claim.
REDEMPTION_RATE = 1


class RedemptionLedger:
    def __init__(
        self,
        claims: ClaimLedger,
        token: AccountingToken,
        underlying: SettlementAsset,
        *,
        lock: Optional[RLock] = None,
        emit: EventSink = discard,
        round_id: str = "-",
    ) -> None:
        self._claims = claims
        self._token = token
        self._underlying = underlying
        self._lock = lock or RLock()
        self._emit = emit
        self.round_id = round_id
        self._records: Dict[int, RedemptionRecord] = {}

    def get_record(self, recipient_index: int) -> Optional[RedemptionRecord]:
        with self._lock:
            return self._records.get(recipient_index)

    def is_redeemed(self, recipient_index: int) -> bool:
        rec = self.get_record(recipient_index)
        return rec is not None and rec.redeemed

    def records(self) -> Tuple[RedemptionRecord, ...]:
        with self._lock:
            return tuple(self._records[k] for k in sorted(self._records))

    def redeem(self, recipient_index: int, redeemer: str, claimed_amount: Optional[int] = None) -> int:
        """Convert the claimed balance for `recipient_index`. Returns the underlying amount."""
        with self._lock:
            claim = self._claims.get_record(recipient_index)
            if claim is None or not claim.claimed:
                metrics.record_redemption("rejected")
                raise NotClaimed(
                    recipient_index=recipient_index,
                    status=claim.status.value if claim is not None else None,
                )

            rec = self._records.get(recipient_index)
            if rec is not None and rec.status is RedemptionStatus.REDEEMED:
                metrics.record_redemption("conflict")
                raise AlreadyRedeemed(
                    recipient_index=recipient_index,
                    details={"redeemer": rec.redeemer, "amount": rec.amount},
                )
            if rec is not None and rec.status is RedemptionStatus.PENDING:
                metrics.record_redemption("conflict")
                raise RedemptionPending(recipient_index=recipient_index)

            if redeemer != claim.claimant:
                metrics.record_redemption("rejected")
                raise UnauthorizedRedeemer(recipient_index=recipient_index, redeemer=redeemer,
                                           claimant=claim.claimant)
            amount = claim.amount
            if claimed_amount is not None and claimed_amount != amount:
                metrics.record_redemption("rejected")
                raise AmountMismatch(
                    "redeem amount differs from the claimed amount",
                    details={"recipient_index": recipient_index, "requested": claimed_amount, "claimed": amount},
                )

            available = self._token.balance_of(redeemer)
            if available < amount:
                metrics.record_redemption("rejected")
                raise InsufficientBalance(account=redeemer, required=amount, available=available,
                                          recipient_index=recipient_index)

            self._records[recipient_index] = RedemptionRecord(
                claim_recipient_index=recipient_index,
                redeemer=redeemer,
                amount=amount,
                status=RedemptionStatus.PENDING,
            )
            if not self._token.debit(redeemer, amount):
                del self._records[recipient_index]
                metrics.record_redemption("rejected")
                raise InsufficientBalance(account=redeemer, required=amount,
                                          available=self._token.balance_of(redeemer),
                                          recipient_index=recipient_index)

            underlying_amount = amount * REDEMPTION_RATE
            cause: Optional[Exception] = None
            try:
                ok = self._underlying.transfer(redeemer, underlying_amount)
            except Exception as e:  # collaborator failure is a retryable outcome
                ok, cause = False, e
            if not ok:
                # Compensate the debit so the redeemer's internal balance is unchanged.
                self._token.mint(redeemer, amount)
                del self._records[recipient_index]
                metrics.record_redemption("transfer_failed")
                metrics.record_transfer_failure("redeem")
                log.warning("redemptions: transfer failed round=%s index=%d redeemer=%s amount=%d",
                            self.round_id, recipient_index, redeemer, underlying_amount)
                raise TransferFailure(
                    "underlying transfer failed; redemption left open",
                    recipient_index=recipient_index,
                    to=redeemer,
                    amount=underlying_amount,
                    details={"status": RedemptionStatus.UNREDEEMED.value},
                ) from cause

            done = RedemptionRecord(
                claim_recipient_index=recipient_index,
                redeemer=redeemer,
                amount=amount,
                status=RedemptionStatus.REDEEMED,
                underlying_amount=underlying_amount,
            )
            self._records[recipient_index] = done
            metrics.record_redemption("ok", underlying_amount)
            log.info("redemptions: redeemed round=%s index=%d redeemer=%s amount=%d",
                     self.round_id, recipient_index, redeemer, underlying_amount)
            self._emit(TokensRedeemed(recipient_index=recipient_index, redeemer=redeemer, amount=underlying_amount))
            return underlying_amount


__all__ = ["REDEMPTION_RATE", "RedemptionLedger"]
