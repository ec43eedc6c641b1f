from __future__ import annotations
# qfund/errors.py
"""
Error types for quadratic-funding round settlement. These are lightweight,
serializable, and safe to surface over logs or a CLI.

Every error belongs to one category that tells the caller what to do next:

- InputError          malformed batch, out-of-range index, wrong caller.
                      Rejected synchronously, nothing mutated.
- StateError          operation not valid in the current lifecycle state.
- ConflictError       the operation already happened (or is in flight);
                      observe the existing record instead of retrying blindly.
- FundArithmeticError alpha/allocation math cannot produce a value; the round
                      stays where it was (needs an out-of-band budget fix).
- TransferFailure     the external asset mover refused; records are left
                      incomplete so the same call can be retried.
"""


from typing import Any, Dict, Iterable, Mapping, Optional
import json


class QFundError(Exception):
    """Base class for qfund domain errors."""

    code: str = "QFUND_ERROR"

    def __init__(self, message: str = "", *, details: Optional[Mapping[str, Any]] = None) -> None:
        self.message = message or self.__class__.__name__
        self.details = dict(details or {})
        super().__init__(self.__str__())

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    def __str__(self) -> str:  # pragma: no cover - trivial
        if self.details:
            try:
                packed = json.dumps(self.details, sort_keys=True, separators=(",", ":"))
            except (TypeError, ValueError):
                packed = str(self.details)
            return f"{self.code}: {self.message} [{packed}]"
        return f"{self.code}: {self.message}"


def _with(details: Optional[Mapping[str, Any]], **extra: Any) -> Dict[str, Any]:
    d = dict(details or {})
    for k, v in extra.items():
        if v is not None:
            d.setdefault(k, v)
    return d


# ────────────────────────────────────────────────────────────────────────────────
# Categories
# ────────────────────────────────────────────────────────────────────────────────


class InputError(QFundError):
    code = "QFUND_INPUT_ERROR"


class StateError(QFundError):
    code = "QFUND_STATE_ERROR"


class ConflictError(QFundError):
    code = "QFUND_CONFLICT"


class FundArithmeticError(QFundError, ArithmeticError):
    code = "QFUND_ARITHMETIC_ERROR"


class TransferFailure(QFundError):
    """The settlement asset or accounting token collaborator reported failure."""
    code = "QFUND_TRANSFER_FAILURE"

    def __init__(
        self,
        message: str = "asset transfer failed",
        *,
        recipient_index: Optional[int] = None,
        to: Optional[str] = None,
        amount: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            details=_with(details, recipient_index=recipient_index, to=to, amount=amount),
        )


# ────────────────────────────────────────────────────────────────────────────────
# Input errors
# ────────────────────────────────────────────────────────────────────────────────


class IndexOutOfRange(InputError):
    code = "QFUND_INDEX_OUT_OF_RANGE"

    def __init__(
        self,
        *,
        index: int,
        capacity: int,
        message: str = "recipient index out of range",
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=_with(details, index=int(index), capacity=int(capacity)))


class MalformedBatch(InputError):
    code = "QFUND_MALFORMED_BATCH"


class MalformedTally(InputError):
    """A tally document does not have the expected shape."""
    code = "QFUND_MALFORMED_TALLY"


class InvalidTotals(InputError):
    code = "QFUND_INVALID_TOTALS"


class CommitmentMismatch(InputError):
    """Sealed data does not match what was published or declared."""
    code = "QFUND_COMMITMENT_MISMATCH"


class InvalidConfig(InputError):
    """Round configuration failed validation."""
    code = "QFUND_INVALID_CONFIG"


class InvalidRecipient(InputError):
    code = "QFUND_INVALID_RECIPIENT"

    def __init__(self, *, recipient_index: int, message: str = "recipient is not registered",
                 details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, details=_with(details, recipient_index=int(recipient_index)))


class UnauthorizedClaimant(InputError):
    code = "QFUND_UNAUTHORIZED_CLAIMANT"

    def __init__(
        self,
        *,
        recipient_index: int,
        claimant: str,
        owner: Optional[str] = None,
        message: str = "claimant does not own recipient index",
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            details=_with(details, recipient_index=int(recipient_index), claimant=claimant, owner=owner),
        )


class UnauthorizedRedeemer(InputError):
    code = "QFUND_UNAUTHORIZED_REDEEMER"

    def __init__(
        self,
        *,
        recipient_index: int,
        redeemer: str,
        claimant: Optional[str] = None,
        message: str = "only the claimant may redeem a claim",
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            details=_with(details, recipient_index=int(recipient_index), redeemer=redeemer, claimant=claimant),
        )


class AmountMismatch(InputError):
    code = "QFUND_AMOUNT_MISMATCH"


class InsufficientBalance(InputError):
    code = "QFUND_INSUFFICIENT_BALANCE"

    def __init__(
        self,
        *,
        account: str,
        required: int,
        available: int,
        recipient_index: Optional[int] = None,
        message: str = "insufficient internal token balance",
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            details=_with(
                details,
                account=account,
                required=int(required),
                available=int(available),
                recipient_index=recipient_index,
            ),
        )


# ────────────────────────────────────────────────────────────────────────────────
# State errors
# ────────────────────────────────────────────────────────────────────────────────


class AlreadySealed(StateError):
    code = "QFUND_ALREADY_SEALED"


class NotSealed(StateError):
    code = "QFUND_NOT_SEALED"


class IncompleteTally(StateError):
    code = "QFUND_INCOMPLETE_TALLY"

    def __init__(self, *, missing: Iterable[int], capacity: int,
                 message: str = "tally has unwritten indices",
                 details: Optional[Mapping[str, Any]] = None) -> None:
        miss = sorted(int(i) for i in missing)
        self.missing = miss
        # Only the head of the list goes into details; large trees stay loggable.
        super().__init__(
            message,
            details=_with(details, missing_count=len(miss), missing_head=miss[:16], capacity=int(capacity)),
        )


class WrongState(StateError):
    """Round lifecycle does not permit the operation."""
    code = "QFUND_WRONG_STATE"

    def __init__(self, *, operation: str, state: str, expected: Iterable[str] = (),
                 message: str = "operation not allowed in current round state",
                 details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(
            message,
            details=_with(details, operation=operation, state=state, expected=sorted(expected) or None),
        )


class NotClaimed(StateError):
    code = "QFUND_NOT_CLAIMED"

    def __init__(self, *, recipient_index: int, status: Optional[str] = None,
                 message: str = "no completed claim for recipient index",
                 details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, details=_with(details, recipient_index=int(recipient_index), status=status))


# ────────────────────────────────────────────────────────────────────────────────
# Conflicts
# ────────────────────────────────────────────────────────────────────────────────


class DuplicateBatch(ConflictError):
    """A batch overlaps indices written by an earlier batch."""
    code = "QFUND_DUPLICATE_BATCH"

    def __init__(self, message: str = "batch overlaps already written indices", *,
                 indices: Iterable[int] = (), details: Optional[Mapping[str, Any]] = None) -> None:
        idx = sorted(int(i) for i in indices)
        super().__init__(message, details=_with(details, indices=idx[:16] or None))


class InconsistentBatch(DuplicateBatch):
    """A batch rewrites an already written index with a different value."""
    code = "QFUND_INCONSISTENT_BATCH"


class _RecordConflict(ConflictError):
    def __init__(self, message: str, *, recipient_index: int, status: Optional[str] = None,
                 details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, details=_with(details, recipient_index=int(recipient_index), status=status))


class AlreadyClaimed(_RecordConflict):
    code = "QFUND_ALREADY_CLAIMED"

    def __init__(self, *, recipient_index: int, status: Optional[str] = "CLAIMED",
                 message: str = "funds already claimed", details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, recipient_index=recipient_index, status=status, details=details)


class ClaimPending(_RecordConflict):
    code = "QFUND_CLAIM_PENDING"

    def __init__(self, *, recipient_index: int, message: str = "another claim attempt is in flight",
                 details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, recipient_index=recipient_index, status="PENDING", details=details)


class AlreadyRedeemed(_RecordConflict):
    code = "QFUND_ALREADY_REDEEMED"

    def __init__(self, *, recipient_index: int, status: Optional[str] = "REDEEMED",
                 message: str = "claim already redeemed", details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, recipient_index=recipient_index, status=status, details=details)


class RedemptionPending(_RecordConflict):
    code = "QFUND_REDEMPTION_PENDING"

    def __init__(self, *, recipient_index: int, message: str = "another redemption attempt is in flight",
                 details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, recipient_index=recipient_index, status="PENDING", details=details)


# ────────────────────────────────────────────────────────────────────────────────
# Arithmetic
# ────────────────────────────────────────────────────────────────────────────────


class DivisionByZero(FundArithmeticError):
    code = "QFUND_DIVISION_BY_ZERO"


class NoMatchingEffect(DivisionByZero):
    """total_quadratic_votes == total_spent: there is no quadratic boost to fund."""
    code = "QFUND_NO_MATCHING_EFFECT"


class BudgetTooSmall(FundArithmeticError):
    code = "QFUND_BUDGET_TOO_SMALL"

    def __init__(self, *, budget: int, contributions: int, message: str = "budget is below total contributions",
                 details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, details=_with(details, budget=int(budget), contributions=int(contributions)))


class BudgetExceedsDemand(FundArithmeticError):
    """Computed alpha is above 1: the matching pool is larger than the quadratic boost."""
    code = "QFUND_BUDGET_EXCEEDS_DEMAND"

    def __init__(self, *, alpha: int, precision: int, message: str = "alpha would exceed precision",
                 details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, details=_with(details, alpha=int(alpha), precision=int(precision)))


class BudgetExhausted(FundArithmeticError):
    """A payout would move total disbursements past the frozen budget."""
    code = "QFUND_BUDGET_EXHAUSTED"


__all__ = [
    "QFundError",
    "InputError",
    "StateError",
    "ConflictError",
    "FundArithmeticError",
    "TransferFailure",
    "IndexOutOfRange",
    "MalformedBatch",
    "MalformedTally",
    "InvalidTotals",
    "CommitmentMismatch",
    "InvalidConfig",
    "InvalidRecipient",
    "UnauthorizedClaimant",
    "UnauthorizedRedeemer",
    "AmountMismatch",
    "InsufficientBalance",
    "AlreadySealed",
    "NotSealed",
    "IncompleteTally",
    "WrongState",
    "NotClaimed",
    "DuplicateBatch",
    "InconsistentBatch",
    "AlreadyClaimed",
    "ClaimPending",
    "AlreadyRedeemed",
    "RedemptionPending",
    "DivisionByZero",
    "NoMatchingEffect",
    "BudgetTooSmall",
    "BudgetExceedsDemand",
    "BudgetExhausted",
]
