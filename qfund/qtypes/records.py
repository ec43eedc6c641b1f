from __future__ import annotations

"""
Ledger records for claims and redemptions.

Both records move through the same three statuses:

    UNCLAIMED/UNREDEEMED --reserve--> PENDING --transfer ok--> CLAIMED/REDEEMED
                              ^                     |
                              +---transfer failed---+

PENDING is the reservation held while the external transfer runs; a failed
transfer rolls the record back so the same call can be retried. The terminal
status is immutable.
"""


from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ClaimStatus(str, Enum):
    UNCLAIMED = "UNCLAIMED"
    PENDING = "PENDING"
    CLAIMED = "CLAIMED"


class RedemptionStatus(str, Enum):
    UNREDEEMED = "UNREDEEMED"
    PENDING = "PENDING"
    REDEEMED = "REDEEMED"


@dataclass(frozen=True)
class ClaimRecord:
    recipient_index: int
    claimant: str
    amount: int
    status: ClaimStatus = ClaimStatus.UNCLAIMED
    attempts: int = 0

    @property
    def claimed(self) -> bool:
        return self.status is ClaimStatus.CLAIMED

    def with_status(self, status: ClaimStatus) -> "ClaimRecord":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_index": self.recipient_index,
            "claimant": self.claimant,
            "amount": self.amount,
            "status": self.status.value,
            "claimed": self.claimed,
            "attempts": self.attempts,
        }

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "ClaimRecord":
        return ClaimRecord(
            recipient_index=int(d["recipient_index"]),
            claimant=str(d["claimant"]),
            amount=int(d["amount"]),
            status=ClaimStatus(d.get("status", ClaimStatus.UNCLAIMED.value)),
            attempts=int(d.get("attempts", 0)),
        )


@dataclass(frozen=True)
class RedemptionRecord:
    claim_recipient_index: int
    redeemer: str
    amount: int
    status: RedemptionStatus = RedemptionStatus.UNREDEEMED
    underlying_amount: Optional[int] = None

    @property
    def redeemed(self) -> bool:
        return self.status is RedemptionStatus.REDEEMED

    def with_status(self, status: RedemptionStatus) -> "RedemptionRecord":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim_recipient_index": self.claim_recipient_index,
            "redeemer": self.redeemer,
            "amount": self.amount,
            "status": self.status.value,
            "redeemed": self.redeemed,
            "underlying_amount": self.underlying_amount,
        }


__all__ = ["ClaimStatus", "RedemptionStatus", "ClaimRecord", "RedemptionRecord"]
