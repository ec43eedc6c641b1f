from __future__ import annotations
"""
qfund.qtypes
============

Plain data types shared by the ledgers and the round coordinator: claim and
redemption records, and the events a round emits.
"""

from .events import (BatchAccepted, EventSink, EventType, FundsClaimed, RoundEvent,
                     RoundFinalized, TallySealed, TokensRedeemed)
from .records import ClaimRecord, ClaimStatus, RedemptionRecord, RedemptionStatus

__all__ = [
    "ClaimRecord",
    "ClaimStatus",
    "RedemptionRecord",
    "RedemptionStatus",
    "EventType",
    "RoundEvent",
    "EventSink",
    "BatchAccepted",
    "TallySealed",
    "RoundFinalized",
    "FundsClaimed",
    "TokensRedeemed",
]
