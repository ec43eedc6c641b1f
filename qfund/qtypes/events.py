from __future__ import annotations
"""
Round event types.

Events are appended to the owning round's in-process log and handed to any
subscribers (an RPC layer, a chain bridge, a test). They are plain dataclasses
with JSON-friendly `to_dict()` output; how they reach a chain is someone
else's concern.

Events:
  - BatchAccepted:  a tally batch was written into the commitment.
  - TallySealed:    the commitment was frozen with its totals and digest.
  - RoundFinalized: alpha and budget were fixed for the round.
  - FundsClaimed:   a recipient took its allocation from the pool.
  - TokensRedeemed: a claimed balance was converted to the underlying asset.

Timestamps use UNIX milliseconds.
"""


from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Callable, Dict, Union
import time


def now_ms() -> int:
    """Current UNIX time in milliseconds (int)."""
    return int(time.time() * 1000)


class EventType(str, Enum):
    BATCH_ACCEPTED = "BatchAccepted"
    TALLY_SEALED = "TallySealed"
    ROUND_FINALIZED = "RoundFinalized"
    FUNDS_CLAIMED = "FundsClaimed"
    TOKENS_REDEEMED = "TokensRedeemed"


@dataclass(frozen=True)
class BatchAccepted:
    round_id: str
    start_index: int
    size: int
    etype: EventType = EventType.BATCH_ACCEPTED
    ts_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["etype"] = self.etype.value
        return d


@dataclass(frozen=True)
class TallySealed:
    round_id: str
    total_spent: int
    digest: str
    etype: EventType = EventType.TALLY_SEALED
    ts_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["etype"] = self.etype.value
        return d


@dataclass(frozen=True)
class RoundFinalized:
    round_id: str
    budget: int
    alpha: int
    precision: int
    etype: EventType = EventType.ROUND_FINALIZED
    ts_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["etype"] = self.etype.value
        return d


@dataclass(frozen=True)
class FundsClaimed:
    recipient_index: int
    claimant: str
    amount: int
    etype: EventType = EventType.FUNDS_CLAIMED
    ts_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["etype"] = self.etype.value
        return d


@dataclass(frozen=True)
class TokensRedeemed:
    recipient_index: int
    redeemer: str
    amount: int
    etype: EventType = EventType.TOKENS_REDEEMED
    ts_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["etype"] = self.etype.value
        return d


RoundEvent = Union[BatchAccepted, TallySealed, RoundFinalized, FundsClaimed, TokensRedeemed]
EventSink = Callable[[RoundEvent], None]


def discard(_: RoundEvent) -> None:
    """Default sink for ledgers used outside a coordinator."""
    return None


__all__ = [
    "now_ms",
    "EventType",
    "BatchAccepted",
    "TallySealed",
    "RoundFinalized",
    "FundsClaimed",
    "TokensRedeemed",
    "RoundEvent",
    "EventSink",
    "discard",
]
