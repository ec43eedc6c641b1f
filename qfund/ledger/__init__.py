from __future__ import annotations
"""
qfund.ledger
============

Stateful, exactly-once ledgers for a single round: `ClaimLedger` pays each
recipient's allocation out of the pooled funds once, `RedemptionLedger`
converts each completed claim into the underlying asset once.
"""

from .claims import ClaimLedger
from .redemptions import RedemptionLedger

__all__ = ["ClaimLedger", "RedemptionLedger"]
