from __future__ import annotations
"""
qfund.adapters
==============

Seams to the collaborators a round depends on but does not own: the recipient
registry, the settlement asset, and the internal accounting token. Each seam
is a `typing.Protocol`; in-memory implementations live alongside.
"""

from .ledger import AccountingToken, InMemoryLedger, LedgerAccount, SettlementAsset
from .registry import RecipientRegistry, SimpleRecipientRegistry

__all__ = [
    "AccountingToken",
    "InMemoryLedger",
    "LedgerAccount",
    "SettlementAsset",
    "RecipientRegistry",
    "SimpleRecipientRegistry",
]
