from __future__ import annotations

"""
qfund.adapters.registry
=======================

Recipient registry seam. The claim ledger only needs to know whether an index
is a live recipient and which address owns it; who maintains that list (an
on-chain registry, an admin tool, a fixture) is outside this package.

`SimpleRecipientRegistry` is the in-memory variant used by tests, the CLI
simulator and single-process deployments. Other membership strategies plug in
by satisfying the `RecipientRegistry` protocol when the round is constructed.
"""

from threading import RLock
from typing import Dict, Mapping, Optional, Protocol, runtime_checkable

from qfund.errors import InputError, InvalidRecipient


@runtime_checkable
class RecipientRegistry(Protocol):
    """Minimal registry surface used to authorize claimants."""

    def get_owner(self, recipient_index: int) -> Optional[str]:
        """Return the address that owns `recipient_index`, or None if unknown."""

    def is_valid_recipient(self, recipient_index: int) -> bool:
        """True when the index is an active recipient of the round."""


class SimpleRecipientRegistry:
    """Index -> owner address map with add/remove."""

    def __init__(self, owners: Optional[Mapping[int, str]] = None) -> None:
        self._owners: Dict[int, str] = {}
        self._removed: set[int] = set()
        self._lock = RLock()
        for idx, owner in (owners or {}).items():
            self.add_recipient(idx, owner)

    def add_recipient(self, recipient_index: int, owner: str) -> None:
        if recipient_index < 0:
            raise InputError(f"recipient index must be non-negative, got {recipient_index}")
        if not owner:
            raise InputError("recipient owner address is empty")
        with self._lock:
            if recipient_index in self._owners and recipient_index not in self._removed:
                raise InputError(
                    "recipient index already registered",
                    details={"recipient_index": recipient_index, "owner": self._owners[recipient_index]},
                )
            self._owners[recipient_index] = owner
            self._removed.discard(recipient_index)

    def remove_recipient(self, recipient_index: int) -> None:
        with self._lock:
            if recipient_index not in self._owners or recipient_index in self._removed:
                raise InvalidRecipient(recipient_index=recipient_index)
            self._removed.add(recipient_index)

    def get_owner(self, recipient_index: int) -> Optional[str]:
        with self._lock:
            if recipient_index in self._removed:
                return None
            return self._owners.get(recipient_index)

    def is_valid_recipient(self, recipient_index: int) -> bool:
        return self.get_owner(recipient_index) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners) - len(self._removed)


__all__ = ["RecipientRegistry", "SimpleRecipientRegistry"]
