from __future__ import annotations

"""
qfund.adapters.ledger
=====================

Asset-movement seams used by the claim and redemption ledgers, plus an
in-memory ledger that satisfies both.

- `SettlementAsset`: something that can move funds *out of one fixed source
  account* (`transfer(to, amount) -> bool`) and report balances. The round's
  pooled funds and the vendor's underlying-asset reserve are both used through
  this shape.
- `AccountingToken`: the round's internal token (the "voting token" the round
  pays claims in). Only `mint`, `debit` and `balance_of` are needed here;
  purchases that create balances happen elsewhere.

`InMemoryLedger` keeps integer balances under a lock, so every move is atomic
and the sum of balances only changes through `mint` and `debit`. Use
`ledger.account(source)` to get a `LedgerAccount` bound to a source account.
"""

from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from qfund.errors import InputError


@runtime_checkable
class SettlementAsset(Protocol):
    """Moves funds out of a fixed source account."""

    def transfer(self, to: str, amount: int) -> bool:
        """Move `amount` to `to`; return False (never raise) on a refused transfer."""

    def balance_of(self, account: str) -> int:
        """Current balance of `account`."""


@runtime_checkable
class AccountingToken(Protocol):
    """Internal accounting token ledger."""

    def mint(self, to: str, amount: int) -> None:
        """Create `amount` new units for `to`."""

    def debit(self, account: str, amount: int) -> bool:
        """Burn `amount` from `account`; False if the balance is short."""

    def balance_of(self, account: str) -> int:
        """Current balance of `account`."""


@dataclass(frozen=True)
class LedgerEntry:
    seq: int
    op: str
    account: str
    amount: int
    counterparty: Optional[str] = None
    ok: bool = True


@dataclass(eq=False)
class InMemoryLedger:
    """Integer balances keyed by account string."""

    name: str = "ledger"
    _balances: Dict[str, int] = field(default_factory=dict)
    _journal: List[LedgerEntry] = field(default_factory=list)
    _lock: RLock = field(default_factory=RLock)

    # --- introspection ---

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def total_supply(self) -> int:
        with self._lock:
            return sum(self._balances.values())

    def balances(self) -> Dict[str, int]:
        with self._lock:
            return {k: v for k, v in sorted(self._balances.items()) if v}

    def journal(self) -> Tuple[LedgerEntry, ...]:
        with self._lock:
            return tuple(self._journal)

    # --- mutations (all locked) ---

    def _log(self, op: str, account: str, amount: int, counterparty: Optional[str] = None,
             ok: bool = True) -> None:
        self._journal.append(
            LedgerEntry(seq=len(self._journal) + 1, op=op, account=account, amount=amount,
                        counterparty=counterparty, ok=ok)
        )

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InputError(f"amount must be a non-negative int, got {amount!r}")

    def mint(self, to: str, amount: int) -> None:
        self._check_amount(amount)
        with self._lock:
            self._balances[to] = self._balances.get(to, 0) + amount
            self._log("mint", to, amount)

    def debit(self, account: str, amount: int) -> bool:
        self._check_amount(amount)
        with self._lock:
            have = self._balances.get(account, 0)
            if have < amount:
                self._log("debit", account, amount, ok=False)
                return False
            self._balances[account] = have - amount
            self._log("debit", account, amount)
            return True

    def move(self, source: str, to: str, amount: int) -> bool:
        self._check_amount(amount)
        with self._lock:
            have = self._balances.get(source, 0)
            if have < amount:
                self._log("transfer", source, amount, counterparty=to, ok=False)
                return False
            self._balances[source] = have - amount
            self._balances[to] = self._balances.get(to, 0) + amount
            self._log("transfer", source, amount, counterparty=to)
            return True

    def account(self, source: str) -> "LedgerAccount":
        return LedgerAccount(ledger=self, source=source)


@dataclass(frozen=True)
class LedgerAccount:
    """`SettlementAsset` view of an `InMemoryLedger` bound to one source account."""

    ledger: InMemoryLedger
    source: str

    def transfer(self, to: str, amount: int) -> bool:
        return self.ledger.move(self.source, to, amount)

    def balance_of(self, account: str) -> int:
        return self.ledger.balance_of(account)

    @property
    def balance(self) -> int:
        return self.ledger.balance_of(self.source)


__all__ = [
    "SettlementAsset",
    "AccountingToken",
    "LedgerEntry",
    "InMemoryLedger",
    "LedgerAccount",
]
