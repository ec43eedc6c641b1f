from __future__ import annotations

import os
from typing import Callable, Optional

import pytest

from qfund.adapters.ledger import InMemoryLedger
from qfund.adapters.registry import SimpleRecipientRegistry
from qfund.config import RoundConfig
from qfund.round.coordinator import RoundCoordinator
from qfund.tests import OWNERS, SMALL_SALT, SMALL_SPENT, SMALL_TALLY, SMALL_TOTAL_SPENT

POOL = "round/pool"
RESERVE = "vendor/reserve"


@pytest.fixture(autouse=True)
def _clean_qfund_env(monkeypatch):
    # Config loaders read QFUND_*; keep the developer's shell out of the tests.
    for k in list(os.environ):
        if k.startswith("QFUND_"):
            monkeypatch.delenv(k, raising=False)


@pytest.fixture
def token() -> InMemoryLedger:
    return InMemoryLedger("voting-token")


@pytest.fixture
def asset() -> InMemoryLedger:
    return InMemoryLedger("asset")


@pytest.fixture
def registry() -> SimpleRecipientRegistry:
    return SimpleRecipientRegistry(OWNERS)


@pytest.fixture
def make_round(token, asset, registry) -> Callable[..., RoundCoordinator]:
    """
    Factory for a coordinator over the small four-recipient tally. The pool is
    funded with `budget` voting tokens and the vendor reserve with `reserve`
    units of the underlying asset (defaults to the budget).
    """

    def _make(budget: int = 400, *, reserve: Optional[int] = None, config: Optional[RoundConfig] = None,
              round_id: str = "r-test") -> RoundCoordinator:
        token.mint(POOL, budget)
        asset.mint(RESERVE, budget if reserve is None else reserve)
        return RoundCoordinator(
            round_id,
            registry=registry,
            pool=token.account(POOL),
            token=token,
            underlying=asset.account(RESERVE),
            config=config or RoundConfig(tree_depth=2),
        )

    return _make


@pytest.fixture
def sealed_round(make_round) -> Callable[..., RoundCoordinator]:
    def _sealed(budget: int = 400, **kw) -> RoundCoordinator:
        rnd = make_round(budget, **kw)
        rnd.accumulate_batch(0, list(SMALL_SPENT[:3]), list(SMALL_TALLY[:3]))
        rnd.accumulate_batch(3, list(SMALL_SPENT[3:]), list(SMALL_TALLY[3:]))
        rnd.seal(SMALL_TOTAL_SPENT, SMALL_SALT)
        return rnd

    return _sealed
