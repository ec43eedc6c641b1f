from __future__ import annotations

"""
End-to-end round lifecycle over in-memory ledgers:

    COLLECTING -> SEALED -> FINALIZED -> DISBURSING

Most tests use the `sealed_round` fixture (small four-recipient tally, pool
funded with the budget) from conftest.py.
"""

import pytest

from qfund.config import RoundConfig
from qfund.errors import (AlreadySealed, BudgetExceedsDemand, BudgetTooSmall, CommitmentMismatch,
                          InputError, InsufficientBalance, NotSealed, UnauthorizedClaimant,
                          WrongState)
from qfund.qtypes.events import (BatchAccepted, EventType, FundsClaimed, RoundFinalized, TallySealed,
                                 TokensRedeemed)
from qfund.round.coordinator import RoundCoordinator, RoundState
from qfund.tally.records import load_tally
from qfund.tests import (ALLOC_BUDGET_400, ALPHA_BUDGET_400, OWNERS, SMALL_SALT, SMALL_SPENT,
                         SMALL_TALLY, SMALL_TOTAL_SPENT, TALLY_SMALL)

POOL = "round/pool"
RESERVE = "vendor/reserve"


def test_full_round(sealed_round, token, asset):
    rnd = sealed_round(400)
    assert rnd.state is RoundState.SEALED

    alpha = rnd.finalize()
    assert rnd.state is RoundState.FINALIZED
    assert alpha.value == ALPHA_BUDGET_400
    assert rnd.budget == 400

    for i, owner in OWNERS.items():
        assert rnd.claim(i, owner) == ALLOC_BUDGET_400[i]
        assert rnd.redeem(i, owner) == ALLOC_BUDGET_400[i]
        assert token.balance_of(owner) == 0
        assert asset.balance_of(owner) == ALLOC_BUDGET_400[i]

    assert rnd.state is RoundState.DISBURSING
    assert token.balance_of(POOL) == 1
    assert asset.balance_of(RESERVE) == 1
    assert rnd.claims.total_disbursed == 399


def test_states_only_move_forward(sealed_round):
    rnd = sealed_round(400)
    with pytest.raises(AlreadySealed):
        rnd.accumulate_batch(0, [60], [10])
    with pytest.raises(AlreadySealed):
        rnd.seal(SMALL_TOTAL_SPENT, SMALL_SALT)
    with pytest.raises(WrongState):
        rnd.claim(0, "alice")
    with pytest.raises(WrongState):
        rnd.redeem(0, "alice")

    rnd.finalize()
    with pytest.raises(WrongState):
        rnd.finalize(400)
    with pytest.raises(WrongState):
        rnd.publish_tally_hash("ab" * 32)


def test_finalize_before_seal(make_round):
    rnd = make_round(400)
    rnd.accumulate_batch(0, list(SMALL_SPENT), list(SMALL_TALLY))
    with pytest.raises(WrongState):
        rnd.finalize(400)
    with pytest.raises(NotSealed):
        rnd.get_recipient_data(0)


def test_claim_advances_to_disbursing_only_on_success(sealed_round):
    rnd = sealed_round(400)
    rnd.finalize()
    with pytest.raises(UnauthorizedClaimant):
        rnd.claim(0, "mallory")
    assert rnd.state is RoundState.FINALIZED
    rnd.claim(0, "alice")
    assert rnd.state is RoundState.DISBURSING


def test_explicit_budget_overrides_pool_balance(sealed_round):
    rnd = sealed_round(1_000)
    alpha = rnd.finalize(budget=430)
    assert alpha.value == alpha.precision // 2
    assert [rnd.preview_allocation(i) for i in range(4)] == [80, 325, 25, 0]
    assert rnd.budget == 430


def test_failed_finalize_keeps_round_sealed(sealed_round, token):
    rnd = sealed_round(300)
    with pytest.raises(BudgetTooSmall):
        rnd.finalize()
    assert rnd.state is RoundState.SEALED
    assert rnd.alpha is None
    # Pool topped up out of band, finalize again.
    token.mint(POOL, 100)
    assert rnd.finalize().value == ALPHA_BUDGET_400
    assert rnd.budget == 400


def test_budget_above_pool_balance_rejected(sealed_round):
    rnd = sealed_round(400)
    with pytest.raises(InsufficientBalance) as ei:
        rnd.finalize(budget=500)
    assert ei.value.details["required"] == 500
    assert ei.value.details["available"] == 400
    assert rnd.state is RoundState.SEALED
    assert rnd.alpha is None and rnd.budget is None
    assert rnd.finalize(budget=400).value == ALPHA_BUDGET_400


def test_budget_exceeding_demand_reject_and_clamp(sealed_round):
    rnd = sealed_round(10_000)
    with pytest.raises(BudgetExceedsDemand):
        rnd.finalize()

    clamped = sealed_round(10_000, config=RoundConfig(tree_depth=2, alpha_overflow="clamp"), round_id="r-clamp")
    alpha = clamped.finalize(budget=10_000)
    assert alpha.clamped and alpha.value == alpha.precision
    assert [clamped.preview_allocation(i) for i in range(4)] == [100, 400, 25, 0]


def test_voice_credit_factor(sealed_round):
    rnd = sealed_round(4_000, config=RoundConfig(tree_depth=2, voice_credit_factor=10))
    rnd.finalize()
    assert [row["amount"] for row in rnd.preview_all()] == [736, 3013, 250, 0]


def test_totals_are_verified(make_round):
    rnd = make_round(400, config=RoundConfig(tree_depth=2, verify_totals=True))
    rnd.accumulate_batch(0, list(SMALL_SPENT), list(SMALL_TALLY))
    rnd.seal(300, SMALL_SALT)
    with pytest.raises(CommitmentMismatch) as ei:
        rnd.finalize()
    assert ei.value.details == {"sum_spent": 335, "total_spent": 300}
    assert rnd.state is RoundState.SEALED


def test_declared_quadratic_votes_must_match(sealed_round):
    rnd = sealed_round(400, config=RoundConfig(tree_depth=2, verify_totals=True))
    with pytest.raises(CommitmentMismatch):
        rnd.finalize(total_quadratic_votes=600)
    assert rnd.finalize(total_quadratic_votes=525).value == ALPHA_BUDGET_400


def test_unverified_totals_use_declared_votes(sealed_round):
    rnd = sealed_round(400)
    # 65 * 1e18 / (600 - 335)
    assert rnd.finalize(total_quadratic_votes=600).value == 65 * 10**18 // 265


def test_attested_total_spent_is_not_recomputed_by_default(make_round):
    rnd = make_round(400)
    rnd.accumulate_batch(0, list(SMALL_SPENT), list(SMALL_TALLY))
    rnd.seal(SMALL_TOTAL_SPENT + 1, SMALL_SALT)
    rnd.finalize()
    assert rnd.state is RoundState.FINALIZED
    assert sum(row["amount"] for row in rnd.preview_all()) <= 400


def test_published_tally_hash(make_round):
    rec = load_tally(TALLY_SMALL)
    rnd = make_round(400)
    rnd.publish_tally_hash("0x" + rec.digest(2))
    assert rnd.ingest_tally(rec) == rec.digest(2)
    assert rnd.tally_hash == rec.digest(2)


def test_published_tally_hash_mismatch(make_round):
    rnd = make_round(400)
    rnd.publish_tally_hash("00" * 32)
    rnd.accumulate_batch(0, list(SMALL_SPENT), list(SMALL_TALLY))
    with pytest.raises(CommitmentMismatch):
        rnd.seal(SMALL_TOTAL_SPENT, SMALL_SALT)
    assert rnd.state is RoundState.COLLECTING


def test_tally_hash_required(make_round):
    rnd = make_round(400, config=RoundConfig(tree_depth=2, require_tally_hash=True))
    rnd.accumulate_batch(0, list(SMALL_SPENT), list(SMALL_TALLY))
    with pytest.raises(WrongState):
        rnd.seal(SMALL_TOTAL_SPENT, SMALL_SALT)
    with pytest.raises(InputError):
        rnd.publish_tally_hash("not-hex")


def test_ingest_pads_to_configured_depth(make_round):
    rec = load_tally(TALLY_SMALL)
    rnd = make_round(400, config=RoundConfig(tree_depth=3, batch_size=2))
    digest = rnd.ingest_tally(rec)
    assert digest == rec.digest(3)
    assert rnd.commitment.batches == ((0, 2), (2, 2), (4, 2), (6, 2))
    assert rnd.get_recipient_data(7) == (0, 0)
    assert rnd.finalize().value == ALPHA_BUDGET_400


def test_events_in_order(sealed_round):
    rnd = sealed_round(400)
    seen = []
    rnd.subscribe(seen.append)
    rnd.finalize()
    rnd.claim(1, "bob")
    rnd.redeem(1, "bob")

    kinds = [type(e) for e in rnd.events()]
    assert kinds == [BatchAccepted, BatchAccepted, TallySealed, RoundFinalized, FundsClaimed, TokensRedeemed]
    assert [e.etype for e in seen] == [EventType.ROUND_FINALIZED, EventType.FUNDS_CLAIMED,
                                      EventType.TOKENS_REDEEMED]
    fin = rnd.events()[3]
    assert (fin.budget, fin.alpha) == (400, ALPHA_BUDGET_400)
    assert fin.to_dict()["etype"] == "RoundFinalized"


def test_failing_subscriber_does_not_break_the_round(sealed_round):
    rnd = sealed_round(400)

    def bad(_event):
        raise RuntimeError("subscriber down")

    rnd.subscribe(bad)
    rnd.finalize()
    assert rnd.claim(0, "alice") == 73


def test_resubmitted_batch_emits_nothing(make_round):
    rnd = make_round(400)
    assert rnd.accumulate_batch(0, [60, 250], [10, 20]) is True
    assert rnd.accumulate_batch(0, [60, 250], [10, 20]) is False
    assert len(rnd.events()) == 1


def test_allocation_requires_finalize(sealed_round):
    rnd = sealed_round(400)
    with pytest.raises(WrongState):
        rnd.preview_allocation(0)
    with pytest.raises(WrongState):
        rnd.preview_all()


def test_snapshot(sealed_round):
    rnd = sealed_round(400)
    rnd.finalize()
    rnd.claim(0, "alice")
    snap = rnd.snapshot()
    assert snap["state"] == "DISBURSING"
    assert snap["alpha"]["value"] == ALPHA_BUDGET_400
    assert snap["disbursed"] == 73
    assert snap["claims"][0]["status"] == "CLAIMED"
    assert snap["redemptions"] == []
    assert snap["commitment"]["sealed"] is True


def test_invalid_config_rejected(token, asset, registry):
    with pytest.raises(ValueError):
        RoundCoordinator(
            "bad",
            registry=registry,
            pool=token.account(POOL),
            token=token,
            underlying=asset.account(RESERVE),
            config=RoundConfig(batch_size=0),
        )
