from __future__ import annotations

import threading

import pytest

from qfund.errors import (AlreadySealed, CommitmentMismatch, DuplicateBatch, IncompleteTally,
                          InconsistentBatch, IndexOutOfRange, MalformedBatch, NotSealed)
from qfund.tally.commitment import TallyCommitment, commitment_digest
from qfund.tests import SMALL_SALT, SMALL_SPENT, SMALL_TALLY, SMALL_TOTAL_SPENT


def _filled(depth: int = 2) -> TallyCommitment:
    c = TallyCommitment(depth)
    c.accumulate_batch(0, list(SMALL_SPENT), list(SMALL_TALLY))
    return c


def test_capacity_follows_depth():
    assert TallyCommitment(0).capacity == 1
    assert TallyCommitment(2).capacity == 4
    assert TallyCommitment(5).capacity == 32
    with pytest.raises(ValueError):
        TallyCommitment(-1)


def test_batches_fill_the_arena():
    c = TallyCommitment(2)
    assert c.accumulate_batch(0, [60, 250], [10, 20]) is True
    assert c.missing_indices() == [2, 3]
    assert c.accumulate_batch(2, [25, 0], [5, 0]) is True
    assert c.written_count() == 4
    assert c.batches == ((0, 2), (2, 2))


def test_identical_resubmission_is_a_noop():
    c = TallyCommitment(2)
    c.accumulate_batch(0, [60, 250], [10, 20])
    assert c.accumulate_batch(0, [60, 250], [10, 20]) is False
    # A sub-range that is fully written and identical is a resubmission too.
    assert c.accumulate_batch(1, [250], [20]) is False
    assert c.batches == ((0, 2),)


def test_different_values_are_inconsistent():
    c = TallyCommitment(2)
    c.accumulate_batch(0, [60, 250], [10, 20])
    with pytest.raises(InconsistentBatch) as ei:
        c.accumulate_batch(0, [60, 251], [10, 20])
    assert ei.value.details["indices"] == [1]
    # Callers catching the broader conflict still see it.
    assert isinstance(ei.value, DuplicateBatch)
    assert c.written_count() == 2


def test_inconsistent_even_when_writing_new_slots():
    c = TallyCommitment(2)
    c.accumulate_batch(0, [60, 250], [10, 20])
    with pytest.raises(InconsistentBatch):
        c.accumulate_batch(1, [999, 25], [20, 5])
    assert c.missing_indices() == [2, 3]


def test_partial_overlap_is_duplicate():
    c = TallyCommitment(2)
    c.accumulate_batch(0, [60, 250], [10, 20])
    with pytest.raises(DuplicateBatch) as ei:
        c.accumulate_batch(1, [250, 25], [20, 5])
    assert type(ei.value) is DuplicateBatch
    assert ei.value.details["indices"] == [1]
    assert c.missing_indices() == [2, 3]


def test_batch_past_capacity():
    c = TallyCommitment(2)
    with pytest.raises(IndexOutOfRange) as ei:
        c.accumulate_batch(3, [1, 1], [1, 1])
    assert ei.value.details["capacity"] == 4
    with pytest.raises(IndexOutOfRange):
        c.accumulate_batch(-1, [1], [1])
    assert c.written_count() == 0


@pytest.mark.parametrize(
    "start,spent,tally",
    [
        (0, [1, 2], [1]),
        (0, [], []),
        (0, [-1], [1]),
        (0, [1], [True]),
        (0, [1.0], [1]),
        ("0", [1], [1]),
    ],
)
def test_malformed_batches(start, spent, tally):
    c = TallyCommitment(2)
    with pytest.raises(MalformedBatch):
        c.accumulate_batch(start, spent, tally)
    assert c.written_count() == 0


def test_seal_requires_every_slot():
    c = TallyCommitment(2)
    c.accumulate_batch(0, [60, 250], [10, 20])
    with pytest.raises(IncompleteTally) as ei:
        c.seal(310, 0)
    assert ei.value.missing == [2, 3]
    assert not c.sealed


def test_reads_require_seal():
    c = _filled()
    with pytest.raises(NotSealed):
        c.get_recipient_data(0)
    with pytest.raises(NotSealed):
        _ = c.total_spent
    with pytest.raises(NotSealed):
        _ = c.digest


def test_seal_and_read():
    c = _filled()
    digest = c.seal(SMALL_TOTAL_SPENT, SMALL_SALT)
    assert c.sealed
    assert c.digest == digest
    assert len(digest) == 64
    assert c.total_spent == SMALL_TOTAL_SPENT
    assert c.total_spent_salt == SMALL_SALT
    assert c.get_recipient_data(1) == (250, 20)
    assert c.spent == SMALL_SPENT
    assert c.tally == SMALL_TALLY
    assert c.sum_spent() == 335
    assert c.total_quadratic_votes() == 525
    with pytest.raises(IndexOutOfRange):
        c.get_recipient_data(4)


def test_sealed_is_terminal():
    c = _filled()
    c.seal(SMALL_TOTAL_SPENT, SMALL_SALT)
    with pytest.raises(AlreadySealed):
        c.accumulate_batch(0, [60], [10])
    with pytest.raises(AlreadySealed):
        c.seal(SMALL_TOTAL_SPENT, SMALL_SALT)


@pytest.mark.parametrize(
    "start,spent,tally",
    [(0, [], []), (-1, [1], [1]), (0, [1, 2], [1]), (0, [-5], [1]), (True, [1], [1])],
)
def test_sealed_rejects_before_validating_batch(start, spent, tally):
    c = _filled()
    c.seal(SMALL_TOTAL_SPENT, SMALL_SALT)
    with pytest.raises(AlreadySealed):
        c.accumulate_batch(start, spent, tally)


def test_seal_rejects_bad_totals():
    c = _filled()
    with pytest.raises(MalformedBatch):
        c.seal(-1, 0)
    with pytest.raises(MalformedBatch):
        c.seal(335, "salt")
    assert not c.sealed


def test_digest_matches_free_function_and_covers_salt():
    a = _filled()
    b = _filled()
    da = a.seal(SMALL_TOTAL_SPENT, SMALL_SALT)
    db = b.seal(SMALL_TOTAL_SPENT, SMALL_SALT + 1)
    assert da == commitment_digest(2, SMALL_SPENT, SMALL_TALLY, SMALL_TOTAL_SPENT, SMALL_SALT)
    assert da != db


def test_expected_digest_checked_on_seal():
    expected = commitment_digest(2, SMALL_SPENT, SMALL_TALLY, SMALL_TOTAL_SPENT, SMALL_SALT)

    bad = _filled()
    with pytest.raises(CommitmentMismatch):
        bad.seal(SMALL_TOTAL_SPENT + 1, SMALL_SALT, expected_digest=expected)
    assert not bad.sealed

    good = _filled()
    assert good.seal(SMALL_TOTAL_SPENT, SMALL_SALT, expected_digest="0x" + expected.upper()) == expected


def test_concurrent_batches_land_once():
    c = TallyCommitment(4)
    spent = list(range(16))
    tally = [v * 2 for v in spent]
    results = []
    errors = []

    def worker(start: int) -> None:
        try:
            results.append(c.accumulate_batch(start, spent[start:start + 4], tally[start:start + 4]))
        except Exception as e:  # pragma: no cover - surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(s,)) for s in (0, 4, 8, 12) * 3]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert results.count(True) == 4
    assert results.count(False) == 8
    assert c.missing_indices() == []


def test_snapshot():
    c = _filled()
    snap = c.snapshot()
    assert snap["sealed"] is False and snap["written"] == 4 and "digest" not in snap
    c.seal(SMALL_TOTAL_SPENT, SMALL_SALT)
    snap = c.snapshot()
    assert snap["sealed"] is True and snap["total_spent"] == SMALL_TOTAL_SPENT
