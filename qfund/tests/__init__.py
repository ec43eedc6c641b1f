from __future__ import annotations
"""
qfund test suite package.

Shared numbers for the small four-recipient round used across the tests
(see `data/tally_small.json`):

    tally = [10, 20, 5, 0]      -> sum(t^2) = 525
    spent = [60, 250, 25, 0]    -> total_spent = 335

With a budget of 400 the matching pool is 65, alpha = floor(65e18 / 190) and
the allocations floor to [73, 301, 25, 0] (one unit of dust). A budget of 430
gives alpha = 0.5 exactly and allocations [80, 325, 25, 0].
"""

from pathlib import Path

DATA_DIR = Path(__file__).parent / "data"
TALLY_SMALL = DATA_DIR / "tally_small.json"

SMALL_TALLY = (10, 20, 5, 0)
SMALL_SPENT = (60, 250, 25, 0)
SMALL_TOTAL_SPENT = 335
SMALL_SALT = 0x1F
SMALL_TQV = 525

ALPHA_BUDGET_400 = 342105263157894736
ALLOC_BUDGET_400 = (73, 301, 25, 0)
ALLOC_BUDGET_430 = (80, 325, 25, 0)

OWNERS = {0: "alice", 1: "bob", 2: "carol", 3: "dave"}


__all__ = [
    "DATA_DIR",
    "TALLY_SMALL",
    "SMALL_TALLY",
    "SMALL_SPENT",
    "SMALL_TOTAL_SPENT",
    "SMALL_SALT",
    "SMALL_TQV",
    "ALPHA_BUDGET_400",
    "ALLOC_BUDGET_400",
    "ALLOC_BUDGET_430",
    "OWNERS",
]
