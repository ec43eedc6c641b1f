from __future__ import annotations

"""
qfund.economics
===============

Settlement arithmetic: scaled-integer helpers and the alpha-capped quadratic
allocation formula. Everything here is pure; no module in this subpackage
holds state or performs IO.
"""


from typing import List

from .allocation import Alpha, compute_allocation, compute_alpha, total_quadratic_votes
from .fixedpoint import PRECISION, scaled_div, scaled_mul

__all__: List[str] = [
    "PRECISION",
    "scaled_mul",
    "scaled_div",
    "Alpha",
    "compute_alpha",
    "compute_allocation",
    "total_quadratic_votes",
]
