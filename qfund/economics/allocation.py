from __future__ import annotations
"""
Alpha-capped quadratic allocation.

Given a sealed tally (per-recipient spent voice credits `s_i` and quadratic
vote tallies `t_i`, where `t_i` is the sum of square roots of individual
contributions), the round funds a blend of the quadratic-funding optimum and
plain reimbursement:

    contributions = total_spent * VCF
    matching_pool = budget - contributions
    alpha         = floor(matching_pool * P / (VCF * (sum(t_i^2) - total_spent)))

    amount_i = floor((alpha * VCF * t_i^2 + (P - alpha) * VCF * s_i) / P)

`P` is the fixed-point precision (1e18) and `VCF` converts voice credits into
the settlement asset's smallest unit. With alpha == P a recipient receives the
full quadratic amount `VCF * t_i^2`; with alpha == 0 it receives back exactly
what was spent on it.

Both the alpha division and the final division floor. Since
sum(t_i^2) == total_quadratic_votes and sum(s_i) == total_spent, the sum of all
payouts is bounded by `budget`; whatever is left is dust.

Example
-------
>>> alpha = Alpha(value=PRECISION // 2)
>>> compute_allocation(100, 50, alpha)
5025
"""


from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from ..errors import (BudgetExceedsDemand, BudgetTooSmall, InputError, InvalidTotals,
                      NoMatchingEffect)
from .fixedpoint import PRECISION, scaled_div

Amount = int


@dataclass(frozen=True)
class Alpha:
    """Scaled ratio `value / precision` of the quadratic boost the budget can fund."""
    value: int
    precision: int = PRECISION
    clamped: bool = False

    def __post_init__(self) -> None:
        if self.precision <= 0:
            raise InputError(f"alpha precision must be positive, got {self.precision}")
        if not (0 <= self.value <= self.precision):
            raise InputError(
                f"alpha must be within [0, {self.precision}], got {self.value}",
                details={"alpha": self.value, "precision": self.precision},
            )

    @property
    def complement(self) -> int:
        return self.precision - self.value

    def as_fraction(self) -> float:
        """Human-readable approximation; never used for money."""
        return self.value / self.precision

    def to_dict(self) -> Dict[str, int | bool]:
        return {"value": self.value, "precision": self.precision, "clamped": self.clamped}


def _nonneg_int(name: str, v: int) -> int:
    if isinstance(v, bool) or not isinstance(v, int):
        raise InputError(f"{name} must be int, got {type(v).__name__}")
    if v < 0:
        raise InputError(f"{name} must be non-negative, got {v}", details={name: v})
    return v


def total_quadratic_votes(tallies: Iterable[int]) -> int:
    """sum(t_i^2) over all recipients."""
    return sum(_nonneg_int("tally", t) ** 2 for t in tallies)


def compute_alpha(
    budget: Amount,
    total_spent: int,
    total_quadratic_votes: int,
    *,
    voice_credit_factor: int = 1,
    precision: int = PRECISION,
    overflow: str = "reject",
    zero_boost: str = "reject",
) -> Alpha:
    """
    Compute the round's alpha.

    Raises
    ------
    BudgetTooSmall        budget < total_spent * voice_credit_factor
    InvalidTotals         total_quadratic_votes < total_spent
    NoMatchingEffect      total_quadratic_votes == total_spent (zero_boost="reject")
    BudgetExceedsDemand   alpha > precision (overflow="reject")
    """
    _nonneg_int("budget", budget)
    _nonneg_int("total_spent", total_spent)
    _nonneg_int("total_quadratic_votes", total_quadratic_votes)
    if voice_credit_factor <= 0:
        raise InputError(f"voice_credit_factor must be positive, got {voice_credit_factor}")
    if overflow not in ("reject", "clamp"):
        raise InputError(f"unknown overflow policy {overflow!r}")
    if zero_boost not in ("reject", "zero"):
        raise InputError(f"unknown zero_boost policy {zero_boost!r}")

    contributions = total_spent * voice_credit_factor
    if budget < contributions:
        raise BudgetTooSmall(budget=budget, contributions=contributions)
    matching_pool = budget - contributions

    if total_quadratic_votes < total_spent:
        raise InvalidTotals(
            "total quadratic votes below total spent",
            details={"total_quadratic_votes": total_quadratic_votes, "total_spent": total_spent},
        )
    if total_quadratic_votes == total_spent:
        if zero_boost == "zero":
            return Alpha(value=0, precision=precision)
        raise NoMatchingEffect(
            "no recipient has a quadratic boost",
            details={"total_quadratic_votes": total_quadratic_votes, "total_spent": total_spent},
        )

    value = scaled_div(
        matching_pool, voice_credit_factor * (total_quadratic_votes - total_spent), precision
    )
    if value > precision:
        if overflow == "clamp":
            return Alpha(value=precision, precision=precision, clamped=True)
        raise BudgetExceedsDemand(alpha=value, precision=precision)
    return Alpha(value=value, precision=precision)


def compute_allocation(
    recipient_tally: int,
    recipient_spent: int,
    alpha: Alpha,
    *,
    voice_credit_factor: int = 1,
) -> Amount:
    """floor((alpha*VCF*t^2 + (P-alpha)*VCF*s) / P)."""
    _nonneg_int("recipient_tally", recipient_tally)
    _nonneg_int("recipient_spent", recipient_spent)
    quadratic = alpha.value * voice_credit_factor * recipient_tally**2
    linear = alpha.complement * voice_credit_factor * recipient_spent
    return (quadratic + linear) // alpha.precision


def iter_allocations(
    spent: Sequence[int],
    tallies: Sequence[int],
    alpha: Alpha,
    *,
    voice_credit_factor: int = 1,
) -> Iterator[Tuple[int, Amount]]:
    """Yield (recipient_index, amount) for every recipient, in index order."""
    if len(spent) != len(tallies):
        raise InputError(
            "spent and tally arrays differ in length",
            details={"spent": len(spent), "tally": len(tallies)},
        )
    for i, (s, t) in enumerate(zip(spent, tallies)):
        yield i, compute_allocation(t, s, alpha, voice_credit_factor=voice_credit_factor)


def allocation_table(
    spent: Sequence[int],
    tallies: Sequence[int],
    alpha: Alpha,
    *,
    voice_credit_factor: int = 1,
) -> List[Dict[str, int]]:
    return [
        {"recipient_index": i, "spent": spent[i], "tally": tallies[i], "amount": amt}
        for i, amt in iter_allocations(spent, tallies, alpha, voice_credit_factor=voice_credit_factor)
    ]


def dust(budget: Amount, amounts: Iterable[Amount]) -> Amount:
    """Budget left unallocated by floor rounding (never negative for a consistent tally)."""
    return budget - sum(amounts)


__all__ = [
    "Amount",
    "Alpha",
    "total_quadratic_votes",
    "compute_alpha",
    "compute_allocation",
    "iter_allocations",
    "allocation_table",
    "dust",
]
