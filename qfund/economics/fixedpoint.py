from __future__ import annotations
"""
Scaled-integer arithmetic used wherever money or ratios are computed.

Python ints are arbitrary precision, so intermediate products never overflow;
the only truncation is the final floor division. Rounding is always toward
zero for the non-negative operands we accept (i.e. floor), so a sum of payouts
computed this way can never exceed the real-valued total.

>>> scaled_mul(3 * 10**17, 10, 10**18)
3
>>> scaled_div(1, 3, 10**18)
333333333333333333
"""


from typing import Final

from ..errors import DivisionByZero, InputError

PRECISION: Final[int] = 10**18


def _check(name: str, v: int) -> None:
    if isinstance(v, bool) or not isinstance(v, int):
        raise InputError(f"{name} must be int, got {type(v).__name__}")
    if v < 0:
        raise InputError(f"{name} must be non-negative, got {v}")


def _check_precision(precision: int) -> None:
    if isinstance(precision, bool) or not isinstance(precision, int) or precision <= 0:
        raise InputError(f"precision must be a positive int, got {precision!r}")


def scaled_mul(a: int, b: int, precision: int = PRECISION) -> int:
    """floor(a * b / precision)."""
    _check("a", a)
    _check("b", b)
    _check_precision(precision)
    return (a * b) // precision


def scaled_div(a: int, b: int, precision: int = PRECISION) -> int:
    """floor(a * precision / b). Raises DivisionByZero when b == 0."""
    _check("a", a)
    _check("b", b)
    _check_precision(precision)
    if b == 0:
        raise DivisionByZero("scaled_div by zero", details={"a": a, "precision": precision})
    return (a * precision) // b


__all__ = ["PRECISION", "scaled_mul", "scaled_div"]
