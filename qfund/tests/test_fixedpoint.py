from __future__ import annotations

import pytest

from qfund.economics.fixedpoint import PRECISION, scaled_div, scaled_mul
from qfund.errors import DivisionByZero, FundArithmeticError, InputError


def test_precision_is_1e18():
    assert PRECISION == 10**18


def test_scaled_mul_floors():
    assert scaled_mul(3 * 10**17, 10) == 3
    assert scaled_mul(PRECISION // 2, 7) == 3
    assert scaled_mul(0, 123) == 0
    assert scaled_mul(5, 7, precision=1) == 35


def test_scaled_div_floors():
    assert scaled_div(1, 3) == 333_333_333_333_333_333
    assert scaled_div(65, 190) == 342_105_263_157_894_736
    assert scaled_div(95, 190) == PRECISION // 2


def test_scaled_div_by_zero_is_an_arithmetic_error():
    with pytest.raises(DivisionByZero) as ei:
        scaled_div(1, 0)
    assert isinstance(ei.value, FundArithmeticError)
    assert isinstance(ei.value, ArithmeticError)
    assert ei.value.to_dict()["code"] == "QFUND_DIVISION_BY_ZERO"


def test_big_operands_do_not_lose_precision():
    a = 10**40 + 7
    assert scaled_mul(a, PRECISION) == a
    assert scaled_div(a, PRECISION) == a


@pytest.mark.parametrize("a,b", [(-1, 1), (1, -1), (True, 1), (1.5, 2)])
def test_rejects_non_int_or_negative(a, b):
    with pytest.raises(InputError):
        scaled_mul(a, b)
    with pytest.raises(InputError):
        scaled_div(a, b if b != 0 else 1)


def test_rejects_bad_precision():
    with pytest.raises(InputError):
        scaled_mul(1, 1, precision=0)
    with pytest.raises(InputError):
        scaled_div(1, 1, precision=-5)
