import pytest

from mcp_tiered_ico import safe_math
from mcp_tiered_ico.errors import ArithmeticOverflow, ArithmeticUnderflow, DivisionByZero, SaleError
from mcp_tiered_ico.safe_math import UINT256_MAX


def test_basic_operations():
    assert safe_math.add(2, 3) == 5
    assert safe_math.sub(5, 3) == 2
    assert safe_math.mul(4, 5) == 20
    assert safe_math.div(7, 2) == 3


def test_add_overflow():
    assert safe_math.add(UINT256_MAX - 1, 1) == UINT256_MAX
    with pytest.raises(ArithmeticOverflow):
        safe_math.add(UINT256_MAX, 1)


def test_mul_overflow():
    with pytest.raises(ArithmeticOverflow):
        safe_math.mul(2**255, 2)


def test_sub_underflow():
    assert safe_math.sub(3, 3) == 0
    with pytest.raises(ArithmeticUnderflow):
        safe_math.sub(1, 2)


def test_negative_operand_is_rejected():
    with pytest.raises(ArithmeticUnderflow):
        safe_math.add(-1, 5)


def test_division_by_zero():
    with pytest.raises(DivisionByZero):
        safe_math.div(1, 0)


def test_errors_are_arithmetic_and_sale_errors():
    for error in (ArithmeticOverflow, ArithmeticUnderflow, DivisionByZero):
        assert issubclass(error, ArithmeticError)
        assert issubclass(error, SaleError)


def test_percent_rounds_down():
    assert safe_math.percent(3000, 10) == 300
    assert safe_math.percent(15, 10) == 1


def test_scale_between_decimals():
    # 1 whole unit at 18 decimals becomes 1 whole unit at 3 decimals
    assert safe_math.scale(10**18, 18, 3) == 1000
    assert safe_math.scale(5 * 10**17, 18, 3) == 500
    assert safe_math.scale(1, 18, 3) == 0
