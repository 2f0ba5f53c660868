"""
Checked uint256 arithmetic.

Every quantity in the sale (contributions, rates, issuance, supply ceilings) is a
non-negative integer that must fit in 256 bits. These helpers fail loudly instead
of wrapping, so an overflowing multiplication aborts the enclosing operation.
"""
from mcp_tiered_ico.errors import ArithmeticOverflow, ArithmeticUnderflow, DivisionByZero

UINT256_MAX = 2**256 - 1


def _check(value: int) -> int:
    if value < 0:
        raise ArithmeticUnderflow(f"Result {value} is negative")
    if value > UINT256_MAX:
        raise ArithmeticOverflow("Result exceeds uint256 range")
    return value


def add(a: int, b: int) -> int:
    """Adds two amounts, raising ArithmeticOverflow past uint256."""
    return _check(_check(a) + _check(b))


def sub(a: int, b: int) -> int:
    """Subtracts b from a, raising ArithmeticUnderflow if b > a."""
    return _check(_check(a) - _check(b))


def mul(a: int, b: int) -> int:
    """Multiplies two amounts, raising ArithmeticOverflow past uint256."""
    return _check(_check(a) * _check(b))


def div(a: int, b: int) -> int:
    """Floor division, raising DivisionByZero when b is zero."""
    if _check(b) == 0:
        raise DivisionByZero(f"Cannot divide {a} by zero")
    return _check(a) // b


def percent(value: int, pct: int) -> int:
    """Returns pct percent of value, rounded down."""
    return div(mul(value, pct), 100)


def scale(amount: int, from_decimals: int, to_decimals: int) -> int:
    """Converts an amount between two decimal scales, rounding down."""
    return div(mul(amount, 10**to_decimals), 10**from_decimals)
