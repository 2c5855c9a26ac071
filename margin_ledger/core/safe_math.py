"""Conversion & safety kernel: checked integer arithmetic and unit conversion.

Every function is stateless and operates on plain Python ints. Python ints do
not overflow, so the 256-bit word limits of the settlement layer are enforced
explicitly: anything outside the target range raises
``ArithmeticOverflowError`` instead of being silently accepted.

Rounding is always explicit. The rule for callers is: round UP for anything a
counterparty must pay or have seized, round DOWN for anything a counterparty
is owed. That keeps every rounding residue on the solvent side of the ledger.
"""

from __future__ import annotations

from enum import Enum, unique

from .errors import ArithmeticOverflowError

# Word bounds
UINT256_MAX: int = (1 << 256) - 1
INT256_MAX: int = (1 << 255) - 1
INT256_MIN: int = -(1 << 255)

# Fixed-point scales
PRICE_DECIMALS: int = 8
PRICE_SCALE: int = 100_000_000  # 1e8
BPS_SCALE: int = 10_000

# 10**77 < 2**256 < 10**78
MAX_POW10_EXPONENT: int = 77


@unique
class Rounding(Enum):
    DOWN = "down"
    UP = "up"


# -- Checked arithmetic ------------------------------------------------------

def _check_range(value: int, *, signed: bool, op: str) -> int:
    if signed:
        if value < INT256_MIN or value > INT256_MAX:
            raise ArithmeticOverflowError(f"int256 overflow in {op}")
    elif value < 0 or value > UINT256_MAX:
        raise ArithmeticOverflowError(f"uint256 overflow in {op}")
    return value


def checked_add(a: int, b: int, *, signed: bool = False) -> int:
    _check_range(a, signed=signed, op="add")
    _check_range(b, signed=signed, op="add")
    return _check_range(a + b, signed=signed, op="add")


def checked_sub(a: int, b: int, *, signed: bool = False) -> int:
    _check_range(a, signed=signed, op="sub")
    _check_range(b, signed=signed, op="sub")
    return _check_range(a - b, signed=signed, op="sub")


def checked_mul(a: int, b: int, *, signed: bool = False) -> int:
    _check_range(a, signed=signed, op="mul")
    _check_range(b, signed=signed, op="mul")
    return _check_range(a * b, signed=signed, op="mul")


def abs_val(x: int) -> int:
    """Absolute value of *x*."""
    return x if x >= 0 else -x


def pow10(exponent: int) -> int:
    """``10 ** exponent`` for exponents that fit a 256-bit word."""
    if not isinstance(exponent, int) or isinstance(exponent, bool) or exponent < 0:
        raise ArithmeticOverflowError(f"invalid decimal exponent: {exponent!r}")
    if exponent > MAX_POW10_EXPONENT:
        raise ArithmeticOverflowError(f"decimal exponent {exponent} exceeds {MAX_POW10_EXPONENT}")
    return 10 ** exponent


def mul_div(a: int, b: int, denominator: int, rounding: Rounding) -> int:
    """``a * b / denominator`` over uint256 with explicit rounding."""
    if denominator <= 0:
        raise ArithmeticOverflowError("division by zero")
    product = checked_mul(a, b)
    q, r = divmod(product, denominator)
    if rounding is Rounding.UP and r:
        q = checked_add(q, 1)
    return q


def bps_of(amount: int, bps: int, rounding: Rounding) -> int:
    """``amount * bps / 10000``."""
    return mul_div(amount, bps, BPS_SCALE, rounding)


# -- Unit conversion ---------------------------------------------------------

def price_to_native(value_e8: int, decimals: int, rounding: Rounding) -> int:
    """Convert an 8-decimal fixed-point value into `decimals` native units."""
    if decimals >= PRICE_DECIMALS:
        return checked_mul(value_e8, pow10(decimals - PRICE_DECIMALS))
    return mul_div(value_e8, 1, pow10(PRICE_DECIMALS - decimals), rounding)


def native_to_price(amount: int, decimals: int, rounding: Rounding) -> int:
    """Convert `decimals` native units into an 8-decimal fixed-point value."""
    if decimals <= PRICE_DECIMALS:
        return checked_mul(amount, pow10(PRICE_DECIMALS - decimals))
    return mul_div(amount, 1, pow10(decimals - PRICE_DECIMALS), rounding)


def convert_amount(
    amount: int,
    *,
    from_decimals: int,
    to_decimals: int,
    price_e8: int,
    rounding: Rounding,
) -> int:
    """Value of `amount` (native units of asset A) in native units of asset B.

    `price_e8` is the price of one whole A in whole B, scaled by 1e8.
    """
    numerator = checked_mul(amount, price_e8)
    scale_to = pow10(to_decimals)
    scale_from = pow10(checked_add(from_decimals, PRICE_DECIMALS))
    return mul_div(numerator, scale_to, scale_from, rounding)


def amount_for_value(
    value: int,
    *,
    value_decimals: int,
    amount_decimals: int,
    price_e8: int,
    rounding: Rounding,
) -> int:
    """Inverse of `convert_amount`: native units of asset A worth `value` native units of B."""
    if price_e8 <= 0:
        raise ArithmeticOverflowError("price must be positive")
    numerator = checked_mul(value, PRICE_SCALE)
    denominator = checked_mul(price_e8, pow10(value_decimals))
    return mul_div(numerator, pow10(amount_decimals), denominator, rounding)


def intrinsic_value_e8(*, is_call: bool, strike_e8: int, spot_e8: int) -> int:
    """Positive intrinsic difference between spot and strike (floored at zero)."""
    if is_call:
        return spot_e8 - strike_e8 if spot_e8 > strike_e8 else 0
    return strike_e8 - spot_e8 if strike_e8 > spot_e8 else 0
