# Overview: Exact decimal money helpers; amounts are stored as base-10 strings.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Iterable

from .errors import InvalidInputError


TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# $9,999,999.99 ceiling keeps String(32) columns and totals bounded
MAX_AMOUNT = Decimal("9999999.99")


def parse_amount(value, field: str = "price") -> Decimal:
    """
    Parse a client-supplied amount into a Decimal truncated to two fraction digits.

    Accepts strings ("12.5", " 3 ") and ints. Floats are converted through
    their shortest repr so 0.1 stays "0.10" instead of 0.1000000000000000055.
    Negative and non-finite values are rejected, as are strings in scientific notation.
    """
    if value is None or isinstance(value, bool):
        raise InvalidInputError(f"{field} is required")

    if isinstance(value, (int, float)):
        # repr of tiny floats uses exponent form ("1e-07"); Decimal reads it exactly
        raw = repr(value)
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise InvalidInputError(f"{field} cannot be blank")
        if "e" in raw.lower():
            raise InvalidInputError(f"{field} must be a plain decimal (scientific notation not allowed)")
    else:
        raise InvalidInputError(f"{field} must be a decimal string")

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise InvalidInputError(f"{field} must be a decimal string")

    if not amount.is_finite():
        raise InvalidInputError(f"{field} must be a finite amount")

    amount = amount.quantize(TWO_PLACES, rounding=ROUND_DOWN)
    if amount < 0:
        raise InvalidInputError(f"{field} must be >= 0")
    if amount > MAX_AMOUNT:
        raise InvalidInputError(f"{field} cannot exceed {MAX_AMOUNT}")
    if amount == 0:
        return ZERO
    return amount


def to_decimal(stored: str | None) -> Decimal:
    """Read an amount that was written by format_amount()."""
    if stored is None or stored == "":
        return ZERO
    return Decimal(stored).quantize(TWO_PLACES, rounding=ROUND_DOWN)


def format_amount(amount: Decimal) -> str:
    return str(amount.quantize(TWO_PLACES, rounding=ROUND_DOWN))


def line_total(price: str | Decimal, quantity: int) -> Decimal:
    unit = price if isinstance(price, Decimal) else to_decimal(price)
    return (unit * quantity).quantize(TWO_PLACES, rounding=ROUND_DOWN)


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for amount in amounts:
        total += amount
    return total.quantize(TWO_PLACES, rounding=ROUND_DOWN)
