"""Arbitrary-precision amount helpers. Amounts never pass through float."""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Any, Union

from .errors import ValidationError

AmountLike = Union[str, int, Decimal]


def parse_amount(value: Any, field: str = "amount", allow_zero: bool = False) -> Decimal:
    """Parse a decimal string (or int/Decimal) into a finite Decimal."""
    if isinstance(value, float):
        raise ValidationError(f"{field} must be a decimal string, not a float")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} is not a valid decimal: {value!r}") from e

    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be greater than zero", {"field": field, "value": str(value)})
    return amount


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human amount to integer base units (wei, lamports...)."""
    with localcontext() as ctx:
        ctx.prec = 80
        scaled = (amount * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(units: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(units) / (Decimal(10) ** decimals)


def format_amount(amount: Decimal) -> str:
    """Plain decimal string without exponent or trailing zeros."""
    text = format(amount.normalize(), "f")
    return text if text != "-0" else "0"
