from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import ValidationError

MONEY_PLACES = Decimal("0.01")
QUANTITY_PLACES = Decimal("0.001")
ZERO = Decimal("0")


def to_decimal(value, field: str = "value") -> Decimal:
    """
    Coerce user/DB input to Decimal.

    Floats go through str() so 0.1 stays 0.1. Booleans, NaN and infinities
    are rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


# Upper bound for prices, costs and line totals; keeps Numeric(12, 2) from overflowing
MAX_MONEY = Decimal("9999999999.99")
# Upper bound for quantities; Numeric(14, 3)
MAX_QUANTITY = Decimal("99999999999.999")


def _quantize(value, places: Decimal, field: str) -> Decimal:
    try:
        return Decimal(value).quantize(places, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"{field} is out of range")


def quantize_money(value, field: str = "amount") -> Decimal:
    """Nearest paisa/cent, half-up."""
    return _quantize(value, MONEY_PLACES, field)


def quantize_quantity(value, field: str = "quantity") -> Decimal:
    # SQLite hands back SUM() of NUMERIC columns as float
    if isinstance(value, float):
        value = Decimal(str(value))
    return _quantize(value or 0, QUANTITY_PLACES, field)


def check_limit(value: Decimal, limit: Decimal, field: str) -> Decimal:
    """Reject magnitudes the Numeric columns cannot store."""
    if abs(value) > limit:
        raise ValidationError(f"{field} cannot exceed {limit}")
    return value
