# Overview: Exact money primitives; all amounts are integer cents.

"""
Money & quantity primitives.

Hard rules:
- Money is stored and computed as integer minor units (cents). No floats.
- Decimal is used only for parsing and percentage math.
- Rounding is half away from zero (Decimal ROUND_HALF_UP), never banker's.
- Rates are expressed in basis points (1 bps = 0.01%).
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

BPS_SCALE = 10_000
CENT = Decimal("0.01")
WHOLE = Decimal("1")

# Hard ceiling to keep values well inside a 64-bit column
MAX_AMOUNT_CENTS = 999_999_999_999


def to_cents(value, *, field: str = "amount") -> int:
    """
    Normalize an incoming money value to integer cents.

    Accepts:
    - int (already cents)
    - Decimal or str in major units with at most two decimals ("1250.50")

    Rejects bool, float, more than two decimals, and non-numeric text.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a money amount")

    if isinstance(value, int):
        cents = value
    elif isinstance(value, (Decimal, str)):
        try:
            dec = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal amount")
        if not dec.is_finite():
            raise ValidationError(f"{field} must be a finite amount")
        if dec != dec.quantize(CENT):
            raise ValidationError(f"{field} may have at most two decimal places")
        cents = int((dec * 100).to_integral_value())
    else:
        raise ValidationError(f"{field} must be a money amount, not {type(value).__name__}")

    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} is out of range")
    return cents


def require_positive_cents(value: int, *, field: str = "amount") -> int:
    cents = to_cents(value, field=field)
    if cents <= 0:
        raise ValidationError(f"{field} must be positive")
    return cents


def require_non_negative_cents(value: int, *, field: str = "amount") -> int:
    cents = to_cents(value, field=field)
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative")
    return cents


def require_quantity(value, *, field: str = "quantity") -> int:
    """Quantities are whole positive units."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be a whole integer unit")
    if value <= 0:
        raise ValidationError(f"{field} must be positive")
    return value


def percent_of(amount_cents: int, rate_bps: int) -> int:
    """amount x rate, rounded half away from zero to a whole cent."""
    raw = Decimal(amount_cents) * Decimal(rate_bps) / Decimal(BPS_SCALE)
    return int(raw.quantize(WHOLE, rounding=ROUND_HALF_UP))


def bps_of(part_cents: int, whole_cents: int) -> int:
    """Share of `whole_cents` that `part_cents` represents, in basis points."""
    if whole_cents <= 0:
        return 0
    raw = Decimal(part_cents) * Decimal(BPS_SCALE) / Decimal(whole_cents)
    return int(raw.quantize(WHOLE, rounding=ROUND_HALF_UP))


def format_cents(cents: int) -> str:
    """1234550 -> '12345.50'"""
    return str((Decimal(cents) / 100).quantize(CENT))
