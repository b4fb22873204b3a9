from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
CENT = Decimal("0.01")


def coerce_decimal(value: Decimal | float | int | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal | float | int | str | None) -> Decimal:
    """Round to currency minor units, half away from zero."""
    return coerce_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
