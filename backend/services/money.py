from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def money(value: object) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100, 0 si whole <= 0."""
    if whole <= 0:
        return ZERO.quantize(CENT)
    return (part / whole * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


# Échelles des colonnes Numeric(14, 2) / Numeric(14, 3)
MONEY_PLACES = 2
QTY_PLACES = 3


def fits_scale(value: Decimal, places: int) -> bool:
    """True si value s'écrit sans perte avec `places` décimales (zéros finaux admis)."""
    if not value.is_finite():
        return False
    try:
        return value == value.quantize(Decimal(1).scaleb(-places))
    except InvalidOperation:
        return False
