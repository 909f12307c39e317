"""
Exact decimal helpers shared by models, the calculator and request parsing.

Storage precision:
- money (prices, discounts, tax, totals): 4 decimal places
- quantities: 3 decimal places (weights, lengths)
- tax rates: 2 decimal places (percent)

Floats never enter the arithmetic: every value is converted through str().
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_PLACES = 4
QTY_PLACES = 3
RATE_PLACES = 2

MONEY_STEP = Decimal(1).scaleb(-MONEY_PLACES)
QTY_STEP = Decimal(1).scaleb(-QTY_PLACES)
RATE_STEP = Decimal(1).scaleb(-RATE_PLACES)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value, *, field: str = "value") -> Decimal:
    """Convert int/str/float/Decimal to Decimal; bools and junk raise ValueError."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a number")
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"{field} must be a number")
    else:
        raise ValueError(f"{field} must be a number")

    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def has_at_most_places(value: Decimal, places: int) -> bool:
    return value == value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_STEP, rounding=ROUND_HALF_UP)


def quantize_qty(value: Decimal) -> Decimal:
    return value.quantize(QTY_STEP, rounding=ROUND_HALF_UP)


def decimal_str(value) -> str | None:
    """JSON-safe rendering that keeps trailing precision stable."""
    if value is None:
        return None
    return format(Decimal(value), "f")
