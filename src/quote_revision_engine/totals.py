from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .models.quote import QuoteItem

CENT = Decimal("0.01")


def round_currency(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def calculate_total(items: Iterable["QuoteItem"]) -> Decimal:
    """Sum ``quantity * unit_price`` over ``items``, rounded half-to-even to cents.

    Item totals are summed unrounded so the result does not drift with the
    number of line items.
    """
    total = sum((item.quantity * item.unit_price for item in items), Decimal("0"))
    return round_currency(total)


__all__ = ["CENT", "calculate_total", "round_currency"]
