from functools import lru_cache
from typing import Iterable, Optional, Tuple

from db.models import CartLine, CartTotals
from utils import config


def _round(value: float) -> float:
    return round(value, config.CURRENCY_PLACES)


@lru_cache(maxsize=256)
def _totals_for(lines: Tuple[CartLine, ...], tax_rate: float) -> CartTotals:
    subtotal = _round(sum(line.unit_price * line.quantity for line in lines))
    tax = _round(subtotal * tax_rate)
    return CartTotals(
        total_item_count=sum(line.quantity for line in lines),
        subtotal=subtotal,
        tax=tax,
        grand_total=_round(subtotal + tax),
    )


def compute_totals(lines: Iterable[CartLine], tax_rate: Optional[float] = None) -> CartTotals:
    """
    Derive item count, subtotal, tax and grand total from cart lines.

    Pure and memoized on the (immutable) line tuple, so repeated reads of an
    unchanged cart cost nothing.
    """
    rate = config.TAX_RATE if tax_rate is None else tax_rate
    return _totals_for(tuple(lines), rate)
