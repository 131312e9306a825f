from typing import Dict, Optional

from utils import config
from utils.errors import InvalidPromoCodeError


def lookup_discount(code: str, table: Optional[Dict[str, float]] = None) -> float:
    """Flat discount for a promo code (case-insensitive)."""
    codes = config.PROMO_CODES if table is None else table
    normalized = (code or "").strip().upper()
    if normalized not in codes:
        raise InvalidPromoCodeError(code)
    return float(codes[normalized])


def final_total(grand_total: float, discount: float) -> float:
    """Amount payable after the discount; never below zero."""
    return round(max(0.0, grand_total - discount), config.CURRENCY_PLACES)
