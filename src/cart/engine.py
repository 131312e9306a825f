from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from cart.persistence import CollectionRepository
from cart.totals import compute_totals
from db import crud
from db.cache import LocalCache
from db.models import CartLine, CartTotals, Order, OrderStatus, Product, lines_to_dicts
from utils import config
from utils.errors import DataShapeError
from utils.logger import get_logger

_logger = get_logger(__name__)


def _new_order_id(when: datetime) -> str:
    return f"ORD-{int(when.timestamp() * 1000)}-{secrets.token_hex(2)}"


def _lines_from_cache(raw: List[dict]) -> List[CartLine]:
    lines = []
    for entry in raw:
        try:
            lines.append(CartLine.from_dict(entry))
        except (KeyError, TypeError, ValueError) as exc:
            _logger.warning(f"Dropping unreadable cached line {entry!r}: {exc}")
    return lines


class CartEngine:
    """
    Active cart, saved-for-later shelf and local order history of one client.

    Invariants:
      - a product id appears at most once in the cart and at most once on the
        shelf, never in both
      - every line has quantity >= 1

    Each mutation rewrites the affected collection to the local cache; the
    in-memory copy is authoritative if that write fails.
    """

    def __init__(self, cache: LocalCache, tax_rate: Optional[float] = None):
        self.tax_rate = config.TAX_RATE if tax_rate is None else tax_rate
        self._cart_repo = CollectionRepository(cache, config.CART_KEY)
        self._saved_repo = CollectionRepository(cache, config.SAVED_FOR_LATER_KEY)
        self._orders_repo = CollectionRepository(cache, config.ORDERS_KEY)

        raw_cart, self._cart_version = self._cart_repo.load()
        raw_saved, self._saved_version = self._saved_repo.load()
        self._orders_raw, self._orders_version = self._orders_repo.load()

        self._lines: List[CartLine] = self._sanitize(_lines_from_cache(raw_cart))
        cart_ids = {line.product_id for line in self._lines}
        self._saved: List[CartLine] = [
            line
            for line in self._sanitize(_lines_from_cache(raw_saved))
            if line.product_id not in cart_ids
        ]

    @staticmethod
    def _sanitize(lines: List[CartLine]) -> List[CartLine]:
        seen = set()
        result = []
        for line in lines:
            if not line.product_id or line.quantity < 1 or line.product_id in seen:
                continue
            seen.add(line.product_id)
            result.append(line)
        return result

    # ---------------------------
    # Read side
    # ---------------------------

    @property
    def items(self) -> Tuple[CartLine, ...]:
        return tuple(self._lines)

    @property
    def saved_for_later(self) -> Tuple[CartLine, ...]:
        return tuple(self._saved)

    @property
    def orders(self) -> List[Order]:
        """Local order history, newest first."""
        history = []
        for raw in self._orders_raw:
            try:
                history.append(crud.normalize_order(str(raw.get("id", "")), raw))
            except DataShapeError as exc:
                _logger.warning(f"Skipping cached order: {exc}")
        return history

    @property
    def totals(self) -> CartTotals:
        return compute_totals(self._lines, self.tax_rate)

    @property
    def total_items(self) -> int:
        return self.totals.total_item_count

    @property
    def subtotal(self) -> float:
        return self.totals.subtotal

    @property
    def tax(self) -> float:
        return self.totals.tax

    @property
    def total(self) -> float:
        return self.totals.grand_total

    def is_empty(self) -> bool:
        return not self._lines

    def _find(self, lines: List[CartLine], product_id: str) -> Optional[int]:
        for idx, line in enumerate(lines):
            if line.product_id == product_id:
                return idx
        return None

    # ---------------------------
    # Persistence
    # ---------------------------

    def _persist_cart(self) -> None:
        items, self._cart_version = self._cart_repo.save(
            lines_to_dicts(self._lines), self._cart_version
        )
        self._lines = self._sanitize(_lines_from_cache(items))

    def _persist_saved(self) -> None:
        items, self._saved_version = self._saved_repo.save(
            lines_to_dicts(self._saved), self._saved_version
        )
        cart_ids = {line.product_id for line in self._lines}
        self._saved = [
            line
            for line in self._sanitize(_lines_from_cache(items))
            if line.product_id not in cart_ids
        ]

    def _persist_orders(self) -> None:
        self._orders_raw, self._orders_version = self._orders_repo.save(
            self._orders_raw, self._orders_version
        )

    # ---------------------------
    # Cart mutations
    # ---------------------------

    def add_item(self, product: Product) -> None:
        """Add one unit; a product already in the cart gets its quantity bumped."""
        idx = self._find(self._lines, product.id)
        if idx is not None:
            line = self._lines[idx]
            self._lines[idx] = line.with_quantity(line.quantity + 1)
        else:
            self._lines.append(
                CartLine(
                    product_id=product.id,
                    title=product.title,
                    unit_price=product.price,
                    image=product.image,
                    quantity=1,
                )
            )
        self._persist_cart()

    def remove_item(self, product_id: str) -> None:
        idx = self._find(self._lines, product_id)
        if idx is None:
            return
        del self._lines[idx]
        self._persist_cart()

    def update_quantity(self, product_id: str, quantity: int) -> None:
        """Set (not add to) the quantity; zero or below removes the line."""
        if quantity <= 0:
            self.remove_item(product_id)
            return
        idx = self._find(self._lines, product_id)
        if idx is None:
            return
        self._lines[idx] = self._lines[idx].with_quantity(int(quantity))
        self._persist_cart()

    def clear_cart(self) -> None:
        self._lines = []
        self._persist_cart()

    # ---------------------------
    # Saved for later
    # ---------------------------

    def save_for_later(self, product_id: str) -> None:
        idx = self._find(self._lines, product_id)
        if idx is None:
            return
        line = self._lines.pop(idx)
        if self._find(self._saved, product_id) is None:
            self._saved.append(line)
        self._persist_cart()
        self._persist_saved()

    def move_to_cart(self, product_id: str) -> None:
        shelf_idx = self._find(self._saved, product_id)
        if shelf_idx is None:
            return
        line = self._saved.pop(shelf_idx)
        idx = self._find(self._lines, product_id)
        if idx is not None:
            existing = self._lines[idx]
            self._lines[idx] = existing.with_quantity(existing.quantity + line.quantity)
        else:
            self._lines.append(line)
        self._persist_saved()
        self._persist_cart()

    def remove_from_saved(self, product_id: str) -> None:
        idx = self._find(self._saved, product_id)
        if idx is None:
            return
        del self._saved[idx]
        self._persist_saved()

    # ---------------------------
    # Orders
    # ---------------------------

    def place_order(self, when: Optional[datetime] = None) -> Optional[Order]:
        """
        Snapshot the cart into a pending Order, clear the cart and prepend the
        order to the local history. Returns None, touching nothing, when the
        cart is empty. Remote persistence is the caller's job.
        """
        if not self._lines:
            return None
        when = when or datetime.now(timezone.utc)
        totals = self.totals
        order = Order(
            order_id=_new_order_id(when),
            placed_at=when.isoformat(),
            items=tuple(self._lines),
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.grand_total,
            status=OrderStatus.PENDING,
        )
        self._orders_raw = [order.to_dict(), *self._orders_raw]
        self.clear_cart()
        self._persist_orders()
        _logger.info(
            f"Order {order.order_id} created locally with {order.item_count} item(s)."
        )
        return order
