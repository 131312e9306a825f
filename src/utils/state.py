from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from cart.engine import CartEngine
from cart.wishlist import RecentlyViewed, Wishlist
from checkout.coordinator import CheckoutCoordinator
from db.cache import LocalCache
from db.models import Order
from db.store import DocumentStore
from orders.workflow import OrderStatusWorkflow
from utils.errors import OrderAccessError


@dataclass
class SessionState:
    """
    Per-client state container, passed to whatever needs the cart instead of
    living in a module global.

    Fields:
      - uid: signed-in user id, None for guests
      - role: "customer" | "admin"
      - cache: the device-local cache backing cart, wishlist and history
      - store: the shared document store
    """

    cache: LocalCache
    store: DocumentStore
    uid: Optional[str] = None
    role: Literal["customer", "admin"] = "customer"

    cart: Optional[CartEngine] = None
    wishlist: Optional[Wishlist] = None
    recently_viewed: Optional[RecentlyViewed] = None

    def start_session(self) -> CartEngine:
        """Load the device's cached collections. Returns the cart engine."""
        self.cart = CartEngine(self.cache)
        self.wishlist = Wishlist(self.cache)
        self.recently_viewed = RecentlyViewed(self.cache)
        return self.cart

    def end_session(self) -> None:
        self.cart = None
        self.wishlist = None
        self.recently_viewed = None
        self.uid = None
        self.role = "customer"

    def checkout(self) -> CheckoutCoordinator:
        if self.cart is None:
            self.start_session()
        return CheckoutCoordinator(self.store, self.cart, user_id=self.uid)

    async def set_order_status(self, order_id: str, target: str) -> Order:
        """Admin console status change."""
        if self.role != "admin":
            raise OrderAccessError(order_id, self.uid)
        return await OrderStatusWorkflow(self.store).set_status(order_id, target)

    async def cancel_order(self, order_id: str) -> Order:
        """Customer cancellation from the orders page."""
        return await OrderStatusWorkflow(self.store).cancel_by_customer(
            order_id, self.uid
        )
