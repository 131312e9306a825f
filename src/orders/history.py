# order listings for the customer "my orders" page and the admin order table
from typing import Dict, List, Optional

from cart.engine import CartEngine
from db import crud
from db.models import Order, OrderStatus
from db.store import DocumentStore
from utils.errors import StoreError
from utils.logger import get_logger

_logger = get_logger(__name__)


async def load_customer_orders(
    store: DocumentStore, engine: CartEngine, user_id: Optional[str]
) -> List[Order]:
    """
    A signed-in customer's orders from the store, newest first. Falls back to
    the device's local order history when signed out, when the store has no
    orders at all, or when the store cannot be reached.
    """
    if user_id is None:
        return engine.orders
    try:
        if not await store.children(crud.ORDERS):
            return engine.orders
        return await crud.list_orders(store, user_id=user_id)
    except StoreError as exc:
        _logger.warning(f"Showing local order history, store unavailable: {exc}")
        return engine.orders


async def list_admin_orders(
    store: DocumentStore, status: Optional[OrderStatus] = None
) -> List[Order]:
    return await crud.list_orders(store, status=status)


async def status_counts(store: DocumentStore) -> Dict[str, int]:
    counts = {status.value: 0 for status in OrderStatus}
    for order in await crud.list_orders(store):
        counts[order.status.value] += 1
    return counts


def delivery_progress(status: OrderStatus) -> Optional[int]:
    """Percent along pending -> shipped -> delivered; None for cancelled orders."""
    return {
        OrderStatus.PENDING: 0,
        OrderStatus.SHIPPED: 50,
        OrderStatus.DELIVERED: 100,
    }.get(status)
