"""
Order status state machine.

    pending -> shipped | cancelled
    shipped -> delivered | cancelled
    delivered, cancelled: terminal

Admins may make any legal move; customers may only cancel while pending.
Each accepted change is a partial update of status plus timestamp fields.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Union

from db import crud
from db.models import Order, OrderStatus
from db.store import DocumentStore
from utils.errors import (
    CancellationNotAllowedError,
    InvalidTransitionError,
    OrderAccessError,
    OrderNotFoundError,
)
from utils.logger import get_logger

_logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Re-selecting the current status counts as allowed (it is a no-op)."""
    return target == current or target in ALLOWED_TRANSITIONS[current]


class OrderStatusWorkflow:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def _load(self, order_id: str) -> Order:
        order = await crud.get_order(self.store, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def set_status(
        self,
        order_id: str,
        target: Union[OrderStatus, str],
        when: Optional[datetime] = None,
    ) -> Order:
        """Admin-side transition. Returns the order as it now stands."""
        order = await self._load(order_id)
        try:
            target = OrderStatus(target)
        except ValueError:
            raise InvalidTransitionError(order_id, order.status.value, str(target)) from None

        if not can_transition(order.status, target):
            _logger.warning(
                f"Rejected transition of {order_id}: {order.status.value} -> {target.value}"
            )
            raise InvalidTransitionError(order_id, order.status.value, target.value)
        if target == order.status:
            return order

        stamp = (when or datetime.now(timezone.utc)).isoformat()
        fields = {"status": target.value, "updatedAt": stamp}
        if target == OrderStatus.CANCELLED:
            fields["cancelledAt"] = stamp
        await crud.update_order_fields(self.store, order_id, fields)
        _logger.info(f"Order {order_id}: {order.status.value} -> {target.value}")
        return replace(
            order,
            status=target,
            updated_at=stamp,
            cancelled_at=fields.get("cancelledAt", order.cancelled_at),
        )

    async def cancel_by_customer(
        self, order_id: str, user_id: Optional[str], when: Optional[datetime] = None
    ) -> Order:
        """Customer-side cancellation, only while the order is still pending."""
        order = await self._load(order_id)
        if order.user_id is not None and order.user_id != user_id:
            raise OrderAccessError(order_id, user_id)
        if order.status != OrderStatus.PENDING:
            _logger.warning(
                f"Rejected customer cancellation of {order_id} ({order.status.value})"
            )
            raise CancellationNotAllowedError(order_id, order.status.value)

        stamp = (when or datetime.now(timezone.utc)).isoformat()
        await crud.update_order_fields(
            self.store,
            order_id,
            {"status": OrderStatus.CANCELLED.value, "cancelledAt": stamp},
        )
        _logger.info(f"Order {order_id} cancelled by customer {user_id}")
        return replace(order, status=OrderStatus.CANCELLED, cancelled_at=stamp)
