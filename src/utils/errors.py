"""Exceptions raised by the cart, checkout and order workflow layers."""

from typing import Optional, Sequence


class ShopError(Exception):
    """Base exception for all storefront errors."""

    pass


# ---------------------------
# Checkout input
# ---------------------------


class ValidationError(ShopError):
    """Raised when a checkout field is missing or malformed."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"{field} is required")


class InvalidPromoCodeError(ShopError):
    def __init__(self, code: str):
        self.code = code
        super().__init__("Invalid promo code")


# ---------------------------
# Order workflow
# ---------------------------


class OrderNotFoundError(ShopError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class OrderAccessError(ShopError):
    """Raised when a customer acts on an order placed by someone else."""

    def __init__(self, order_id: str, user_id: Optional[str]):
        self.order_id = order_id
        self.user_id = user_id
        super().__init__(f"Order {order_id} does not belong to user {user_id}")


class InvalidTransitionError(ShopError):
    def __init__(self, order_id: str, current: str, target: str):
        self.order_id = order_id
        self.current = current
        self.target = target
        super().__init__(
            f"Order {order_id} cannot move from '{current}' to '{target}'"
        )


class CancellationNotAllowedError(ShopError):
    def __init__(self, order_id: str, current: str):
        self.order_id = order_id
        self.current = current
        super().__init__(
            f"Can only cancel pending orders (order {order_id} is '{current}')"
        )


# ---------------------------
# Persistence
# ---------------------------


class StoreError(ShopError):
    """Raised when the document store is unavailable or a write fails.

    A missing document is not an error; reads return None for that.
    """

    def __init__(self, operation: str, path: str):
        self.operation = operation
        self.path = path
        super().__init__(f"Store {operation} failed for '{path}'")


class OrderPersistenceError(ShopError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Failed to place order. Please try again.")


class StockSyncError(ShopError):
    """Raised when an order was saved but not every stock level was reduced."""

    def __init__(self, order_id: str, pending: Sequence[str]):
        self.order_id = order_id
        self.pending = list(pending)
        super().__init__(
            f"Order {order_id} was placed but stock for {len(self.pending)} "
            f"product(s) is not yet updated"
        )


class LocalCacheError(ShopError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Local cache write failed for '{key}'")


class DataShapeError(ShopError):
    """Raised when a persisted document does not have the canonical shape."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Unexpected document shape at '{path}': {reason}")
