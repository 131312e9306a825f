from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from cart.engine import CartEngine
from checkout.promo import final_total, lookup_discount
from checkout.validation import resolve_address, validate_checkout
from db import crud
from db.models import Order, ShippingAddress, StockSync
from db.store import DocumentStore
from utils import config
from utils.errors import (
    InvalidPromoCodeError,
    OrderPersistenceError,
    StockSyncError,
    StoreError,
)
from utils.logger import get_logger
from utils.pure import order_summary_markdown

_logger = get_logger(__name__)


@dataclass
class CheckoutForm:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""

    def as_fields(self) -> Dict[str, Any]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
        }


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    estimated_delivery: date
    stock_levels: Dict[str, Optional[int]] = field(default_factory=dict)
    stock_synced: bool = True

    @property
    def summary(self) -> str:
        return order_summary_markdown(self.order)


def stock_token(order_id: str, product_id: str) -> str:
    return f"{order_id}:{product_id}"


async def deduct_order_stock(
    store: DocumentStore, order: Order
) -> Dict[str, Optional[int]]:
    """
    Reduce stock for every line of the order, one product after another.

    Each decrement is tagged with the order id, so running this again for the
    same order (e.g. from the reconciliation pass) does not deduct twice.
    Raises StockSyncError listing the products not yet handled if the store
    fails midway.
    """
    levels: Dict[str, Optional[int]] = {}
    lines = list(order.items)
    for idx, line in enumerate(lines):
        if not line.product_id:
            _logger.warning(
                f"Order {order.order_id} has a line without a product id "
                f"({line.title!r}), no stock to deduct."
            )
            continue
        try:
            levels[line.product_id] = await crud.decrement_stock(
                store,
                line.product_id,
                line.quantity,
                token=stock_token(order.order_id, line.product_id),
            )
        except StoreError as exc:
            pending = [rest.product_id for rest in lines[idx:] if rest.product_id]
            _logger.error(
                f"Stock sync for order {order.order_id} stopped at "
                f"{line.product_id}: {exc}"
            )
            raise StockSyncError(order.order_id, pending) from exc
    return levels


class CheckoutCoordinator:
    """
    Turns the session's cart plus shipping/payment input into a persisted
    order and reduced stock levels.
    """

    def __init__(
        self,
        store: DocumentStore,
        engine: CartEngine,
        user_id: Optional[str] = None,
        required_fields: Optional[Iterable[str]] = None,
        promo_codes: Optional[Dict[str, float]] = None,
    ):
        self.store = store
        self.engine = engine
        self.user_id = user_id
        self.required_fields = tuple(
            config.REQUIRED_ADDRESS_FIELDS if required_fields is None else required_fields
        )
        self.promo_codes = promo_codes
        self.promo_code: Optional[str] = None
        self.discount: float = 0.0
        self._addresses: List[Dict[str, Any]] = []

    # ---------------------------
    # Promo codes
    # ---------------------------

    def apply_promo(self, code: str) -> float:
        """
        Apply a promo code and return its discount. An unknown code resets the
        discount to 0 and raises InvalidPromoCodeError.
        """
        try:
            self.discount = lookup_discount(code, self.promo_codes)
        except InvalidPromoCodeError:
            self.discount = 0.0
            self.promo_code = None
            _logger.warning(f"Rejected promo code {code!r}")
            raise
        self.promo_code = code.strip().upper()
        _logger.info(f"Promo code {self.promo_code} applied: -{self.discount}")
        return self.discount

    @property
    def final_total(self) -> float:
        return final_total(self.engine.total, self.discount)

    # ---------------------------
    # Addresses
    # ---------------------------

    async def load_addresses(self) -> List[Dict[str, Any]]:
        if self.user_id is None:
            self._addresses = []
        else:
            self._addresses = await crud.get_saved_addresses(self.store, self.user_id)
        return list(self._addresses)

    # ---------------------------
    # Placing the order
    # ---------------------------

    async def place_order(
        self,
        form: CheckoutForm,
        payment_method: str = "cod",
        saved_address_id: Optional[Any] = None,
        when: Optional[datetime] = None,
    ) -> Optional[CheckoutResult]:
        """
        Validate, persist the order, then deduct stock.

        Returns None without touching anything if the cart is empty.
        Raises ValidationError before any write, OrderPersistenceError if the
        order could not be saved, StockSyncError if the order was saved but
        stock deduction failed partway (the order stays marked for the
        reconciliation pass).
        """
        if self.engine.is_empty():
            _logger.warning("Checkout attempted with an empty cart.")
            return None

        if saved_address_id not in (None, "") and not self._addresses:
            await self.load_addresses()
        fields = resolve_address(form.as_fields(), self._addresses, saved_address_id)
        shipping = validate_checkout(fields, form.email, self.required_fields)

        payable = self.final_total
        local_order = self.engine.place_order(when)
        if local_order is None:
            return None

        try:
            return await self._persist(local_order, form, shipping, payable, payment_method)
        finally:
            # a promo applies to one placed cart only
            self.discount = 0.0
            self.promo_code = None

    async def _persist(
        self,
        local_order: Order,
        form: CheckoutForm,
        shipping: ShippingAddress,
        payable: float,
        payment_method: str,
    ) -> CheckoutResult:
        placed_at = datetime.now(timezone.utc)
        order = replace(
            local_order,
            user_id=self.user_id,
            customer_email=form.email,
            shipping_address=shipping,
            payment_method=payment_method,
            discount=self.discount,
            final_total=payable,
            placed_at=placed_at.isoformat(),
            stock_sync=StockSync.PENDING,
        )

        try:
            await crud.save_order(self.store, order.to_dict())
        except StoreError as exc:
            _logger.error(f"Could not save order {order.order_id}: {exc}")
            raise OrderPersistenceError(order.order_id) from exc
        _logger.info(f"Order {order.order_id} saved, total {payable}")

        levels = await deduct_order_stock(self.store, order)

        synced = True
        try:
            await crud.update_order_fields(
                self.store, order.order_id, {"stockSync": StockSync.SYNCED.value}
            )
            order = replace(order, stock_sync=StockSync.SYNCED)
        except StoreError as exc:
            # stock is already reduced; reconciliation will only flip the flag
            synced = False
            _logger.warning(f"Order {order.order_id} left marked for stock sync: {exc}")

        return CheckoutResult(
            order=order,
            estimated_delivery=estimated_delivery(placed_at.date()),
            stock_levels=levels,
            stock_synced=synced,
        )


def estimated_delivery(placed_on: date) -> date:
    return placed_on + timedelta(days=config.DELIVERY_ESTIMATE_DAYS)
