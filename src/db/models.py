# provide dataclass models shared by the cart, checkout and order layers

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class OrderStatus(str, Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class StockSync(str, Enum):
    """Whether the stock deduction for an order has fully landed."""

    PENDING = "pending"
    SYNCED = "synced"


@dataclass(frozen=True)
class Product:
    id: str
    title: str
    price: float
    stock: int = 0
    image: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None


@dataclass(frozen=True)
class CartLine:
    """One product in the cart or on the saved-for-later shelf.

    Title, price and image are captured when the product is added and are
    never re-synced with the catalog.
    """

    product_id: str
    title: str
    unit_price: float
    image: Optional[str] = None
    quantity: int = 1

    def with_quantity(self, quantity: int) -> CartLine:
        return replace(self, quantity=quantity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.product_id,
            "title": self.title,
            "price": self.unit_price,
            "image": self.image,
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CartLine:
        return cls(
            product_id=str(data.get("id") or ""),
            title=data.get("title", ""),
            unit_price=float(data.get("price", 0.0)),
            image=data.get("image"),
            quantity=int(data.get("quantity", 1)),
        )


@dataclass(frozen=True)
class CartTotals:
    total_item_count: int
    subtotal: float
    tax: float
    grand_total: float


@dataclass(frozen=True)
class ShippingAddress:
    first_name: str
    last_name: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    email: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
        }
        if self.email is not None:
            data["email"] = self.email
        if self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ShippingAddress:
        return cls(
            first_name=str(data.get("firstName", "")),
            last_name=str(data.get("lastName", "")),
            phone=str(data.get("phone", "")),
            address=str(data.get("address", "")),
            city=str(data.get("city", "")),
            state=str(data.get("state", "")),
            pincode=str(data.get("pincode", "")),
            email=data.get("email"),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class Order:
    """A placed order. Only status and its timestamps change after creation."""

    order_id: str
    placed_at: str  # ISO-8601
    items: Tuple[CartLine, ...]
    subtotal: float
    tax: float
    total: float
    status: OrderStatus = OrderStatus.PENDING
    discount: float = 0.0
    final_total: Optional[float] = None
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = None
    customer_email: Optional[str] = None
    user_id: Optional[str] = None
    stock_sync: StockSync = StockSync.PENDING
    updated_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.items)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.order_id,
            "createdAt": self.placed_at,
            "placedAt": self.placed_at,
            "items": [line.to_dict() for line in self.items],
            "subtotal": self.subtotal,
            "tax": self.tax,
            "discount": self.discount,
            "total": self.total,
            "finalTotal": self.total if self.final_total is None else self.final_total,
            "status": self.status.value,
            "shippingAddress": (
                self.shipping_address.to_dict() if self.shipping_address else None
            ),
            "paymentMethod": self.payment_method,
            "customerEmail": self.customer_email,
            "userId": self.user_id,
            "stockSync": self.stock_sync.value,
        }
        if self.updated_at:
            data["updatedAt"] = self.updated_at
        if self.cancelled_at:
            data["cancelledAt"] = self.cancelled_at
        return data


def lines_to_dicts(lines: List[CartLine]) -> List[Dict[str, Any]]:
    return [line.to_dict() for line in lines]
