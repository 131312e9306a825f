# src/db/crud.py
# typed reads/writes over the document store; the only place raw documents become models
from __future__ import annotations

from typing import Any, Dict, List, Optional

from db import models
from db.store import DocumentStore
from utils import config
from utils.errors import DataShapeError
from utils.logger import get_logger

_logger = get_logger(__name__)

PRODUCTS = "products"
ORDERS = "orders"
USERS = "users"


def _to_int(val) -> Optional[int]:
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def _money(val) -> float:
    try:
        return round(float(val), config.CURRENCY_PLACES)
    except (TypeError, ValueError):
        return 0.0


def product_path(product_id: str) -> str:
    return f"{PRODUCTS}/{product_id}"


def order_path(order_id: str) -> str:
    return f"{ORDERS}/{order_id}"


# ---------------------------
# Normalization (store read boundary)
# ---------------------------


def normalize_product(product_id: str, raw: Dict[str, Any]) -> models.Product:
    """Build a Product from a stored document, applying defaults once."""
    if not isinstance(raw, dict):
        raise DataShapeError(product_path(product_id), "product is not an object")
    image = raw.get("image")
    if not image and raw.get("images"):
        image = raw["images"][0]
    stock = _to_int(raw.get("stock"))
    return models.Product(
        id=str(raw.get("id") or product_id),
        title=str(raw.get("title") or raw.get("name") or ""),
        price=_money(raw.get("price")),
        stock=max(0, stock) if stock is not None else 0,
        image=image,
        category=raw.get("category"),
        brand=raw.get("brand"),
    )


def normalize_order(order_id: str, raw: Dict[str, Any]) -> models.Order:
    """
    Build an Order from a stored document.

    `items` must be a list; map-shaped items from older data have to go
    through migrate_order_items first.
    """
    path = order_path(order_id)
    if not isinstance(raw, dict):
        raise DataShapeError(path, "order is not an object")

    items = raw.get("items") or []
    if isinstance(items, dict):
        raise DataShapeError(path, "items is a map; run migrate_order_items")
    if not isinstance(items, list):
        raise DataShapeError(path, f"items has type {type(items).__name__}")

    try:
        status = models.OrderStatus(raw.get("status") or "pending")
    except ValueError:
        raise DataShapeError(path, f"unknown status {raw.get('status')!r}") from None

    try:
        # documents written before stock-sync tracking already had stock deducted
        stock_sync = models.StockSync(raw.get("stockSync") or "synced")
    except ValueError:
        raise DataShapeError(path, f"unknown stockSync {raw.get('stockSync')!r}") from None

    try:
        lines = tuple(models.CartLine.from_dict(item) for item in items)
    except (AttributeError, TypeError, ValueError) as exc:
        raise DataShapeError(path, f"unreadable item: {exc}") from None

    address = raw.get("shippingAddress")
    total = _money(raw.get("total"))
    final_total = raw.get("finalTotal")

    return models.Order(
        order_id=str(raw.get("id") or order_id),
        placed_at=raw.get("placedAt") or raw.get("createdAt") or "",
        items=lines,
        subtotal=_money(raw.get("subtotal")),
        tax=_money(raw.get("tax")),
        total=total,
        status=status,
        discount=_money(raw.get("discount")),
        final_total=_money(final_total) if final_total is not None else total,
        shipping_address=(
            models.ShippingAddress.from_dict(address)
            if isinstance(address, dict)
            else None
        ),
        payment_method=raw.get("paymentMethod"),
        customer_email=raw.get("customerEmail"),
        user_id=raw.get("userId"),
        stock_sync=stock_sync,
        updated_at=raw.get("updatedAt"),
        cancelled_at=raw.get("cancelledAt"),
    )


# ---------------------------
# Products & Stock
# ---------------------------


async def get_product(store: DocumentStore, product_id: str) -> Optional[models.Product]:
    raw = await store.read(product_path(product_id))
    if raw is None:
        return None
    return normalize_product(product_id, raw)


async def create_product(
    store: DocumentStore,
    title: str,
    price: float,
    stock: int = 0,
    image: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
) -> models.Product:
    """Insert a product under a generated key and return it."""
    path = await store.generate_key(PRODUCTS)
    product_id = path.rsplit("/", 1)[-1]
    doc = {
        "id": product_id,
        "title": title,
        "price": _money(price),
        "stock": max(0, int(stock)),
        "image": image,
        "category": category,
        "brand": brand,
    }
    await store.write(path, doc)
    return normalize_product(product_id, doc)


async def set_product_stock(store: DocumentStore, product_id: str, stock: int) -> bool:
    """
    Admin stock update. Returns False if the product does not exist.
    """
    if stock < 0:
        raise ValueError("Stock cannot be negative.")
    if await store.read(product_path(product_id)) is None:
        return False
    await store.partial_update(product_path(product_id), {"stock": int(stock)})
    return True


async def decrement_stock(
    store: DocumentStore, product_id: str, quantity: int, token: Optional[str] = None
) -> Optional[int]:
    """Reduce stock by quantity, never below zero. Returns the new level or None."""
    new_stock = await store.decrement_floor(
        product_path(product_id), "stock", quantity, token
    )
    if new_stock is None:
        _logger.warning(f"Product {product_id} not found, stock left untouched.")
    else:
        _logger.debug(f"Stock of {product_id} reduced by {quantity} -> {new_stock}")
    return new_stock


def stock_status(stock: int) -> str:
    if stock <= 0:
        return "out-of-stock"
    if stock <= config.LOW_STOCK_THRESHOLD:
        return "low-stock"
    return "in-stock"


# ---------------------------
# Orders
# ---------------------------


async def save_order(store: DocumentStore, doc: Dict[str, Any]) -> None:
    """Write the full order document under orders/<id>."""
    await store.write(order_path(doc["id"]), doc)


async def get_order(store: DocumentStore, order_id: str) -> Optional[models.Order]:
    raw = await store.read(order_path(order_id))
    if raw is None:
        return None
    return normalize_order(order_id, raw)


async def update_order_fields(
    store: DocumentStore, order_id: str, fields: Dict[str, Any]
) -> None:
    await store.partial_update(order_path(order_id), fields)


async def list_orders(
    store: DocumentStore,
    user_id: Optional[str] = None,
    status: Optional[models.OrderStatus] = None,
) -> List[models.Order]:
    """
    Return orders, most recently placed first, optionally filtered by owner
    and/or status. Documents that cannot be read as an Order (e.g. map-shaped
    items not yet migrated) are logged and left out.
    """
    orders = []
    for key, raw in (await store.children(ORDERS)).items():
        try:
            orders.append(normalize_order(key, raw))
        except DataShapeError as exc:
            _logger.warning(f"Skipping order {key}: {exc}")
    if user_id is not None:
        orders = [o for o in orders if o.user_id == user_id]
    if status is not None:
        orders = [o for o in orders if o.status == status]
    orders.sort(key=lambda o: o.placed_at, reverse=True)
    return orders


async def migrate_order_items(store: DocumentStore) -> int:
    """
    One-time migration: rewrite map-shaped `items` as a list, ordered by key.
    Returns the number of orders rewritten.
    """
    migrated = 0
    raw_orders = await store.children(ORDERS)
    for key, raw in raw_orders.items():
        items = raw.get("items") if isinstance(raw, dict) else None
        if not isinstance(items, dict):
            continue
        as_list = [items[k] for k in sorted(items)]
        await store.partial_update(order_path(key), {"items": as_list})
        migrated += 1
    if migrated:
        _logger.info(f"Migrated items of {migrated} order(s) to list shape.")
    return migrated


# ---------------------------
# Users
# ---------------------------


async def get_saved_addresses(store: DocumentStore, user_id: str) -> List[Dict[str, Any]]:
    raw = await store.read(f"{USERS}/{user_id}")
    if not isinstance(raw, dict):
        return []
    addresses = raw.get("addresses") or []
    return [a for a in addresses if isinstance(a, dict)]
