from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cart.persistence import CollectionRepository
from db.cache import LocalCache
from db.models import Product
from utils import config


def _snapshot(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "title": product.title,
        "price": product.price,
        "image": product.image,
        "category": product.category,
        "brand": product.brand,
    }


class Wishlist:
    """Products the customer wants to keep an eye on. No duplicates."""

    def __init__(self, cache: LocalCache):
        self._repo = CollectionRepository(cache, config.WISHLIST_KEY)
        self._entries, self._version = self._repo.load()

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    @property
    def count(self) -> int:
        return len(self._entries)

    def contains(self, product_id: str) -> bool:
        return any(e.get("id") == product_id for e in self._entries)

    def _persist(self) -> None:
        self._entries, self._version = self._repo.save(self._entries, self._version)

    def add(self, product: Product) -> None:
        if self.contains(product.id):
            return
        self._entries = [*self._entries, _snapshot(product)]
        self._persist()

    def remove(self, product_id: str) -> None:
        if not self.contains(product_id):
            return
        self._entries = [e for e in self._entries if e.get("id") != product_id]
        self._persist()

    def clear(self) -> None:
        self._entries = []
        self._persist()


class RecentlyViewed:
    """Most recently viewed products first, capped at `limit` entries."""

    def __init__(self, cache: LocalCache, limit: Optional[int] = None):
        self.limit = limit or config.RECENTLY_VIEWED_LIMIT
        self._repo = CollectionRepository(cache, config.RECENTLY_VIEWED_KEY)
        entries, self._version = self._repo.load()
        self._entries = entries[: self.limit]

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    def record(self, product: Product, when: Optional[datetime] = None) -> None:
        when = when or datetime.now(timezone.utc)
        entry = {**_snapshot(product), "viewedAt": when.isoformat()}
        rest = [e for e in self._entries if e.get("id") != product.id]
        self._entries = [entry, *rest][: self.limit]
        self._persist()

    def clear(self) -> None:
        self._entries = []
        self._persist()

    def _persist(self) -> None:
        entries, self._version = self._repo.save(self._entries, self._version)
        self._entries = entries[: self.limit]
