# local durable cache: synchronous per-device string store for cart/wishlist mirrors
import os
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, Optional

from utils import config
from utils.errors import LocalCacheError


class LocalCache(ABC):
    """Synchronous key/value store scoped to one client device."""

    @abstractmethod
    def read(self, key: str) -> Optional[str]: ...

    @abstractmethod
    def write(self, key: str, value: str) -> None:
        """Store value under key. Raises LocalCacheError on failure."""


class MemoryLocalCache(LocalCache):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def write(self, key: str, value: str) -> None:
        self.data[key] = value


class SqliteLocalCache(LocalCache):
    """
    File backed cache. Each call opens its own short-lived connection so two
    processes (two "tabs") can share one file.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or config.CACHE_PATH
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS cache (key TEXT PRIMARY KEY, value TEXT NOT NULL);"
            )

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def read(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM cache WHERE key = ?;", (key,)).fetchone()
        except sqlite3.Error:
            return None
        finally:
            conn.close()
        return row[0] if row else None

    def write(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO cache(key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value;
                    """,
                    (key, value),
                )
        except sqlite3.Error as exc:
            raise LocalCacheError(key) from exc
        finally:
            conn.close()
