# document store: path-keyed JSON documents, the remote source of truth for orders and stock
from __future__ import annotations

import copy
import json
import re
import secrets
import sqlite3
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from db import database
from utils.errors import StoreError
from utils.logger import get_logger

_logger = get_logger(__name__)

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _clean(path: str) -> str:
    return "/".join(part for part in path.split("/") if part)


def _parent_of(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def _new_key() -> str:
    # millisecond prefix keeps generated keys roughly chronological
    return f"{int(time.time() * 1000):012x}{secrets.token_hex(4)}"


class DocumentStore(ABC):
    """
    Contract of the remote document store.

    Every method may raise StoreError. A document that does not exist is
    reported as None, never as an error.
    """

    @abstractmethod
    async def read(self, path: str) -> Optional[Any]: ...

    @abstractmethod
    async def children(self, parent: str) -> Dict[str, Any]:
        """Return {key: value} for the direct children of parent."""

    @abstractmethod
    async def write(self, path: str, value: Any) -> None: ...

    @abstractmethod
    async def partial_update(self, path: str, fields: Dict[str, Any]) -> None:
        """Merge top-level fields into the document, creating it if absent."""

    @abstractmethod
    async def delete(self, path: str) -> None: ...

    @abstractmethod
    async def generate_key(self, parent: str) -> str:
        """Return a fresh, unused path under parent."""

    @abstractmethod
    async def decrement_floor(
        self, path: str, field: str, amount: int, token: Optional[str] = None
    ) -> Optional[int]:
        """
        Atomically set document[field] = max(0, document[field] - amount).

        When token is given and was already applied, nothing changes and the
        current value is returned. Returns None if the document does not exist.
        """


# ---------------------------
# SQLite backed store
# ---------------------------


class SqliteDocumentStore(DocumentStore):
    """Document store persisted through aiosqlite (see db.database)."""

    async def read(self, path: str) -> Optional[Any]:
        path = _clean(path)
        try:
            async with database.connect() as conn:
                cur = await conn.execute(
                    "SELECT value FROM documents WHERE path = ?;", (path,)
                )
                row = await cur.fetchone()
                await cur.close()
        except (sqlite3.Error, OSError) as exc:
            raise StoreError("read", path) from exc
        return json.loads(row[0]) if row else None

    async def children(self, parent: str) -> Dict[str, Any]:
        parent = _clean(parent)
        try:
            async with database.connect() as conn:
                cur = await conn.execute(
                    "SELECT path, value FROM documents WHERE parent = ? ORDER BY path;",
                    (parent,),
                )
                rows = await cur.fetchall()
                await cur.close()
        except (sqlite3.Error, OSError) as exc:
            raise StoreError("read", parent) from exc
        return {row[0].rsplit("/", 1)[-1]: json.loads(row[1]) for row in rows}

    async def write(self, path: str, value: Any) -> None:
        path = _clean(path)
        try:
            async with database.connect() as conn:
                await conn.execute(
                    """
                    INSERT INTO documents(path, parent, value) VALUES (?, ?, ?)
                    ON CONFLICT(path) DO UPDATE SET value = excluded.value;
                    """,
                    (path, _parent_of(path), json.dumps(value)),
                )
                await conn.commit()
        except (sqlite3.Error, OSError, TypeError) as exc:
            raise StoreError("write", path) from exc

    async def partial_update(self, path: str, fields: Dict[str, Any]) -> None:
        path = _clean(path)
        try:
            async with database.connect() as conn:
                await conn.execute("BEGIN IMMEDIATE;")
                cur = await conn.execute(
                    "SELECT value FROM documents WHERE path = ?;", (path,)
                )
                row = await cur.fetchone()
                await cur.close()
                current = json.loads(row[0]) if row else {}
                if not isinstance(current, dict):
                    current = {}
                current.update(fields)
                await conn.execute(
                    """
                    INSERT INTO documents(path, parent, value) VALUES (?, ?, ?)
                    ON CONFLICT(path) DO UPDATE SET value = excluded.value;
                    """,
                    (path, _parent_of(path), json.dumps(current)),
                )
                await conn.commit()
        except (sqlite3.Error, OSError, TypeError) as exc:
            raise StoreError("update", path) from exc

    async def delete(self, path: str) -> None:
        path = _clean(path)
        try:
            async with database.connect() as conn:
                await conn.execute(
                    "DELETE FROM documents WHERE path = ? OR path LIKE ?;",
                    (path, f"{path}/%"),
                )
                await conn.commit()
        except (sqlite3.Error, OSError) as exc:
            raise StoreError("delete", path) from exc

    async def generate_key(self, parent: str) -> str:
        parent = _clean(parent)
        try:
            async with database.connect() as conn:
                while True:
                    candidate = f"{parent}/{_new_key()}" if parent else _new_key()
                    cur = await conn.execute(
                        "SELECT 1 FROM documents WHERE path = ?;", (candidate,)
                    )
                    exists = await cur.fetchone()
                    await cur.close()
                    if not exists:
                        return candidate
        except (sqlite3.Error, OSError) as exc:
            raise StoreError("generate_key", parent) from exc

    async def decrement_floor(
        self, path: str, field: str, amount: int, token: Optional[str] = None
    ) -> Optional[int]:
        if not _FIELD_RE.match(field):
            raise ValueError(f"Invalid field name: {field!r}")
        path = _clean(path)
        json_path = f"$.{field}"
        try:
            async with database.connect() as conn:
                await conn.execute("BEGIN IMMEDIATE;")
                if token is not None:
                    cur = await conn.execute(
                        """
                        INSERT OR IGNORE INTO applied_decrements(token, path, amount, applied_at)
                        VALUES (?, ?, ?, ?);
                        """,
                        (token, path, amount, datetime.now(timezone.utc).isoformat()),
                    )
                    first_time = cur.rowcount > 0
                    await cur.close()
                    if not first_time:
                        await conn.rollback()
                        _logger.debug(f"Decrement {token} already applied, skipping.")
                        return await self._read_int(conn, path, json_path)

                cur = await conn.execute(
                    """
                    UPDATE documents
                    SET value = json_set(
                        value, ?, MAX(0, COALESCE(json_extract(value, ?), 0) - ?)
                    )
                    WHERE path = ?;
                    """,
                    (json_path, json_path, int(amount), path),
                )
                updated = cur.rowcount > 0
                await cur.close()
                if not updated:
                    await conn.rollback()
                    return None
                value = await self._read_int(conn, path, json_path)
                await conn.commit()
                return value
        except (sqlite3.Error, OSError) as exc:
            raise StoreError("decrement", path) from exc

    @staticmethod
    async def _read_int(conn, path: str, json_path: str) -> Optional[int]:
        cur = await conn.execute(
            "SELECT json_extract(value, ?) FROM documents WHERE path = ?;",
            (json_path, path),
        )
        row = await cur.fetchone()
        await cur.close()
        if not row:
            return None
        return int(row[0] or 0)


# ---------------------------
# In-memory store
# ---------------------------


class MemoryDocumentStore(DocumentStore):
    """Process-local store with the same semantics, used by tests and demos."""

    def __init__(self, documents: Optional[Dict[str, Any]] = None):
        self._docs: Dict[str, Any] = {}
        self._applied: set[str] = set()
        for path, value in (documents or {}).items():
            self._docs[_clean(path)] = copy.deepcopy(value)

    async def read(self, path: str) -> Optional[Any]:
        return copy.deepcopy(self._docs.get(_clean(path)))

    async def children(self, parent: str) -> Dict[str, Any]:
        parent = _clean(parent)
        return {
            path.rsplit("/", 1)[-1]: copy.deepcopy(value)
            for path, value in sorted(self._docs.items())
            if _parent_of(path) == parent
        }

    async def write(self, path: str, value: Any) -> None:
        self._docs[_clean(path)] = copy.deepcopy(value)

    async def partial_update(self, path: str, fields: Dict[str, Any]) -> None:
        path = _clean(path)
        current = self._docs.get(path)
        if not isinstance(current, dict):
            current = {}
        current.update(copy.deepcopy(fields))
        self._docs[path] = current

    async def delete(self, path: str) -> None:
        path = _clean(path)
        for key in [k for k in self._docs if k == path or k.startswith(path + "/")]:
            del self._docs[key]

    async def generate_key(self, parent: str) -> str:
        parent = _clean(parent)
        while True:
            candidate = f"{parent}/{_new_key()}" if parent else _new_key()
            if candidate not in self._docs:
                return candidate

    async def decrement_floor(
        self, path: str, field: str, amount: int, token: Optional[str] = None
    ) -> Optional[int]:
        path = _clean(path)
        doc = self._docs.get(path)
        if not isinstance(doc, dict):
            return None
        if token is not None:
            if token in self._applied:
                return int(doc.get(field) or 0)
            self._applied.add(token)
        doc[field] = max(0, int(doc.get(field) or 0) - int(amount))
        return doc[field]
