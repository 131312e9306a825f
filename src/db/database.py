# manages connection to the document store database, helpers internal to db package
import asyncio
import os
from contextlib import asynccontextmanager
from sqlite3 import Row

import aiosqlite

from utils import config
from utils.logger import get_logger

_logger = get_logger(__name__)

DB_PATH = config.DB_PATH

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    path   TEXT PRIMARY KEY,
    parent TEXT NOT NULL,
    value  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_documents_parent ON documents(parent);

CREATE TABLE IF NOT EXISTS applied_decrements (
    token      TEXT PRIMARY KEY,
    path       TEXT NOT NULL,
    amount     INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);
"""

_initialized = False
_init_lock = asyncio.Lock()


async def _init_db(conn: aiosqlite.Connection) -> None:
    _logger.info(f"Initializing document store at {DB_PATH}...")
    await conn.executescript(SCHEMA)
    await conn.commit()


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


@asynccontextmanager
async def connect() -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection to the store.

    Creates the schema on first use.
    """
    global _initialized
    directory = os.path.dirname(DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = await aiosqlite.connect(DB_PATH)
    conn.row_factory = Row

    try:
        if not _initialized:
            async with _init_lock:
                if not _initialized:
                    if not await _table_exists(conn, "applied_decrements"):
                        await _init_db(conn)
                    _initialized = True
        yield conn
    finally:
        await conn.close()
