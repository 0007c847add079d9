"""Database connection factory.

Provides a singleton async connection to the SQLite cache file with WAL mode,
plus the transaction helper that every write goes through.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from codecache import config

logger = logging.getLogger("codecache.db")

DB_PATH = Path(config.DB_PATH)

_connection: aiosqlite.Connection | None = None
_write_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = weakref.WeakKeyDictionary()


async def open_connection(path: str | Path) -> aiosqlite.Connection:
    """Open and configure a new SQLite connection."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(path))
    conn.row_factory = aiosqlite.Row
    # Enable WAL mode for better concurrent read performance
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute("PRAGMA busy_timeout=5000")
    return conn


async def get_connection() -> aiosqlite.Connection:
    """Return the singleton database connection, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection

    _connection = await open_connection(DB_PATH)
    logger.info(f"Database connection established: {DB_PATH}")
    return _connection


async def close_connection() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        await _connection.close()
        _connection = None
        logger.info("Database connection closed")


def write_lock(db: aiosqlite.Connection) -> asyncio.Lock:
    """Return the lock that serializes every write on `db`."""
    lock = _write_locks.get(db)
    if lock is None:
        lock = _write_locks[db] = asyncio.Lock()
    return lock


@asynccontextmanager
async def transaction(db: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """Run the enclosed statements as one atomic unit.

    Holds the connection's write lock for the whole block, so callers must not
    nest transactions. Commits on normal exit, rolls back and re-raises on any
    error.
    """
    async with write_lock(db):
        if db.in_transaction:
            await db.commit()
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        else:
            await db.commit()
