"""Database connection and schema internals.

Single module-level connection, initialized by init_database().

``_SCHEMA`` is the source of truth for table definitions; ``CREATE TABLE IF
NOT EXISTS`` handles brand-new databases.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from osintrix.config import get_settings
from osintrix.logger import logger

_db: aiosqlite.Connection | None = None

# Shared write lock for quota mutations - see atomic_write().
#
# One aiosqlite connection is shared by every in-flight command.  sqlite3's
# implicit transactions are per *connection*, so two coroutines whose DML
# interleaves at await points share one transaction and a rollback from one
# undoes the other.  Every write path goes through atomic_write().
_write_lock: asyncio.Lock | None = None


@asynccontextmanager
async def atomic_write() -> AsyncIterator[aiosqlite.Connection]:
    """Acquire the write lock, yield the connection, commit or roll back."""
    global _write_lock
    if _write_lock is None:
        _write_lock = asyncio.Lock()

    db = _get_db()
    async with _write_lock:
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise


_SCHEMA = """\
CREATE TABLE IF NOT EXISTS users (
    identity TEXT PRIMARY KEY,
    remaining_quota INTEGER NOT NULL CHECK (remaining_quota >= 0),
    is_privileged INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS quota_ledger (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    identity TEXT NOT NULL,
    delta INTEGER NOT NULL,
    command TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    FOREIGN KEY (identity) REFERENCES users(identity)
);
CREATE INDEX IF NOT EXISTS idx_quota_ledger_identity ON quota_ledger(identity, timestamp);
"""


def _get_db() -> aiosqlite.Connection:
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _db


async def _create_schema(database: aiosqlite.Connection) -> None:
    await database.executescript(_SCHEMA)
    await database.commit()


async def init_database(db_path: Path | None = None) -> None:
    """Open (or create) the quota database and ensure the schema exists."""
    global _db, _write_lock
    path = db_path or get_settings().db_path
    path.parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(str(path))
    _db.row_factory = aiosqlite.Row
    _write_lock = None
    await _create_schema(_db)
    logger.info("Database ready", path=str(path))


async def close_database() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


async def _init_test_database() -> None:
    """Create an in-memory database for tests.

    Uses ``stop()`` + thread join instead of ``await close()`` because
    pytest-asyncio creates a new event loop per test function and the old
    connection's worker thread targets the dead loop.
    """
    global _db, _write_lock
    if _db is not None:
        _db.stop()
        if _db._thread is not None and _db._thread.is_alive():
            _db._thread.join(timeout=2)
    _db = await aiosqlite.connect(":memory:")
    _db.row_factory = aiosqlite.Row
    _write_lock = None
    await _create_schema(_db)
