"""Per-identity quota records and the quota audit ledger."""

from __future__ import annotations

from datetime import UTC, datetime

import aiosqlite

from osintrix.db._connection import _get_db, atomic_write
from osintrix.errors import InsufficientQuota
from osintrix.types import UserQuotaRecord


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _row_to_record(row: aiosqlite.Row) -> UserQuotaRecord:
    return UserQuotaRecord(
        identity=row["identity"],
        remaining_quota=row["remaining_quota"],
        is_privileged=bool(row["is_privileged"]),
    )


async def _select(db: aiosqlite.Connection, identity: str) -> UserQuotaRecord | None:
    cursor = await db.execute(
        "SELECT identity, remaining_quota, is_privileged FROM users WHERE identity = ?",
        (identity,),
    )
    row = await cursor.fetchone()
    return _row_to_record(row) if row else None


async def _insert_if_missing(
    db: aiosqlite.Connection, identity: str, default_quota: int, privileged: bool
) -> bool:
    now = _now()
    cursor = await db.execute(
        """INSERT OR IGNORE INTO users
           (identity, remaining_quota, is_privileged, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?)""",
        (identity, default_quota, int(privileged), now, now),
    )
    return cursor.rowcount == 1


async def _log(db: aiosqlite.Connection, identity: str, delta: int, command: str) -> None:
    await db.execute(
        "INSERT INTO quota_ledger (identity, delta, command, timestamp) VALUES (?, ?, ?, ?)",
        (identity, delta, command, _now()),
    )


async def get_user(identity: str) -> UserQuotaRecord | None:
    """Read a record without creating it."""
    return await _select(_get_db(), identity)


async def get_or_create_user(
    identity: str, default_quota: int, *, privileged: bool = False
) -> tuple[UserQuotaRecord, bool]:
    """Return the record for *identity*, creating it on first sight.

    The bool is True when the record was created by this call.
    """
    async with atomic_write() as db:
        created = await _insert_if_missing(db, identity, default_quota, privileged)
        record = await _select(db, identity)
    assert record is not None
    return record, created


async def deduct_quota(identity: str, cost: int, command: str) -> UserQuotaRecord:
    """Atomically subtract *cost* from a non-privileged record.

    The guard lives in the UPDATE itself (``remaining_quota >= cost``), so two
    concurrent commits can never both spend the same units.  Privileged
    records are returned untouched.

    Raises:
        InsufficientQuota: the record no longer holds *cost* units.
        KeyError: no record exists for *identity*.
    """
    async with atomic_write() as db:
        current = await _select(db, identity)
        if current is None:
            raise KeyError(identity)
        if current.is_privileged or cost <= 0:
            return current

        cursor = await db.execute(
            """UPDATE users
               SET remaining_quota = remaining_quota - ?, updated_at = ?
               WHERE identity = ? AND is_privileged = 0 AND remaining_quota >= ?""",
            (cost, _now(), identity, cost),
        )
        if cursor.rowcount != 1:
            raise InsufficientQuota(
                f"Your remaining limit ({current.remaining_quota}) is not enough "
                f"for this command (needs {cost})."
            )
        await _log(db, identity, -cost, command)
        record = await _select(db, identity)
    assert record is not None
    return record


async def grant_quota(
    identity: str, amount: int, default_quota: int, command: str = "grant"
) -> UserQuotaRecord:
    """Add *amount* units to *identity*, creating the record if needed."""
    if amount <= 0:
        raise ValueError("amount must be positive")
    async with atomic_write() as db:
        await _insert_if_missing(db, identity, default_quota, False)
        await db.execute(
            "UPDATE users SET remaining_quota = remaining_quota + ?, updated_at = ? "
            "WHERE identity = ?",
            (amount, _now(), identity),
        )
        await _log(db, identity, amount, command)
        record = await _select(db, identity)
    assert record is not None
    return record


async def set_privileged(identity: str, privileged: bool, default_quota: int) -> UserQuotaRecord:
    """Mark *identity* as privileged (or not), creating the record if needed."""
    async with atomic_write() as db:
        await _insert_if_missing(db, identity, default_quota, privileged)
        await db.execute(
            "UPDATE users SET is_privileged = ?, updated_at = ? WHERE identity = ?",
            (int(privileged), _now(), identity),
        )
        record = await _select(db, identity)
    assert record is not None
    return record


async def get_ledger(identity: str) -> list[tuple[int, str]]:
    """Return ``(delta, command)`` pairs for *identity*, oldest first."""
    db = _get_db()
    cursor = await db.execute(
        "SELECT delta, command FROM quota_ledger WHERE identity = ? ORDER BY id",
        (identity,),
    )
    return [(row["delta"], row["command"]) for row in await cursor.fetchall()]
