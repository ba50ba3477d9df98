"""Quota store interface and the permission gate.

The gate is a pure decision over a record snapshot; it never mutates.
Deduction is a separate ``QuotaStore.deduct`` call made only after a
handler has observably succeeded, so a failed command never costs quota.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from osintrix import db
from osintrix.errors import ErrorKind
from osintrix.types import UserQuotaRecord


@runtime_checkable
class QuotaStore(Protocol):
    async def get(self, identity: str) -> UserQuotaRecord | None: ...

    async def ensure(self, identity: str) -> tuple[UserQuotaRecord, bool]:
        """Return the record, creating it with the default quota. Bool = created."""
        ...

    async def deduct(self, identity: str, cost: int, command: str) -> UserQuotaRecord:
        """Atomic compare-and-decrement. Raises InsufficientQuota."""
        ...

    async def grant(self, identity: str, amount: int) -> UserQuotaRecord: ...


class SqliteQuotaStore:
    """QuotaStore backed by the aiosqlite ``users`` table."""

    def __init__(self, default_quota: int, owners: frozenset[str] = frozenset()) -> None:
        self.default_quota = default_quota
        self.owners = owners

    async def get(self, identity: str) -> UserQuotaRecord | None:
        return await db.get_user(identity)

    async def ensure(self, identity: str) -> tuple[UserQuotaRecord, bool]:
        return await db.get_or_create_user(
            identity, self.default_quota, privileged=identity in self.owners
        )

    async def deduct(self, identity: str, cost: int, command: str) -> UserQuotaRecord:
        return await db.deduct_quota(identity, cost, command)

    async def grant(self, identity: str, amount: int) -> UserQuotaRecord:
        return await db.grant_quota(identity, amount, self.default_quota)

    async def sync_owners(self) -> None:
        """Create or upgrade every configured owner as privileged."""
        for identity in sorted(self.owners):
            await db.set_privileged(identity, True, self.default_quota)


# ---------------------------------------------------------------------------
# Permission gate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    record: UserQuotaRecord
    reason: ErrorKind | None = None


def authorize(
    record: UserQuotaRecord,
    cost: int,
    *,
    is_new: bool = False,
    privileged_only: bool = False,
) -> GateDecision:
    """Decide whether *record* may spend *cost*.

    Privileged records always pass.  ``is_new`` marks a record created for
    this very request, so a denial can say ``UNKNOWN_IDENTITY`` rather than
    ``INSUFFICIENT_QUOTA``.
    """
    if record.is_privileged:
        return GateDecision(allowed=True, record=record)
    if privileged_only:
        return GateDecision(allowed=False, record=record, reason=ErrorKind.NOT_PRIVILEGED)
    if record.remaining_quota >= cost:
        return GateDecision(allowed=True, record=record)
    reason = ErrorKind.UNKNOWN_IDENTITY if is_new else ErrorKind.INSUFFICIENT_QUOTA
    return GateDecision(allowed=False, record=record, reason=reason)
