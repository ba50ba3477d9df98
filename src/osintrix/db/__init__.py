"""SQLite persistence for quota records.

All functions are async using aiosqlite.
Module-level connection, initialized by init_database().

  _connection  - schema, init, write lock
  users        - quota records and the audit ledger
"""

from osintrix.db._connection import (
    _get_db,
    _init_test_database,
    atomic_write,
    close_database,
    init_database,
)
from osintrix.db.users import (
    deduct_quota,
    get_ledger,
    get_or_create_user,
    get_user,
    grant_quota,
    set_privileged,
)

__all__ = [
    "_get_db",
    "_init_test_database",
    "atomic_write",
    "close_database",
    "deduct_quota",
    "get_ledger",
    "get_or_create_user",
    "get_user",
    "grant_quota",
    "init_database",
    "set_privileged",
]
