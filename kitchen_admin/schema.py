"""Live table introspection for SQLite-backed tables."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from .errors import ConfigurationError

logger = logging.getLogger("kitchen_admin.schema")

USERS_TABLE = "users"

# Only the users table may be created on demand; every other table is owned by
# ``Database.initialize``.
_BOOTSTRAP_TABLES = {
    USERS_TABLE: """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE COLLATE NOCASE,
            password_hash TEXT NOT NULL,
            name TEXT,
            role TEXT NOT NULL DEFAULT 'staff',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """,
}


@dataclass(frozen=True)
class ColumnInfo:
    """Describes a single column as reported by ``PRAGMA table_info``."""

    name: str
    normalized_name: str
    required: bool
    has_default: bool
    primary_key: bool

    @classmethod
    def from_pragma(cls, name: str, notnull: int, default: Optional[str], pk: int) -> "ColumnInfo":
        has_default = default is not None
        primary_key = bool(pk)
        return cls(
            name=name,
            normalized_name=name.lower(),
            required=bool(notnull) and not has_default and not primary_key,
            has_default=has_default,
            primary_key=primary_key,
        )


def inspect_table(conn: Optional[sqlite3.Connection], table_name: str) -> List[ColumnInfo]:
    """Return the columns of ``table_name`` in declaration order.

    An empty list means the table does not exist.
    """

    if conn is None:
        raise ConfigurationError("Database binding is not configured")

    rows = conn.execute(
        'SELECT name, "notnull", dflt_value, pk FROM pragma_table_info(?) ORDER BY cid',
        (table_name,),
    ).fetchall()
    return [ColumnInfo.from_pragma(row[0], row[1], row[2], row[3]) for row in rows]


def create_bootstrap_table(conn: sqlite3.Connection, table_name: str) -> None:
    try:
        ddl = _BOOTSTRAP_TABLES[table_name.lower()]
    except KeyError as exc:
        raise ConfigurationError(f"Table '{table_name}' cannot be created automatically") from exc
    conn.execute(ddl)
    logger.info("Created missing '%s' table with the default schema", table_name)


def load_table_columns(
    conn: Optional[sqlite3.Connection],
    table_name: str,
    *,
    create_if_missing: bool = False,
) -> List[ColumnInfo]:
    """Inspect ``table_name``, optionally creating a known bootstrap table first."""

    columns = inspect_table(conn, table_name)
    if columns:
        return columns

    if not create_if_missing or table_name.lower() not in _BOOTSTRAP_TABLES:
        raise ConfigurationError(f"Table '{table_name}' does not exist")

    create_bootstrap_table(conn, table_name)
    columns = inspect_table(conn, table_name)
    if not columns:
        raise ConfigurationError(f"Table '{table_name}' could not be created")
    return columns


__all__ = [
    "ColumnInfo",
    "USERS_TABLE",
    "create_bootstrap_table",
    "inspect_table",
    "load_table_columns",
]
