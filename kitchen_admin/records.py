"""Parameterised INSERT construction and constraint-error translation."""
from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple

from .errors import ConflictError, NotFoundError, ServiceError, ValidationError

logger = logging.getLogger("kitchen_admin.records")

_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: (?P<columns>.+)", re.IGNORECASE)
_NOT_NULL_RE = re.compile(r"NOT NULL constraint failed: (?P<columns>.+)", re.IGNORECASE)
_CHECK_RE = re.compile(r"CHECK constraint failed: (?P<columns>.+)", re.IGNORECASE)


def quote_identifier(name: str) -> str:
    """Quote an SQL identifier taken from schema introspection."""

    if not name:
        raise ValueError("Identifier must not be empty")
    return '"' + name.replace('"', '""') + '"'


@dataclass(frozen=True)
class InsertStatement:
    sql: str
    params: Tuple[Any, ...]


def build_insert(table: str, values: Mapping[str, Any]) -> InsertStatement:
    """Build an INSERT whose column, placeholder and parameter lists line up."""

    if not values:
        raise ValueError("At least one column value is required")

    columns = list(values.keys())
    column_sql = ", ".join(quote_identifier(column) for column in columns)
    placeholders = ", ".join("?" for _ in columns)
    sql = f"INSERT INTO {quote_identifier(table)} ({column_sql}) VALUES ({placeholders})"
    return InsertStatement(sql=sql, params=tuple(values[column] for column in columns))


def _strip_table(columns: str) -> List[str]:
    names = []
    for part in columns.split(","):
        part = part.strip()
        names.append(part.split(".", 1)[1] if "." in part else part)
    return names


def translate_integrity_error(
    exc: sqlite3.IntegrityError,
    *,
    entity: str = "record",
) -> ServiceError:
    """Turn a raw SQLite constraint violation into a domain error."""

    text = str(exc)

    match = _UNIQUE_RE.search(text)
    if match:
        column = " and ".join(_strip_table(match.group("columns")))
        return ConflictError(f"A {entity} with that {column} already exists")

    match = _NOT_NULL_RE.search(text)
    if match:
        column = _strip_table(match.group("columns"))[0]
        return ValidationError(f"A value for '{column}' is required")

    match = _CHECK_RE.search(text)
    if match:
        return ValidationError(f"Invalid value for {entity}: {match.group('columns').strip()}")

    if "FOREIGN KEY constraint failed" in text:
        return NotFoundError(f"The {entity} references a record that does not exist")

    return ValidationError(f"The {entity} violates a data constraint")


def insert_record(
    conn: sqlite3.Connection,
    table: str,
    values: Mapping[str, Any],
    *,
    entity: str = "record",
) -> int:
    """Insert ``values`` into ``table`` and return the new row id."""

    statement = build_insert(table, values)
    try:
        cursor = conn.execute(statement.sql, statement.params)
    except sqlite3.IntegrityError as exc:
        logger.info("Constraint violation inserting into %s: %s", table, exc)
        raise translate_integrity_error(exc, entity=entity) from exc

    row_id = cursor.lastrowid
    if row_id is None:  # pragma: no cover - sqlite always reports a rowid for rowid tables
        raise ValidationError(f"The {entity} could not be created")
    return int(row_id)


__all__ = [
    "InsertStatement",
    "build_insert",
    "insert_record",
    "quote_identifier",
    "translate_integrity_error",
]
