"""SQLite-backed persistence for users, clients, sales and quotes."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .config import resolve_database_path
from .credentials import (
    LegacyPlaintext,
    classify_credential,
    hash_password,
    needs_migration,
    verify_password,
)
from .errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from .identity import UsersMetadata, resolve_users_metadata
from .models import (
    Client,
    JobSummary,
    Quote,
    QuoteStatus,
    Role,
    Sale,
    User,
    round_money,
    to_decimal,
)
from .records import insert_record, quote_identifier
from .schema import USERS_TABLE, load_table_columns

logger = logging.getLogger("kitchen_admin.database")

_ROWID = "_row_id"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS clients (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT,
    phone TEXT,
    address TEXT,
    notes TEXT,
    created_by TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sales (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id INTEGER NOT NULL REFERENCES clients(id) ON DELETE RESTRICT,
    job_name TEXT NOT NULL,
    description TEXT NOT NULL,
    quantity REAL NOT NULL CHECK (quantity > 0),
    unit_price REAL NOT NULL CHECK (unit_price >= 0),
    total REAL NOT NULL,
    created_by TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quotes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id INTEGER NOT NULL REFERENCES clients(id) ON DELETE RESTRICT,
    job_name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    total_amount REAL NOT NULL,
    notes TEXT,
    items_json TEXT NOT NULL,
    created_by TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sales_client_job ON sales(client_id, job_name);
CREATE INDEX IF NOT EXISTS idx_quotes_client_job ON quotes(client_id, job_name);
"""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _parse_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError("Role must be 'admin' or 'staff'") from exc


def _stored_role(value: Any) -> Role:
    # Rows written by older versions may carry roles such as 'user'.
    if value is None:
        return Role.STAFF
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        return Role.STAFF


class Database:
    """Thin wrapper around SQLite for the kitchen admin data."""

    def __init__(self, path: Path, *, users_metadata: Optional[UsersMetadata] = None) -> None:
        _ensure_directory(path)
        self._path = path
        self._users_metadata = users_metadata
        self._metadata_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that is committed, or rolled back, and always closed."""

        conn = self._open()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self.connection() as conn:
            load_table_columns(conn, USERS_TABLE, create_if_missing=True)
            conn.executescript(_SCHEMA)

    # ------------------------------------------------------------------
    # Users schema descriptor
    # ------------------------------------------------------------------
    def users_metadata(self, *, refresh: bool = False) -> UsersMetadata:
        """Return the resolved users-table descriptor, inspecting the table once."""

        with self._metadata_lock:
            if self._users_metadata is None or refresh:
                with self.connection() as conn:
                    columns = load_table_columns(conn, USERS_TABLE, create_if_missing=True)
                metadata = resolve_users_metadata(columns)
                logger.info(
                    "Users table resolved: identifier=%s password=%s name=%s role=%s",
                    metadata.identifier_column,
                    metadata.password_column,
                    metadata.name_column,
                    metadata.role_column,
                )
                if metadata.unsupported_required_columns:
                    logger.warning(
                        "Users table has unsupported required columns: %s",
                        ", ".join(metadata.unsupported_required_columns),
                    )
                self._users_metadata = metadata
            return self._users_metadata

    def refresh_users_metadata(self) -> UsersMetadata:
        return self.users_metadata(refresh=True)

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def _find_user_row(
        self,
        conn: sqlite3.Connection,
        metadata: UsersMetadata,
        identifier: str,
    ) -> Optional[sqlite3.Row]:
        column = quote_identifier(metadata.identifier_column)
        return conn.execute(
            f"SELECT rowid AS {_ROWID}, * FROM {quote_identifier(USERS_TABLE)} "
            f"WHERE {column} = ? COLLATE NOCASE ORDER BY rowid LIMIT 1",
            (identifier,),
        ).fetchone()

    @staticmethod
    def _normalize_identifier(identifier: str, metadata: UsersMetadata) -> str:
        normalized = identifier.strip()
        if metadata.identifier_is_email:
            normalized = normalized.lower()
        return normalized

    @staticmethod
    def _row_to_user(row: sqlite3.Row, metadata: UsersMetadata) -> User:
        role = _stored_role(row[metadata.role_column]) if metadata.role_column else Role.STAFF
        name = row[metadata.name_column] if metadata.name_column else None
        return User(
            id=int(row[_ROWID]),
            identifier=str(row[metadata.identifier_column]),
            role=role,
            name=name,
        )

    def count_users(self) -> int:
        self.users_metadata()
        with self.connection() as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM {quote_identifier(USERS_TABLE)}").fetchone()
        return int(row[0])

    def get_user_by_identifier(self, identifier: str) -> Optional[User]:
        metadata = self.users_metadata()
        with self.connection() as conn:
            row = self._find_user_row(conn, metadata, self._normalize_identifier(identifier, metadata))
        if row is None:
            return None
        return self._row_to_user(row, metadata)

    def authenticate_user(self, identifier: str, password: str) -> User:
        """Return the user for valid credentials.

        Rows holding a legacy credential are rewritten with a fresh hash once the
        supplied password has been verified against them.
        """

        metadata = self.users_metadata()
        normalized = self._normalize_identifier(identifier, metadata)
        password_column = metadata.password_column

        with self.connection() as conn:
            row = self._find_user_row(conn, metadata, normalized)
            if row is None:
                raise NotFoundError("User not found")

            raw_stored = row[password_column]
            stored = str(raw_stored) if raw_stored is not None else None
            if not verify_password(password, stored):
                raise AuthenticationError("Invalid credentials")

            if needs_migration(stored):
                conn.execute(
                    f"UPDATE {quote_identifier(USERS_TABLE)} SET {quote_identifier(password_column)} = ? "
                    "WHERE rowid = ?",
                    (hash_password(password), row[_ROWID]),
                )
                logger.info("Upgraded stored password for user %s", row[_ROWID])

            return self._row_to_user(row, metadata)

    def create_user(
        self,
        *,
        password: str,
        identifier: Optional[str] = None,
        username: Optional[str] = None,
        email: Optional[str] = None,
        name: Optional[str] = None,
        role: Role | str | None = None,
    ) -> User:
        """Create a new account using whichever columns the users table provides."""

        metadata = self.users_metadata()
        metadata.ensure_supports_account_creation()

        if metadata.identifier_is_email:
            login = _clean(email) or _clean(identifier) or _clean(username)
            label = "Email"
        else:
            login = _clean(username) or _clean(identifier) or _clean(email)
            label = "Username"
        if not login:
            raise ValidationError(f"{label} is required")
        login = self._normalize_identifier(login, metadata)

        if not password:
            raise ValidationError("Password is required")

        requested_role = _parse_role(role) if role is not None else Role.STAFF
        effective_role = requested_role if metadata.role_column else Role.STAFF
        display_name = _clean(name)

        values: Dict[str, Any] = {
            metadata.identifier_column: login,
            metadata.password_column: hash_password(password),
        }
        if metadata.name_column and display_name:
            values[metadata.name_column] = display_name
        if metadata.role_column:
            values[metadata.role_column] = effective_role.value
        secondary_email = _clean(email)
        if metadata.email_column and secondary_email:
            values[metadata.email_column] = secondary_email.lower()

        timestamp = _serialize_datetime(_current_timestamp())
        for stamp in ("created_at", "updated_at"):
            column = metadata.column(stamp)
            if column is not None and not column.has_default:
                values[column.name] = timestamp

        with self.connection() as conn:
            if self._find_user_row(conn, metadata, login) is not None:
                raise ConflictError(f"A user with that {metadata.identifier_column} already exists")
            user_id = insert_record(conn, USERS_TABLE, values, entity="user")

        logger.info("Created user %s with role %s", user_id, effective_role.value)
        return User(id=user_id, identifier=login, role=effective_role, name=display_name)

    def migrate_legacy_passwords(self) -> int:
        """Hash every plaintext password in place and return how many rows changed."""

        metadata = self.users_metadata()
        password_column = quote_identifier(metadata.password_column)
        migrated = 0
        pending = 0

        with self.connection() as conn:
            rows = conn.execute(
                f"SELECT rowid AS {_ROWID}, {password_column} AS stored FROM {quote_identifier(USERS_TABLE)}"
            ).fetchall()
            for row in rows:
                stored = row["stored"]
                if stored is None or not needs_migration(str(stored)):
                    continue
                credential = classify_credential(str(stored))
                if isinstance(credential, LegacyPlaintext):
                    conn.execute(
                        f"UPDATE {quote_identifier(USERS_TABLE)} SET {password_column} = ? WHERE rowid = ?",
                        (hash_password(credential.value), row[_ROWID]),
                    )
                    migrated += 1
                else:
                    pending += 1

        if pending:
            logger.warning(
                "%s user(s) still use a deprecated digest and will be rehashed on their next login",
                pending,
            )
        logger.info("Migrated %s plaintext password(s)", migrated)
        return migrated

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_client(row: sqlite3.Row, jobs: tuple = ()) -> Client:
        return Client(
            id=int(row["id"]),
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            address=row["address"],
            notes=row["notes"],
            created_at=_parse_datetime(row["created_at"]),
            jobs=jobs,
        )

    def create_client(
        self,
        name: str,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Client:
        normalized_name = _clean(name)
        if not normalized_name:
            raise ValidationError("Client name is required")

        created_at = _current_timestamp()
        values = {
            "name": normalized_name,
            "email": _clean(email),
            "phone": _clean(phone),
            "address": _clean(address),
            "notes": _clean(notes),
            "created_by": created_by,
            "created_at": _serialize_datetime(created_at),
        }
        with self.connection() as conn:
            client_id = insert_record(conn, "clients", values, entity="client")

        logger.info("Client %s created by %s", client_id, created_by)
        return Client(
            id=client_id,
            name=normalized_name,
            email=values["email"],
            phone=values["phone"],
            address=values["address"],
            notes=values["notes"],
            created_at=created_at,
        )

    def list_clients(self) -> List[Client]:
        """Return every client with per-job sale aggregates."""

        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT c.id, c.name, c.email, c.phone, c.address, c.notes, c.created_at,
                       j.job_name AS job_name,
                       COALESCE(j.sale_count, 0) AS sale_count,
                       COALESCE(j.total_amount, 0) AS total_amount
                  FROM clients c
                  LEFT JOIN (
                      SELECT client_id, job_name, COUNT(*) AS sale_count, SUM(total) AS total_amount
                        FROM sales
                       GROUP BY client_id, job_name
                  ) j ON j.client_id = c.id
                 ORDER BY c.name COLLATE NOCASE, c.id, j.job_name COLLATE NOCASE
                """
            ).fetchall()

        ordered: Dict[int, sqlite3.Row] = {}
        jobs: Dict[int, List[JobSummary]] = {}
        for row in rows:
            client_id = int(row["id"])
            if client_id not in ordered:
                ordered[client_id] = row
                jobs[client_id] = []
            if row["job_name"] is not None:
                jobs[client_id].append(
                    JobSummary(
                        job_name=row["job_name"],
                        sale_count=int(row["sale_count"]),
                        total_amount=round_money(row["total_amount"]),
                    )
                )

        return [self._row_to_client(row, tuple(jobs[client_id])) for client_id, row in ordered.items()]

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_sale(row: sqlite3.Row) -> Sale:
        return Sale(
            id=int(row["id"]),
            client_id=int(row["client_id"]),
            client_name=row["client_name"],
            job_name=row["job_name"],
            description=row["description"],
            quantity=to_decimal(row["quantity"]),
            unit_price=to_decimal(row["unit_price"]),
            total=round_money(row["total"]),
            created_by=row["created_by"],
            created_at=_parse_datetime(row["created_at"]),
        )

    def create_sale(
        self,
        client_id: int,
        *,
        job_name: str,
        description: str,
        quantity: Any,
        unit_price: Any,
        created_by: Optional[str] = None,
    ) -> Sale:
        """Record a sale; the total is always computed here, never trusted from input."""

        normalized_job = _clean(job_name)
        if not normalized_job:
            raise ValidationError("A job name is required.")
        normalized_description = _clean(description)
        if not normalized_description:
            raise ValidationError("A description is required.")

        quantity_value = to_decimal(quantity)
        unit_price_value = to_decimal(unit_price)
        if not quantity_value.is_finite() or quantity_value <= 0:
            raise ValidationError("Quantity must be greater than zero.")
        if not unit_price_value.is_finite() or unit_price_value < 0:
            raise ValidationError("Unit price must be zero or higher.")
        try:
            total = round_money(quantity_value * unit_price_value)
        except ValueError as exc:
            raise ValidationError("Sale total is too large.") from exc

        created_at = _current_timestamp()
        with self.connection() as conn:
            client = conn.execute("SELECT id, name FROM clients WHERE id = ?", (client_id,)).fetchone()
            if client is None:
                raise NotFoundError("Client not found.")

            sale_id = insert_record(
                conn,
                "sales",
                {
                    "client_id": client_id,
                    "job_name": normalized_job,
                    "description": normalized_description,
                    "quantity": float(quantity_value),
                    "unit_price": float(unit_price_value),
                    "total": float(total),
                    "created_by": created_by,
                    "created_at": _serialize_datetime(created_at),
                },
                entity="sale",
            )

        logger.info("Sale %s recorded for client %s by %s", sale_id, client_id, created_by)
        return Sale(
            id=sale_id,
            client_id=client_id,
            client_name=client["name"],
            job_name=normalized_job,
            description=normalized_description,
            quantity=quantity_value,
            unit_price=unit_price_value,
            total=total,
            created_by=created_by,
            created_at=created_at,
        )

    def list_sales(self) -> List[Sale]:
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT s.*, c.name AS client_name
                  FROM sales s
                  LEFT JOIN clients c ON c.id = s.client_id
                 ORDER BY s.created_at DESC, s.id DESC
                """
            ).fetchall()
        return [self._row_to_sale(row) for row in rows]

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------
    @staticmethod
    def _decode_items(raw: Optional[str], quote_id: int) -> List[Dict[str, Any]]:
        try:
            items = json.loads(raw or "[]")
        except json.JSONDecodeError:
            logger.warning("Quote %s has an unreadable line-item snapshot", quote_id)
            return []
        return items if isinstance(items, list) else []

    @classmethod
    def _row_to_quote(cls, row: sqlite3.Row) -> Quote:
        quote_id = int(row["id"])
        return Quote(
            id=quote_id,
            client_id=int(row["client_id"]),
            client_name=row["client_name"],
            job_name=row["job_name"],
            status=QuoteStatus(row["status"]),
            total_amount=round_money(row["total_amount"]),
            notes=row["notes"],
            created_by=row["created_by"],
            created_at=_parse_datetime(row["created_at"]),
            items=cls._decode_items(row["items_json"], quote_id),
        )

    def create_quote(
        self,
        client_id: int,
        *,
        job_name: str,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Quote:
        """Snapshot every sale for ``(client_id, job_name)`` into a new draft quote.

        The sales read and the quote insert are separate statements, so a sale
        recorded between the two is not part of the snapshot.
        """

        normalized_job = _clean(job_name)
        if not normalized_job:
            raise ValidationError("A job name is required.")

        created_at = _current_timestamp()
        with self.connection() as conn:
            client = conn.execute("SELECT id, name FROM clients WHERE id = ?", (client_id,)).fetchone()
            if client is None:
                raise NotFoundError("Client not found.")

            sales = conn.execute(
                """
                SELECT id, description, quantity, unit_price, total, created_at
                  FROM sales
                 WHERE client_id = ? AND job_name = ?
                 ORDER BY created_at ASC, id ASC
                """,
                (client_id, normalized_job),
            ).fetchall()
            if not sales:
                raise ValidationError("No sales found for this client and job.")

            items = [
                {
                    "saleId": int(sale["id"]),
                    "description": sale["description"],
                    "quantity": float(to_decimal(sale["quantity"])),
                    "unitPrice": float(to_decimal(sale["unit_price"])),
                    "total": float(round_money(sale["total"])),
                    "createdAt": sale["created_at"],
                }
                for sale in sales
            ]
            total_amount = round_money(sum((to_decimal(sale["total"]) for sale in sales), Decimal("0")))

            quote_id = insert_record(
                conn,
                "quotes",
                {
                    "client_id": client_id,
                    "job_name": normalized_job,
                    "status": QuoteStatus.DRAFT.value,
                    "total_amount": float(total_amount),
                    "notes": _clean(notes),
                    "items_json": json.dumps(items),
                    "created_by": created_by,
                    "created_at": _serialize_datetime(created_at),
                },
                entity="quote",
            )

        logger.info("Quote %s created for client %s job %r with %s item(s)", quote_id, client_id, normalized_job, len(items))
        return Quote(
            id=quote_id,
            client_id=client_id,
            client_name=client["name"],
            job_name=normalized_job,
            status=QuoteStatus.DRAFT,
            total_amount=total_amount,
            notes=_clean(notes),
            created_by=created_by,
            created_at=created_at,
            items=items,
        )

    def list_quotes(
        self,
        *,
        client_id: Optional[int] = None,
        job_name: Optional[str] = None,
    ) -> List[Quote]:
        query = (
            "SELECT q.*, c.name AS client_name FROM quotes q "
            "LEFT JOIN clients c ON c.id = q.client_id"
        )
        conditions: List[str] = []
        params: List[Any] = []
        if client_id is not None:
            conditions.append("q.client_id = ?")
            params.append(client_id)
        normalized_job = _clean(job_name)
        if normalized_job:
            conditions.append("q.job_name = ?")
            params.append(normalized_job)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY q.created_at DESC, q.id DESC"

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_quote(row) for row in rows]


__all__ = ["Database", "resolve_database_path"]
