from __future__ import annotations

import sqlite3
from decimal import Decimal
from pathlib import Path

import pytest

from kitchen_admin.credentials import verify_password
from kitchen_admin.database import Database
from kitchen_admin.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    UnsupportedSchemaError,
    ValidationError,
)
from kitchen_admin.identity import resolve_users_metadata
from kitchen_admin.models import QuoteStatus, Role
from kitchen_admin.schema import ColumnInfo


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "kitchen.sqlite3")
    db.initialize()
    return db


def _prepare_users_table(path: Path, ddl: str, *rows: tuple) -> None:
    conn = sqlite3.connect(path)
    try:
        conn.execute(ddl)
        for sql, params in rows:
            conn.execute(sql, params)
        conn.commit()
    finally:
        conn.close()


def _stored_password(path: Path, column: str, identifier_column: str, identifier: str) -> str:
    conn = sqlite3.connect(path)
    try:
        row = conn.execute(
            f"SELECT {column} FROM users WHERE {identifier_column} = ?",
            (identifier,),
        ).fetchone()
    finally:
        conn.close()
    return row[0]


def test_initialize_bootstraps_default_users_table(database: Database) -> None:
    metadata = database.users_metadata()

    assert metadata.identifier_column == "username"
    assert metadata.password_column == "password_hash"
    assert database.count_users() == 0


def test_create_and_authenticate_user(database: Database) -> None:
    user = database.create_user(username="Ada", password="Sup3rSecurePwd!", name="Ada L.", role="admin")

    assert user.identifier == "Ada"
    assert user.role is Role.ADMIN

    first = database.authenticate_user("ada", "Sup3rSecurePwd!")
    second = database.authenticate_user("ADA", "Sup3rSecurePwd!")
    assert first == second
    assert first.id == user.id
    assert first.name == "Ada L."

    with pytest.raises(AuthenticationError):
        database.authenticate_user("ada", "Sup3rSecurePwd?")
    with pytest.raises(NotFoundError):
        database.authenticate_user("grace", "Sup3rSecurePwd!")


def test_passwords_are_stored_hashed(database: Database) -> None:
    database.create_user(username="ada", password="plaintext-never")

    stored = _stored_password(database.path, "password_hash", "username", "ada")
    assert stored != "plaintext-never"
    assert verify_password("plaintext-never", stored)


def test_duplicate_identifier_is_a_conflict(database: Database) -> None:
    database.create_user(username="ada", password="first-password")

    with pytest.raises(ConflictError):
        database.create_user(username="ADA", password="second-password")
    assert database.count_users() == 1


def test_create_user_validates_input(database: Database) -> None:
    with pytest.raises(ValidationError):
        database.create_user(username="  ", password="secret-password")
    with pytest.raises(ValidationError):
        database.create_user(username="ada", password="")
    with pytest.raises(ValidationError):
        database.create_user(username="ada", password="secret-password", role="owner")


def test_email_identifier_is_lower_cased(tmp_path: Path) -> None:
    path = tmp_path / "legacy.sqlite3"
    _prepare_users_table(
        path,
        "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL UNIQUE, password TEXT NOT NULL, role TEXT)",
    )
    database = Database(path)
    database.initialize()

    user = database.create_user(email="Owner@Example.com", password="kitchen-password")

    assert user.identifier == "owner@example.com"
    assert database.authenticate_user("OWNER@example.com", "kitchen-password").id == user.id


def test_unsupported_required_column_blocks_account_creation(tmp_path: Path) -> None:
    path = tmp_path / "tiered.sqlite3"
    _prepare_users_table(
        path,
        "CREATE TABLE users (id INTEGER PRIMARY KEY, username TEXT NOT NULL, password_hash TEXT NOT NULL, tier TEXT NOT NULL)",
    )
    database = Database(path)
    database.initialize()

    with pytest.raises(UnsupportedSchemaError) as excinfo:
        database.create_user(username="ada", password="secret-password")

    assert excinfo.value.columns == ("tier",)
    assert database.count_users() == 0


def test_required_timestamp_without_default_is_filled(tmp_path: Path) -> None:
    path = tmp_path / "stamped.sqlite3"
    _prepare_users_table(
        path,
        "CREATE TABLE users (id INTEGER PRIMARY KEY, username TEXT NOT NULL, password TEXT NOT NULL, "
        "created_at TEXT NOT NULL, updated_at TEXT NOT NULL)",
    )
    database = Database(path)
    database.initialize()

    user = database.create_user(username="ada", password="secret-password")

    conn = sqlite3.connect(path)
    try:
        created_at, updated_at = conn.execute(
            "SELECT created_at, updated_at FROM users WHERE id = ?", (user.id,)
        ).fetchone()
    finally:
        conn.close()
    assert created_at and updated_at


def test_injected_metadata_is_used_without_inspection(tmp_path: Path) -> None:
    fixed = resolve_users_metadata(
        [
            ColumnInfo.from_pragma("id", 0, None, 1),
            ColumnInfo.from_pragma("username", 1, None, 0),
            ColumnInfo.from_pragma("password_hash", 1, None, 0),
        ]
    )
    database = Database(tmp_path / "fixed.sqlite3", users_metadata=fixed)
    database.initialize()

    assert database.users_metadata() is fixed
    user = database.create_user(username="ada", password="secret-password")
    assert user.role is Role.STAFF


def test_refresh_picks_up_schema_changes(database: Database) -> None:
    assert database.users_metadata().email_column is None

    with database.connection() as conn:
        conn.execute("ALTER TABLE users ADD COLUMN email TEXT")

    assert database.users_metadata().email_column is None
    assert database.refresh_users_metadata().email_column == "email"


def test_legacy_plaintext_password_is_upgraded_on_login(tmp_path: Path) -> None:
    path = tmp_path / "legacy.sqlite3"
    _prepare_users_table(
        path,
        "CREATE TABLE users (id INTEGER PRIMARY KEY, username TEXT NOT NULL, password TEXT NOT NULL, role TEXT)",
        ("INSERT INTO users (username, password, role) VALUES (?, ?, ?)", ("ada", "hunter22", "user")),
    )
    database = Database(path)
    database.initialize()

    user = database.authenticate_user("ada", "hunter22")
    assert user.role is Role.STAFF

    stored = _stored_password(path, "password", "username", "ada")
    assert stored != "hunter22"
    assert stored.startswith("$pbkdf2-sha256$")
    assert database.authenticate_user("ada", "hunter22").id == user.id


def test_migrate_legacy_passwords(tmp_path: Path) -> None:
    path = tmp_path / "legacy.sqlite3"
    _prepare_users_table(
        path,
        "CREATE TABLE users (id INTEGER PRIMARY KEY, username TEXT NOT NULL, password TEXT)",
        ("INSERT INTO users (username, password) VALUES (?, ?)", ("ada", "first-secret")),
        ("INSERT INTO users (username, password) VALUES (?, ?)", ("grace", "second-secret")),
        ("INSERT INTO users (username, password) VALUES (?, ?)", ("linus", None)),
    )
    database = Database(path)
    database.initialize()

    assert database.migrate_legacy_passwords() == 2
    assert database.migrate_legacy_passwords() == 0
    assert verify_password("first-secret", _stored_password(path, "password", "username", "ada"))
    assert database.authenticate_user("grace", "second-secret").identifier == "grace"


def test_sale_total_rounds_half_up(database: Database) -> None:
    client = database.create_client("Smith Residence")

    sale = database.create_sale(
        client.id,
        job_name="Kitchen refit",
        description="Oak worktop",
        quantity=2,
        unit_price=12.505,
    )
    half_cent = database.create_sale(
        client.id,
        job_name="Kitchen refit",
        description="Handles",
        quantity=1,
        unit_price="0.125",
    )

    assert sale.total == Decimal("25.01")
    assert half_cent.total == Decimal("0.13")
    stored = database.list_sales()
    assert {item.total for item in stored} == {Decimal("25.01"), Decimal("0.13")}
    assert all(item.client_name == "Smith Residence" for item in stored)


def test_sale_total_too_large_to_round_is_rejected(database: Database) -> None:
    client = database.create_client("Jones")

    with pytest.raises(ValidationError, match="too large"):
        database.create_sale(client.id, job_name="Job", description="Item", quantity=1e15, unit_price=1e15)
    assert database.list_sales() == []


def test_sale_requires_existing_client_and_valid_amounts(database: Database) -> None:
    with pytest.raises(NotFoundError):
        database.create_sale(99, job_name="Job", description="Item", quantity=1, unit_price=1)

    client = database.create_client("Jones")
    with pytest.raises(ValidationError):
        database.create_sale(client.id, job_name="Job", description="Item", quantity=0, unit_price=1)
    with pytest.raises(ValidationError):
        database.create_sale(client.id, job_name="Job", description="Item", quantity=1, unit_price=-1)
    with pytest.raises(ValidationError):
        database.create_sale(client.id, job_name=" ", description="Item", quantity=1, unit_price=1)


def test_quote_without_sales_writes_nothing(database: Database) -> None:
    client = database.create_client("Jones")

    with pytest.raises(ValidationError):
        database.create_quote(client.id, job_name="Utility room")

    assert database.list_quotes() == []


def test_quote_snapshots_matching_sales(database: Database) -> None:
    client = database.create_client("Jones")
    other = database.create_client("Brown")
    database.create_sale(client.id, job_name="Kitchen", description="Cabinets", quantity=3, unit_price="150.10")
    database.create_sale(client.id, job_name="Kitchen", description="Sink", quantity=1, unit_price="89.99")
    database.create_sale(client.id, job_name="Bathroom", description="Taps", quantity=1, unit_price="40")
    database.create_sale(other.id, job_name="Kitchen", description="Cabinets", quantity=1, unit_price="10")

    quote = database.create_quote(client.id, job_name="Kitchen", notes="  Valid 30 days ")

    assert quote.status is QuoteStatus.DRAFT
    assert quote.total_amount == Decimal("540.29")
    assert quote.notes == "Valid 30 days"
    assert [item["description"] for item in quote.items] == ["Cabinets", "Sink"]

    database.create_sale(client.id, job_name="Kitchen", description="Extra shelf", quantity=1, unit_price="10")
    second = database.create_quote(client.id, job_name="Kitchen")

    assert second.id != quote.id
    assert second.total_amount == Decimal("550.29")

    stored = {item.id: item for item in database.list_quotes(client_id=client.id, job_name="Kitchen")}
    assert stored[quote.id].total_amount == Decimal("540.29")
    assert len(stored[quote.id].items) == 2
    assert len(stored[second.id].items) == 3
    assert database.list_quotes(client_id=other.id) == []


def test_quote_for_unknown_client(database: Database) -> None:
    with pytest.raises(NotFoundError):
        database.create_quote(42, job_name="Kitchen")


def test_list_clients_aggregates_sales(database: Database) -> None:
    alpha = database.create_client("alpha Homes", email=" sales@alpha.test ", phone="")
    database.create_client("Beta")
    database.create_sale(alpha.id, job_name="Kitchen", description="A", quantity=2, unit_price="10.50")
    database.create_sale(alpha.id, job_name="Kitchen", description="B", quantity=1, unit_price="1")
    database.create_sale(alpha.id, job_name="Annex", description="C", quantity=1, unit_price="5")

    clients = database.list_clients()

    assert [client.name for client in clients] == ["alpha Homes", "Beta"]
    first, second = clients
    assert first.email == "sales@alpha.test"
    assert first.phone is None
    assert [(job.job_name, job.sale_count, job.total_amount) for job in first.jobs] == [
        ("Annex", 1, Decimal("5.00")),
        ("Kitchen", 2, Decimal("22.00")),
    ]
    assert first.sale_count == 3
    assert first.total_amount == Decimal("27.00")
    assert second.jobs == ()
    assert second.total_amount == Decimal("0.00")


def test_client_requires_name(database: Database) -> None:
    with pytest.raises(ValidationError):
        database.create_client("   ")
