"""Resolve which users-table columns hold the login identifier and password."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from .errors import SchemaConfigurationError, UnsupportedSchemaError
from .schema import ColumnInfo

IDENTIFIER_CANDIDATES = ("username", "email")
IDENTIFIER_FRAGMENTS = ("user", "email")
PASSWORD_CANDIDATES = ("password_hash", "password")
PASSWORD_FRAGMENTS = ("pass", "secret")
NAME_CANDIDATES = ("name", "full_name", "display_name")
NAME_FRAGMENTS = ("name",)
ROLE_CANDIDATES = ("role",)
ROLE_FRAGMENTS = ("role",)

# Columns the service never has to supply a value for.
_ALWAYS_SUPPORTED = frozenset({"id", "created_at", "updated_at"})


def _pick_column(
    columns: Sequence[ColumnInfo],
    candidates: Iterable[str],
    fragments: Iterable[str],
    *,
    exclude: Iterable[str] = (),
) -> Optional[ColumnInfo]:
    excluded = {name.lower() for name in exclude}
    by_name: Dict[str, ColumnInfo] = {}
    for column in columns:
        by_name.setdefault(column.normalized_name, column)

    for candidate in candidates:
        column = by_name.get(candidate)
        if column is not None and column.normalized_name not in excluded:
            return column

    fragment_list = tuple(fragments)
    for column in columns:
        if column.primary_key or column.normalized_name in excluded:
            continue
        if any(fragment in column.normalized_name for fragment in fragment_list):
            return column
    return None


@dataclass(frozen=True)
class UsersMetadata:
    """Typed description of the live users table."""

    columns: Tuple[ColumnInfo, ...]
    identifier_column: str
    password_column: str
    name_column: Optional[str] = None
    role_column: Optional[str] = None
    email_column: Optional[str] = None
    unsupported_required_columns: Tuple[str, ...] = ()

    @property
    def identifier_is_email(self) -> bool:
        return "email" in self.identifier_column.lower()

    def column(self, name: str) -> Optional[ColumnInfo]:
        lowered = name.lower()
        for column in self.columns:
            if column.normalized_name == lowered:
                return column
        return None

    def ensure_supports_account_creation(self) -> None:
        if self.unsupported_required_columns:
            raise UnsupportedSchemaError(self.unsupported_required_columns)


def resolve_users_metadata(columns: Sequence[ColumnInfo]) -> UsersMetadata:
    """Pick identifier, password and optional profile columns from ``columns``.

    Raises :class:`SchemaConfigurationError` when no identifier or password
    column can be found, since no login or account creation can work then.
    """

    identifier = _pick_column(columns, IDENTIFIER_CANDIDATES, IDENTIFIER_FRAGMENTS)
    if identifier is None:
        raise SchemaConfigurationError(
            "Users table is missing a login column; add a 'username' or 'email' column"
        )

    password = _pick_column(
        columns,
        PASSWORD_CANDIDATES,
        PASSWORD_FRAGMENTS,
        exclude=(identifier.normalized_name,),
    )
    if password is None:
        raise SchemaConfigurationError(
            "Users table is missing a password column; add a 'password_hash' or 'password' column"
        )

    taken = {identifier.normalized_name, password.normalized_name}
    identifier_like = {
        column.normalized_name
        for column in columns
        if any(fragment in column.normalized_name for fragment in IDENTIFIER_FRAGMENTS)
    }

    name = _pick_column(columns, NAME_CANDIDATES, NAME_FRAGMENTS, exclude=taken | identifier_like)
    role = _pick_column(columns, ROLE_CANDIDATES, ROLE_FRAGMENTS, exclude=taken)

    email: Optional[ColumnInfo] = None
    if identifier.normalized_name != "email":
        email = next((column for column in columns if column.normalized_name == "email"), None)

    supported = set(_ALWAYS_SUPPORTED) | taken
    for extra in (name, role, email):
        if extra is not None:
            supported.add(extra.normalized_name)

    unsupported = tuple(
        column.name
        for column in columns
        if column.required and column.normalized_name not in supported
    )

    return UsersMetadata(
        columns=tuple(columns),
        identifier_column=identifier.name,
        password_column=password.name,
        name_column=name.name if name else None,
        role_column=role.name if role else None,
        email_column=email.name if email else None,
        unsupported_required_columns=unsupported,
    )


__all__ = ["UsersMetadata", "resolve_users_metadata"]
