"""Domain models for users, clients, sales and quotes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert a stored or submitted number without binary float artefacts."""

    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Boolean values are not numbers")
    try:
        # ``str`` gives the shortest repr of a float, so 12.505 stays 12.505.
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid number: {value!r}") from exc


def round_money(value: Any) -> Decimal:
    """Round to cents, halves away from zero."""

    try:
        return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Amount is too large to round to cents: {value!r}") from exc


class Role(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"


class QuoteStatus(str, Enum):
    # Quotes are issued as drafts; no further transitions exist yet.
    DRAFT = "draft"


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the users table."""

    id: int
    identifier: str
    role: Role
    name: Optional[str] = None


@dataclass(frozen=True)
class JobSummary:
    job_name: str
    sale_count: int
    total_amount: Decimal


@dataclass(frozen=True)
class Client:
    id: int
    name: str
    email: Optional[str]
    phone: Optional[str]
    address: Optional[str]
    notes: Optional[str]
    created_at: datetime
    jobs: Tuple[JobSummary, ...] = ()

    @property
    def sale_count(self) -> int:
        return sum(job.sale_count for job in self.jobs)

    @property
    def total_amount(self) -> Decimal:
        return round_money(sum((job.total_amount for job in self.jobs), Decimal("0")))


@dataclass(frozen=True)
class Sale:
    id: int
    client_id: int
    client_name: Optional[str]
    job_name: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    created_by: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class Quote:
    """An immutable snapshot of the sales for one client job."""

    id: int
    client_id: int
    client_name: Optional[str]
    job_name: str
    status: QuoteStatus
    total_amount: Decimal
    notes: Optional[str]
    created_by: Optional[str]
    created_at: datetime
    items: List[Dict[str, Any]] = field(default_factory=list)


__all__ = [
    "Client",
    "JobSummary",
    "Quote",
    "QuoteStatus",
    "Role",
    "Sale",
    "User",
    "round_money",
    "to_decimal",
]
