"""FastAPI application exposing the kitchen admin JSON endpoints."""
from __future__ import annotations

import json
import logging
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type, TypeVar

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import Settings, load_settings
from .database import Database
from .errors import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    ServiceError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from .models import Client, Quote, Role, Sale, User
from .security import BearerAuth, require_admin
from .tokens import SessionTokens, TokenClaims

logger = logging.getLogger("kitchen_admin.api")

ModelT = TypeVar("ModelT", bound=BaseModel)


def _strip_optional(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _decimal_input(value: object) -> object:
    if isinstance(value, bool):
        raise ValueError("must be a number")
    if isinstance(value, float):
        return str(value)
    return value


class LoginRequest(BaseModel):
    identifier: str = Field(..., validation_alias=AliasChoices("identifier", "username", "email"))
    password: str

    @field_validator("identifier")
    @classmethod
    def _normalize_identifier(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("identifier must not be empty")
        return stripped

    @field_validator("password")
    @classmethod
    def _require_password(cls, value: str) -> str:
        if not value:
            raise ValueError("password must not be empty")
        return value


class AddUserRequest(BaseModel):
    identifier: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password: str
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "fullName", "full_name"))
    role: Optional[Role] = None

    @field_validator("identifier", "username", "email", "name", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _strip_optional(value)

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: object) -> object:
        value = _strip_optional(value)
        if isinstance(value, str):
            return value.lower()
        return value

    @field_validator("password")
    @classmethod
    def _require_password(cls, value: str) -> str:
        if not value:
            raise ValueError("password must not be empty")
        return value

    @model_validator(mode="after")
    def _require_login(self):  # type: ignore[override]
        if not (self.identifier or self.username or self.email):
            raise ValueError("A username or email is required")
        return self


class ClientRequest(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("email", "phone", "address", "notes", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _strip_optional(value)

    @field_validator("name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Client name is required")
        return stripped


class SaleRequest(BaseModel):
    client_id: int = Field(..., validation_alias=AliasChoices("clientId", "client_id"))
    job_name: str = Field(..., validation_alias=AliasChoices("jobName", "job_name"))
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Field(..., validation_alias=AliasChoices("unitPrice", "unit_price"))

    @field_validator("quantity", "unit_price", mode="before")
    @classmethod
    def _accept_numbers(cls, value: object) -> object:
        return _decimal_input(value)

    @field_validator("client_id")
    @classmethod
    def _positive_client(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("A valid client is required.")
        return value

    @field_validator("job_name")
    @classmethod
    def _require_job(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("A job name is required.")
        return stripped

    @field_validator("description")
    @classmethod
    def _require_description(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("A description is required.")
        return stripped

    @field_validator("quantity")
    @classmethod
    def _positive_quantity(cls, value: Decimal) -> Decimal:
        if not value.is_finite() or value <= 0:
            raise ValueError("Quantity must be greater than zero.")
        return value

    @field_validator("unit_price")
    @classmethod
    def _non_negative_price(cls, value: Decimal) -> Decimal:
        if not value.is_finite() or value < 0:
            raise ValueError("Unit price must be zero or higher.")
        return value


class QuoteRequest(BaseModel):
    client_id: int = Field(..., validation_alias=AliasChoices("clientId", "client_id"))
    job_name: str = Field(..., validation_alias=AliasChoices("jobName", "job_name"))
    notes: Optional[str] = None

    @field_validator("notes", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _strip_optional(value)

    @field_validator("client_id")
    @classmethod
    def _positive_client(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("A valid client is required.")
        return value

    @field_validator("job_name")
    @classmethod
    def _require_job(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("A job name is required.")
        return stripped


def _validation_message(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    error = errors[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    if error.get("type") == "missing":
        return f"{location} is required"
    message = str(error.get("msg", "Invalid request"))
    if error.get("type") == "value_error":
        return message.removeprefix("Value error, ")
    return f"Invalid {location}: {message}" if location else message


def parse_payload(model: Type[ModelT], payload: Dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_validation_message(exc)) from exc


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Parse the request body as a JSON object, falling back to ``{}``."""

    content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    if content_type and "json" not in content_type and content_type != "text/plain":
        raise UnsupportedMediaTypeError("Request body must be JSON")

    body = await request.body()
    if not body.strip():
        return {}
    try:
        payload = json.loads(body)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _money(value: Decimal) -> float:
    return float(value)


def user_to_payload(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "identifier": user.identifier,
        "name": user.name,
        "role": user.role.value,
    }


def client_to_payload(client: Client) -> Dict[str, Any]:
    return {
        "id": client.id,
        "name": client.name,
        "email": client.email,
        "phone": client.phone,
        "address": client.address,
        "notes": client.notes,
        "createdAt": client.created_at.isoformat(),
        "saleCount": client.sale_count,
        "totalAmount": _money(client.total_amount),
        "jobs": [
            {
                "jobName": job.job_name,
                "saleCount": job.sale_count,
                "totalAmount": _money(job.total_amount),
            }
            for job in client.jobs
        ],
    }


def sale_to_payload(sale: Sale) -> Dict[str, Any]:
    return {
        "id": sale.id,
        "clientId": sale.client_id,
        "clientName": sale.client_name,
        "jobName": sale.job_name,
        "description": sale.description,
        "quantity": float(sale.quantity),
        "unitPrice": float(sale.unit_price),
        "total": _money(sale.total),
        "createdBy": sale.created_by,
        "createdAt": sale.created_at.isoformat(),
    }


def quote_to_payload(quote: Quote) -> Dict[str, Any]:
    return {
        "id": quote.id,
        "clientId": quote.client_id,
        "clientName": quote.client_name,
        "jobName": quote.job_name,
        "status": quote.status.value,
        "totalAmount": _money(quote.total_amount),
        "notes": quote.notes,
        "items": quote.items,
        "createdBy": quote.created_by,
        "createdAt": quote.created_at.isoformat(),
    }


def _error_response(status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
        headers=headers,
    )


def _trusted_proxy_hosts() -> List[str] | str:
    raw = os.getenv("KITCHEN_ADMIN_TRUSTED_PROXIES")
    if raw is None:
        return "127.0.0.1"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "127.0.0.1"


def _optional_int_query(request: Request, *names: str) -> Optional[int]:
    for name in names:
        raw = request.query_params.get(name)
        if raw is None or not raw.strip():
            continue
        try:
            return int(raw)
        except ValueError as exc:
            raise ValidationError(f"{name} must be a whole number") from exc
    return None


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
    tokens: SessionTokens | None = None,
    initialize_database: bool = False,
) -> FastAPI:
    """Create the JSON API application."""

    if settings is None and (database is None or tokens is None):
        settings = load_settings()

    if database is None:
        settings = settings or load_settings()
        database = Database(settings.database_path)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if tokens is None:
        settings = settings or load_settings()
        tokens = SessionTokens(settings.require_token_secret(), ttl=settings.token_ttl)

    try:
        database.users_metadata()
    except ConfigurationError as exc:
        logger.error("Users table is not usable until its schema is fixed: %s", exc.message)

    auth = BearerAuth(tokens)

    app = FastAPI(
        title="Kitchen Admin API",
        description="Staff authentication, clients, sales and quotes for the kitchen showroom",
        version="1.0.0",
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())
    app.state.database = database
    app.state.tokens = tokens

    @app.exception_handler(ServiceError)
    async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        if isinstance(exc, ConfigurationError):
            logger.error("Configuration error on %s %s: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.message)
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
        return _error_response(exc.status_code, exc.message, headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(400, "Invalid request")

    @app.exception_handler(Exception)
    async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(500, "Internal server error")

    def get_db() -> Database:
        return database

    async def get_current_user(request: Request) -> TokenClaims:
        return await auth(request)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/login")
    async def login(request: Request, db: Database = Depends(get_db)) -> Dict[str, Any]:
        payload = parse_payload(LoginRequest, await read_json_body(request))
        try:
            user = db.authenticate_user(payload.identifier, payload.password)
        except (AuthenticationError, NotFoundError):
            logger.warning("Failed login attempt for %s", payload.identifier)
            raise

        logger.info("User %s signed in", user.id)
        return {
            "success": True,
            "token": tokens.issue(user),
            "expiresIn": tokens.max_age,
            "user": user_to_payload(user),
        }

    @app.post("/api/add-user", status_code=201)
    async def add_user(request: Request, db: Database = Depends(get_db)) -> Dict[str, Any]:
        if db.count_users() == 0:
            default_role = Role.ADMIN
            created_by = None
            logger.info("No users exist yet; accepting the initial account without a session")
        else:
            claims = await auth(request)
            # Without a role column every account is staff, so any session may add users.
            if db.users_metadata().role_column is not None:
                require_admin(claims)
            default_role = Role.STAFF
            created_by = claims.identifier

        payload = parse_payload(AddUserRequest, await read_json_body(request))
        user = db.create_user(
            password=payload.password,
            identifier=payload.identifier,
            username=payload.username,
            email=payload.email,
            name=payload.name,
            role=payload.role or default_role,
        )
        logger.info("User %s added by %s", user.id, created_by or "initial setup")
        return {"success": True, "user": user_to_payload(user)}

    @app.get("/api/clients")
    async def list_clients(
        current: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> Dict[str, Any]:
        return {"success": True, "clients": [client_to_payload(client) for client in db.list_clients()]}

    @app.post("/api/clients", status_code=201)
    async def create_client(
        request: Request,
        current: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> Dict[str, Any]:
        payload = parse_payload(ClientRequest, await read_json_body(request))
        client = db.create_client(
            payload.name,
            email=payload.email,
            phone=payload.phone,
            address=payload.address,
            notes=payload.notes,
            created_by=current.identifier,
        )
        return {"success": True, "client": client_to_payload(client)}

    @app.get("/api/sales")
    async def list_sales(
        current: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> Dict[str, Any]:
        return {"success": True, "sales": [sale_to_payload(sale) for sale in db.list_sales()]}

    @app.post("/api/sales", status_code=201)
    async def create_sale(
        request: Request,
        current: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> Dict[str, Any]:
        payload = parse_payload(SaleRequest, await read_json_body(request))
        sale = db.create_sale(
            payload.client_id,
            job_name=payload.job_name,
            description=payload.description,
            quantity=payload.quantity,
            unit_price=payload.unit_price,
            created_by=current.identifier,
        )
        return {"success": True, "sale": sale_to_payload(sale)}

    @app.get("/api/quotes")
    async def list_quotes(
        request: Request,
        current: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> Dict[str, Any]:
        client_id = _optional_int_query(request, "clientId", "client_id")
        job_name = request.query_params.get("jobName") or request.query_params.get("job_name")
        quotes = db.list_quotes(client_id=client_id, job_name=job_name)
        return {"success": True, "quotes": [quote_to_payload(quote) for quote in quotes]}

    @app.post("/api/quotes", status_code=201)
    async def create_quote(
        request: Request,
        current: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> Dict[str, Any]:
        payload = parse_payload(QuoteRequest, await read_json_body(request))
        quote = db.create_quote(
            payload.client_id,
            job_name=payload.job_name,
            notes=payload.notes,
            created_by=current.identifier,
        )
        return {"success": True, "quote": quote_to_payload(quote)}

    return app


__all__ = [
    "AddUserRequest",
    "ClientRequest",
    "LoginRequest",
    "QuoteRequest",
    "SaleRequest",
    "create_app",
    "parse_payload",
    "read_json_body",
]
