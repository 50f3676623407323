"""Error taxonomy shared by the data layer and the HTTP handlers."""
from __future__ import annotations

from typing import Iterable


class ServiceError(Exception):
    """Base class for failures that map onto an HTTP status code."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = 400


class UnsupportedSchemaError(ValidationError):
    """The users table has mandatory columns the service cannot populate."""

    def __init__(self, columns: Iterable[str]) -> None:
        self.columns = tuple(columns)
        joined = ", ".join(self.columns)
        super().__init__(
            f"Users table has required columns that are not supported: {joined}. "
            "Add a default value or allow NULL for these columns."
        )


class AuthenticationError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class UnsupportedMediaTypeError(ServiceError):
    status_code = 415


class ConfigurationError(ServiceError):
    """Deployment or schema problem that an operator has to fix."""

    status_code = 500


class SchemaConfigurationError(ConfigurationError):
    pass


__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "ConflictError",
    "NotFoundError",
    "PermissionDeniedError",
    "SchemaConfigurationError",
    "ServiceError",
    "UnsupportedMediaTypeError",
    "UnsupportedSchemaError",
    "ValidationError",
]
