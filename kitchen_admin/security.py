"""Request authentication for the kitchen admin API."""
from __future__ import annotations

from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import AuthenticationError, PermissionDeniedError
from .tokens import SessionTokens, TokenClaims


class BearerAuth:
    """Resolve ``Authorization: Bearer`` session tokens into claims."""

    def __init__(self, tokens: SessionTokens):
        self._tokens = tokens
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> TokenClaims:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise AuthenticationError("Unauthorized")

        token = credentials.credentials.strip()
        if not token:
            raise AuthenticationError("Unauthorized")
        return self._tokens.resolve(token)


def require_admin(claims: TokenClaims) -> TokenClaims:
    if not claims.is_admin:
        raise PermissionDeniedError("Administrator access is required")
    return claims


__all__ = ["BearerAuth", "require_admin"]
