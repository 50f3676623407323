"""Signed, self-expiring session tokens for the JSON API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .config import DEFAULT_TOKEN_TTL
from .errors import AuthenticationError, ConfigurationError
from .models import Role, User

_TOKEN_SALT = "kitchen-admin.session"


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    identifier: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class SessionTokens:
    """Issue and validate session tokens.

    Tokens carry their own timestamp, so nothing is stored server-side and an
    issued token stays valid until it expires.
    """

    def __init__(self, secret: str, *, ttl: timedelta = DEFAULT_TOKEN_TTL) -> None:
        if not secret:
            raise ConfigurationError("A token secret must be configured")
        self._ttl = ttl
        self._serializer = URLSafeTimedSerializer(secret, salt=_TOKEN_SALT)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(self, user: User) -> str:
        return self._serializer.dumps(
            {"uid": user.id, "sub": user.identifier, "role": user.role.value}
        )

    def resolve(self, token: str) -> TokenClaims:
        try:
            payload = self._serializer.loads(token, max_age=self.max_age)
        except SignatureExpired as exc:
            raise AuthenticationError("Session token has expired") from exc
        except BadSignature as exc:
            raise AuthenticationError("Invalid session token") from exc

        try:
            return TokenClaims(
                user_id=int(payload["uid"]),
                identifier=str(payload["sub"]),
                role=Role(payload["role"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthenticationError("Invalid session token") from exc


__all__ = ["SessionTokens", "TokenClaims"]
