"""Configuration management for the kitchen admin service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .errors import ConfigurationError

DEFAULT_TOKEN_TTL = timedelta(hours=2)


def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = _project_root() / "data"
    return (base_dir / "kitchen_admin.sqlite3").resolve(strict=False)


def _resolve_relative(raw: str, base_path: Path | None) -> Path:
    candidate = Path(raw).expanduser()
    if candidate.is_absolute() or base_path is None:
        return candidate.resolve(strict=False)
    return (base_path / candidate).resolve(strict=False)


def _parse_ttl_minutes(value: object) -> timedelta:
    try:
        minutes = int(str(value).strip())
    except ValueError as exc:
        raise ConfigurationError(f"Token TTL must be a whole number of minutes, got {value!r}") from exc
    if minutes <= 0:
        raise ConfigurationError("Token TTL must be greater than zero minutes")
    return timedelta(minutes=minutes)


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the API and the CLI."""

    database_path: Path
    token_secret: Optional[str] = None
    token_ttl: timedelta = DEFAULT_TOKEN_TTL
    host: str = "0.0.0.0"
    port: int = 8000

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw YAML data."""

        raw_db_path = data.get("database_path")
        if raw_db_path:
            database_path = _resolve_relative(str(raw_db_path), base_path)
        else:
            database_path = resolve_database_path(None)

        ttl = data.get("token_ttl_minutes")
        secret = data.get("token_secret")

        return Settings(
            database_path=database_path,
            token_secret=str(secret) if secret else None,
            token_ttl=_parse_ttl_minutes(ttl) if ttl is not None else DEFAULT_TOKEN_TTL,
            host=str(data.get("host", "0.0.0.0")),
            port=int(data.get("port", 8000)),
        )

    def require_token_secret(self) -> str:
        if not self.token_secret:
            raise ConfigurationError(
                "KITCHEN_ADMIN_TOKEN_SECRET must be configured to issue session tokens"
            )
        return self.token_secret


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (_project_root() / "config" / "kitchen_admin.yaml").resolve(strict=False)


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from the YAML file (if present) and apply environment overrides."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("KITCHEN_ADMIN_CONFIG"))

    raw: Dict[str, object] = {}
    if config_path.is_file():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
        raw = loaded

    settings = Settings.from_dict(raw, base_path=config_path.parent)

    db_override = env.get("KITCHEN_ADMIN_DB_PATH")
    if db_override:
        settings = replace(settings, database_path=resolve_database_path(db_override))

    secret_override = env.get("KITCHEN_ADMIN_TOKEN_SECRET")
    if secret_override:
        settings = replace(settings, token_secret=secret_override)

    ttl_override = env.get("KITCHEN_ADMIN_TOKEN_TTL_MINUTES")
    if ttl_override:
        settings = replace(settings, token_ttl=_parse_ttl_minutes(ttl_override))

    return settings


__all__ = [
    "DEFAULT_TOKEN_TTL",
    "Settings",
    "load_settings",
    "resolve_config_path",
    "resolve_database_path",
]
