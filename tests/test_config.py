from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from kitchen_admin.config import load_settings, resolve_database_path
from kitchen_admin.errors import ConfigurationError


def test_defaults_without_config_file(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "missing.yaml", environ={})

    assert settings.database_path == resolve_database_path(None)
    assert settings.database_path.name == "kitchen_admin.sqlite3"
    assert settings.token_secret is None
    assert settings.token_ttl == timedelta(hours=2)
    with pytest.raises(ConfigurationError):
        settings.require_token_secret()


def test_yaml_file_is_loaded_relative_to_its_directory(tmp_path: Path) -> None:
    config_path = tmp_path / "kitchen_admin.yaml"
    config_path.write_text(
        "database_path: data/app.sqlite3\n"
        "token_secret: from-file\n"
        "token_ttl_minutes: 30\n"
        "port: 9000\n",
        encoding="utf-8",
    )

    settings = load_settings(config_path, environ={})

    assert settings.database_path == (tmp_path / "data" / "app.sqlite3").resolve()
    assert settings.require_token_secret() == "from-file"
    assert settings.token_ttl == timedelta(minutes=30)
    assert settings.port == 9000


def test_environment_overrides_file(tmp_path: Path) -> None:
    config_path = tmp_path / "kitchen_admin.yaml"
    config_path.write_text("token_secret: from-file\n", encoding="utf-8")

    settings = load_settings(
        config_path,
        environ={
            "KITCHEN_ADMIN_DB_PATH": str(tmp_path / "env.sqlite3"),
            "KITCHEN_ADMIN_TOKEN_SECRET": "from-env",
            "KITCHEN_ADMIN_TOKEN_TTL_MINUTES": "15",
        },
    )

    assert settings.database_path == (tmp_path / "env.sqlite3").resolve()
    assert settings.token_secret == "from-env"
    assert settings.token_ttl == timedelta(minutes=15)


def test_config_path_from_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("token_secret: custom\n", encoding="utf-8")

    settings = load_settings(environ={"KITCHEN_ADMIN_CONFIG": str(config_path)})

    assert settings.token_secret == "custom"


@pytest.mark.parametrize("value", ["soon", "0", "-5"])
def test_invalid_ttl_is_rejected(tmp_path: Path, value: str) -> None:
    with pytest.raises(ConfigurationError):
        load_settings(tmp_path / "missing.yaml", environ={"KITCHEN_ADMIN_TOKEN_TTL_MINUTES": value})


def test_non_mapping_config_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "kitchen_admin.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_settings(config_path, environ={})
