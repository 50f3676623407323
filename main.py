"""Command-line interface for the kitchen admin service."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from kitchen_admin.config import Settings, load_settings
from kitchen_admin.database import Database
from kitchen_admin.errors import ConfigurationError

logger = logging.getLogger("kitchen_admin.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Kitchen admin backend utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration file (default: KITCHEN_ADMIN_CONFIG or config/kitchen_admin.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the database tables")
    subparsers.add_parser(
        "migrate-passwords",
        help="Hash any passwords that are still stored in plaintext",
    )

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=None, help="Port for the API (default: 8000)")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "migrate-passwords"}

    # ``--config PATH`` may precede the subcommand.
    index = 0
    while index < len(args_list) and args_list[index] == "--config":
        index += 2
    remaining = args_list[index:]

    if not remaining:
        args_list = [*args_list, "serve"]
    else:
        first = remaining[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in remaining for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = [*args_list[:index], "serve", *remaining]

    return parser.parse_args(args_list)


def _load_settings(config: str | None) -> Settings:
    config_path = Path(config).expanduser().resolve(strict=False) if config else None
    return load_settings(config_path)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, database: Database, settings: Settings, host: str | None, port: int | None) -> None:
    from kitchen_admin.api import create_app
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting kitchen admin API on http://%s:%s", bind_host, bind_port)

    app = create_app(database=database, settings=settings)
    uvicorn.run(app, host=bind_host, port=bind_port, log_level="info")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        settings = _load_settings(args.config)
        database = _initialise_database(settings)

        if args.command == "serve":
            _serve(database=database, settings=settings, host=args.host, port=args.port)
        elif args.command == "migrate-passwords":
            migrated = database.migrate_legacy_passwords()
            print(f"Hashed {migrated} plaintext password(s).")
        elif args.command == "init-db":
            print("Database initialisation complete.")
    except ConfigurationError as exc:
        logger.error("%s", exc.message)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
