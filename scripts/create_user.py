import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from kitchen_admin.config import load_settings, resolve_database_path
from kitchen_admin.database import Database
from kitchen_admin.errors import ServiceError


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a kitchen admin user")
    parser.add_argument("identifier", help="Username or email address used to sign in")
    parser.add_argument("--name", default=None, help="Display name for the user")
    parser.add_argument(
        "--role",
        choices=("admin", "staff"),
        default="staff",
        help="Account role (default: staff)",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to KITCHEN_ADMIN_DB_PATH or data/kitchen_admin.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < 8:
            print("Password must be at least 8 characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    password = prompt_for_password()

    if args.db_path:
        db_path = resolve_database_path(args.db_path)
    else:
        db_path = load_settings().database_path

    database = Database(db_path)
    database.initialize()

    try:
        user = database.create_user(
            password=password,
            identifier=args.identifier,
            name=args.name,
            role=args.role,
        )
    except ServiceError as exc:  # duplicates, unsupported schema, etc.
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.identifier} ({user.role.value})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
