"""Alembic wrapper for the clinic schema.

    python scripts/migrate.py                    # upgrade to head
    python scripts/migrate.py downgrade -1
    python scripts/migrate.py revision "add reminder column"
    python scripts/migrate.py current
"""

import argparse
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv

load_dotenv()

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def alembic_config() -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    return config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Manage clinic database migrations")
    sub = parser.add_subparsers(dest="action")

    upgrade = sub.add_parser("upgrade", help="Upgrade to a revision (default head)")
    upgrade.add_argument("revision", nargs="?", default="head")

    downgrade = sub.add_parser("downgrade", help="Downgrade to a revision")
    downgrade.add_argument("revision")

    revision = sub.add_parser("revision", help="Autogenerate a new revision")
    revision.add_argument("message")

    sub.add_parser("current", help="Show the applied revision")

    args = parser.parse_args(argv)
    config = alembic_config()
    action = args.action or "upgrade"

    try:
        if action == "upgrade":
            target = getattr(args, "revision", "head")
            print(f"Upgrading database to {target}...")
            command.upgrade(config, target)
        elif action == "downgrade":
            print(f"Downgrading database to {args.revision}...")
            command.downgrade(config, args.revision)
        elif action == "revision":
            print(f"Creating migration: {args.message}")
            command.revision(config, message=args.message, autogenerate=True)
        else:
            command.current(config, verbose=True)
    except Exception as e:
        print(f"✗ Migration {action} failed: {e}", file=sys.stderr)
        return 1

    print(f"✓ Migration {action} done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
