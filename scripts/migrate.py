"""Script to run database migrations.

Usage:
    python scripts/migrate.py                  upgrade to head
    python scripts/migrate.py down <revision>  downgrade to a revision
    python scripts/migrate.py current          show the applied revision
"""

import sys

from alembic import command
from alembic.config import Config

ALEMBIC_INI = "alembic.ini"


def run_migrations() -> None:
    """Run database migrations to latest version."""
    alembic_cfg = Config(ALEMBIC_INI)

    try:
        print("Running database migrations...")
        command.upgrade(alembic_cfg, "head")
        print("Migrations completed successfully")
    except Exception as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        sys.exit(1)


def downgrade(revision: str) -> None:
    """Downgrade the schema to ``revision``."""
    alembic_cfg = Config(ALEMBIC_INI)

    try:
        print(f"Downgrading database to {revision}...")
        command.downgrade(alembic_cfg, revision)
        print("Downgrade completed successfully")
    except Exception as e:
        print(f"Downgrade failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    if len(sys.argv) == 1:
        run_migrations()
    elif sys.argv[1] == "down" and len(sys.argv) == 3:
        downgrade(sys.argv[2])
    elif sys.argv[1] == "current":
        command.current(Config(ALEMBIC_INI), verbose=True)
    else:
        print(__doc__)
        sys.exit(2)
