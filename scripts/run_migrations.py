#!/usr/bin/env python
"""Apply pending Alembic migrations (run before starting the API or worker)."""

import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from alembic import command
from alembic.config import Config

from strim.logging import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).parent.parent / "alembic.ini"


def run_migrations() -> bool:
    """Upgrade the database to the latest schema revision."""
    try:
        logger.info("=" * 60)
        logger.info("RUNNING DATABASE MIGRATIONS")
        logger.info("=" * 60)

        alembic_cfg = Config(str(ALEMBIC_INI))
        alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
        command.upgrade(alembic_cfg, "head")

        logger.info("Migrations complete - database schema is up to date")
        return True

    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        return False


if __name__ == "__main__":
    sys.exit(0 if run_migrations() else 1)
