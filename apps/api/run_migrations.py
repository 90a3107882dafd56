#!/usr/bin/env python3
"""
Container bootstrap: wait for the database, then bring the schema to head.

The API and the worker both start from this. A schema Alembic cannot
reach is fatal; nothing serves requests against an unknown schema.
"""

import logging
import os
import sys
import time

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("run_migrations")

API_ROOT = os.path.dirname(os.path.abspath(__file__))


def alembic_config():
    from alembic.config import Config

    cfg = Config(os.path.join(API_ROOT, "alembic.ini"))
    # Absolute so the bootstrap works from any working directory.
    cfg.set_main_option("script_location", os.path.join(API_ROOT, "alembic"))
    return cfg


def upgrade_to_head() -> None:
    from alembic import command

    command.upgrade(alembic_config(), "head")


def wait_for_database(max_attempts: int = 30, delay_seconds: float = 1.0) -> bool:
    """Poll until the database answers. Returns False if it never does."""
    from core.database import check_db_connection

    for attempt in range(1, max_attempts + 1):
        if check_db_connection():
            return True
        logger.warning(f"Database unavailable (attempt {attempt}/{max_attempts})")
        time.sleep(delay_seconds)
    return False


def main() -> int:
    from core.logging import setup_logging

    setup_logging()
    if not wait_for_database():
        logger.error("Database did not become ready; giving up")
        return 1

    try:
        upgrade_to_head()
    except Exception as e:
        logger.error(f"Alembic upgrade failed: {e}", exc_info=True)
        return 1

    logger.info("Schema is at head")
    return 0


if __name__ == "__main__":
    sys.exit(main())
