"""Create the schema directly, for local development without Alembic."""

import logging

from parley.db.session import create_tables

logger = logging.getLogger(__name__)


def init_db() -> None:
    """Initialize the database by creating all tables."""
    create_tables()
    logger.info("Database initialized.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
