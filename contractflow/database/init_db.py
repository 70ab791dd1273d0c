"""Bring the configured database up to the latest migration."""

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config as AlembicConfig

from contractflow.core.startup import bootstrap
import contractflow.database.db as db_module

PROJECT_ROOT = Path(__file__).resolve().parents[2]

logger = logging.getLogger(__name__)


def _build_alembic_config(database_url: str) -> AlembicConfig:
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def init_db() -> None:
    bootstrap()
    active_url = db_module.get_active_database_url()
    command.upgrade(_build_alembic_config(active_url), "head")
    logger.info(
        "database.migrated",
        extra={
            "event": "database.migrated",
            "database_url": active_url,
        },
    )


if __name__ == "__main__":
    init_db()
