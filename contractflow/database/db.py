"""Database connection and session management."""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from contractflow.core.config import get_config

logger = logging.getLogger(__name__)

config = get_config()
DATABASE_URL = config.DATABASE_URL
SERVICE_DATABASE_URL = config.SERVICE_DATABASE_URL


def _build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=config.DEBUG,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        echo=config.DEBUG,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=10,
        max_overflow=20,
    )


def _configure_engines(database_url: str, service_database_url: str) -> None:
    global DATABASE_URL, SERVICE_DATABASE_URL, engine, service_engine, SessionLocal, ServiceSessionLocal
    DATABASE_URL = database_url
    SERVICE_DATABASE_URL = service_database_url
    engine = _build_engine(database_url)
    service_engine = engine if service_database_url == database_url else _build_engine(service_database_url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    # Audit writes run under the service identity so the caller's access policy cannot block them.
    ServiceSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=service_engine)


_configure_engines(DATABASE_URL, SERVICE_DATABASE_URL)

Base = declarative_base()


def get_engine():
    """Return the active SQLAlchemy engine."""
    return engine


def get_active_database_url() -> str:
    return DATABASE_URL


def reset_engine(database_url: str | None = None, service_database_url: str | None = None) -> None:
    """Rebind engines/sessionmakers to the given URLs (or the current ones)."""
    resolved = database_url or DATABASE_URL
    _configure_engines(resolved, service_database_url or resolved)


def get_db() -> Generator[Session, None, None]:
    """Yield a session for dependency injection contexts."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Context-manager wrapper for safe DB session lifecycle."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_service_session() -> Generator[Session, None, None]:
    """Session bound to the privileged service identity."""
    db = ServiceSessionLocal()
    try:
        yield db
    finally:
        db.close()


def verify_database_connection() -> bool:
    """Verify DB connectivity during startup."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:  # pragma: no cover - exercised in deployment.
        logger.exception("database.connection_failed", extra={"event": "database.connection_failed"})
        logger.error("database.connection_failed.details: %s", exc)
        return False
