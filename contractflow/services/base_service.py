"""Shared service base with session lifecycle behavior."""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from contractflow.core.config import Config, get_config
from contractflow.core.exceptions import DatabaseError
from contractflow.database import db as database
from contractflow.database.store import ContractStore


class BaseService:
    """Base class for services that operate on a SQLAlchemy session."""

    def __init__(self, db: Session | None = None, config: Config | None = None) -> None:
        self.db = db or database.SessionLocal()
        self.config = config or get_config()
        self.store = ContractStore(self.db)

    def commit(self, operation: str = "commit", **context) -> None:
        """Commit current transaction and rollback on failure."""
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DatabaseError(f"Failed to commit '{operation}'.", operation=operation, **context) from exc
        except Exception:
            self.db.rollback()
            raise

    def rollback(self) -> None:
        self.db.rollback()

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "BaseService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        self.close()
