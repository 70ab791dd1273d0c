"""Dependency providers for API handlers."""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from contractflow.auth.jwt import decode_jwt
from contractflow.core.config import Config, get_config
from contractflow.core.exceptions import AuthenticationError
from contractflow.database.db import get_db
from contractflow.database.store import ContractStore
from contractflow.services.audit_service import AuditLog
from contractflow.services.contract_service import ContractService
from contractflow.services.email_sender import EmailSender
from contractflow.services.finalization_service import FinalizationService
from contractflow.services.notification_service import NotificationPreferences, NotificationService
from contractflow.services.payment_gateway import PaymentGateway
from contractflow.services.payment_service import PaymentReconciliationService
from contractflow.services.storage import ObjectStorage


@dataclass(frozen=True)
class CurrentContractor:
    contractor_id: str
    company_id: str
    claims: dict[str, Any]


def get_settings() -> Config:
    """Return validated application configuration."""
    return get_config()


def get_db_session() -> Generator[Session, None, None]:
    """Yield SQLAlchemy session for dependency injection."""
    yield from get_db()


def get_current_contractor(token: str, settings: Config | None = None) -> CurrentContractor:
    """Resolve the calling contractor from a bearer token."""
    cfg = settings or get_settings()
    claims = decode_jwt(token=token, secret=cfg.JWT_SECRET)
    if claims.get("token_use") != "access":
        raise AuthenticationError("Access token required.")
    try:
        return CurrentContractor(
            contractor_id=str(claims["sub"]),
            company_id=str(claims["company_id"]),
            claims=claims,
        )
    except KeyError as exc:
        raise AuthenticationError("Invalid auth claims.") from exc


# Collaborator factories; tests replace these with fakes.


def get_storage() -> ObjectStorage:
    return ObjectStorage(config=get_settings())


def get_gateway() -> PaymentGateway:
    return PaymentGateway(get_settings())


def get_email_sender() -> EmailSender:
    return EmailSender(get_settings())


def get_audit_log() -> AuditLog:
    return AuditLog()


def _notifier(db: Session) -> NotificationService:
    return NotificationService(get_email_sender(), NotificationPreferences(ContractStore(db)))


def build_contract_service(db: Session) -> ContractService:
    return ContractService(
        db=db, config=get_settings(), audit=get_audit_log(), storage=get_storage(), notifier=_notifier(db)
    )


def build_payment_service(db: Session) -> PaymentReconciliationService:
    return PaymentReconciliationService(
        db=db, config=get_settings(), gateway=get_gateway(), audit=get_audit_log(), notifier=_notifier(db)
    )


def build_finalization_service(db: Session) -> FinalizationService:
    return FinalizationService(
        db=db, config=get_settings(), storage=get_storage(), audit=get_audit_log(), notifier=_notifier(db)
    )
