"""Append-only contract audit trail.

Events are written through the service-identity session so the caller's own
access policy cannot block them. A failed write is logged and reported to the
caller as ``False``; it never undoes the business operation that produced it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from contractflow.core.enums import ActorType, EventType
from contractflow.database import db as database
from contractflow.database.models import ContractEvent

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


class AuditLog:
    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory

    def _open(self) -> AbstractContextManager[Session]:
        factory = self._session_factory or database.get_service_session
        return factory()

    def record(
        self,
        contract_id: str,
        event_type: EventType | str,
        actor_type: ActorType | str,
        actor_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        event_value = getattr(event_type, "value", event_type)
        actor_value = getattr(actor_type, "value", actor_type)
        try:
            with self._open() as session:
                session.add(
                    ContractEvent(
                        contract_id=contract_id,
                        event_type=event_value,
                        actor_type=actor_value,
                        actor_id=actor_id,
                        event_metadata=metadata or {},
                    )
                )
                session.commit()
        except SQLAlchemyError:
            logger.exception(
                "audit.write_failed",
                extra={"event": "audit.write_failed", "contract_id": contract_id, "status": event_value},
            )
            return False
        return True

    def record_many(
        self,
        contract_id: str,
        events: list[tuple[EventType | str, dict[str, Any] | None]],
        actor_type: ActorType | str,
        actor_id: str | None = None,
    ) -> list[str]:
        """Record events in order; returns warnings for the ones that failed."""
        warnings: list[str] = []
        for event_type, metadata in events:
            if not self.record(contract_id, event_type, actor_type, actor_id=actor_id, metadata=metadata):
                warnings.append(f"audit event '{getattr(event_type, 'value', event_type)}' was not recorded")
        return warnings
