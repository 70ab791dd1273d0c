"""Store adapter: typed reads and conditional writes over the ORM models.

Writes never commit; services group them into one transaction and commit
through ``BaseService.commit``. Every conditional write reports whether a row
matched so callers can treat a lost race as a no-op instead of re-reading.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from contractflow.core.enums import PaymentStatus
from contractflow.core.exceptions import ConfigurationError, DatabaseError, NotFoundError
from contractflow.database.models import (
    Client,
    Contract,
    ContractEvent,
    Contractor,
    Payment,
    Signature,
    SigningAttempt,
    UsageCounter,
)
from contractflow.utils.clock import utcnow
from contractflow.utils.ids import new_id

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT DO UPDATE; the config layer only accepts these.
UPSERT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


class ContractStore:
    """Data access for contracts and the rows they own."""

    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _guard(self, operation: str, **context: Any) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception(
                "store.operation_failed",
                extra={"event": "store.operation_failed", "contract_id": context.get("contract_id")},
            )
            raise DatabaseError(f"Store operation '{operation}' failed.", operation=operation, **context) from exc

    # ==========================================================================
    # READS
    # ==========================================================================

    def find_contract(self, contract_id: str, company_id: str | None = None) -> Contract | None:
        with self._guard("find_contract", contract_id=contract_id):
            stmt = select(Contract).where(Contract.id == contract_id)
            if company_id is not None:
                stmt = stmt.where(Contract.company_id == company_id)
            return self.db.scalars(stmt).first()

    def get_contract(self, contract_id: str, company_id: str | None = None) -> Contract:
        contract = self.find_contract(contract_id, company_id=company_id)
        if contract is None:
            raise NotFoundError(f"Contract {contract_id} not found.", contract_id=contract_id)
        return contract

    def find_contract_by_token_hash(self, token_hash: str) -> Contract | None:
        with self._guard("find_contract_by_token_hash"):
            return self.db.scalars(select(Contract).where(Contract.signing_token_hash == token_hash)).first()

    def get_client(self, client_id: str) -> Client:
        with self._guard("get_client", client_id=client_id):
            client = self.db.get(Client, client_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found.", client_id=client_id)
        return client

    def get_contractor(self, contractor_id: str) -> Contractor:
        with self._guard("get_contractor", contractor_id=contractor_id):
            contractor = self.db.get(Contractor, contractor_id)
        if contractor is None:
            raise NotFoundError(f"Contractor {contractor_id} not found.", contractor_id=contractor_id)
        return contractor

    def find_contractor(self, contractor_id: str) -> Contractor | None:
        with self._guard("find_contractor", contractor_id=contractor_id):
            return self.db.get(Contractor, contractor_id)

    def find_signature(self, contract_id: str, signer_type: str) -> Signature | None:
        with self._guard("find_signature", contract_id=contract_id):
            stmt = select(Signature).where(Signature.contract_id == contract_id, Signature.signer_type == signer_type)
            return self.db.scalars(stmt).first()

    def find_payment_by_session(self, session_id: str) -> Payment | None:
        with self._guard("find_payment_by_session", session_id=session_id):
            return self.db.scalars(select(Payment).where(Payment.session_id == session_id)).first()

    def list_payments(self, contract_id: str) -> list[Payment]:
        with self._guard("list_payments", contract_id=contract_id):
            stmt = select(Payment).where(Payment.contract_id == contract_id).order_by(Payment.created_at)
            return list(self.db.scalars(stmt).all())

    def list_events(self, contract_id: str) -> list[ContractEvent]:
        with self._guard("list_events", contract_id=contract_id):
            stmt = (
                select(ContractEvent)
                .where(ContractEvent.contract_id == contract_id)
                .order_by(ContractEvent.created_at, ContractEvent.id)
            )
            return list(self.db.scalars(stmt).all())

    def sum_completed_payments(self, contract_id: str) -> int:
        """Total of completed payments in minor units, read from the ledger."""
        with self._guard("sum_completed_payments", contract_id=contract_id):
            stmt = select(func.coalesce(func.sum(Payment.amount_cents), 0)).where(
                Payment.contract_id == contract_id,
                Payment.status == PaymentStatus.COMPLETED.value,
            )
            return int(self.db.scalar(stmt) or 0)

    # ==========================================================================
    # CONDITIONAL WRITES
    # ==========================================================================

    def update_contract_where(
        self,
        contract_id: str,
        allowed_statuses: Iterable[str],
        values: dict[str, Any],
        extra_conditions: Iterable[Any] = (),
    ) -> bool:
        """UPDATE contracts SET ... WHERE id = :id AND status IN (:allowed) [AND extra].

        Returns True when exactly one row matched.
        """
        statuses = [getattr(status, "value", status) for status in allowed_statuses]
        payload = dict(values)
        payload.setdefault("updated_at", utcnow())
        with self._guard("update_contract_where", contract_id=contract_id):
            stmt = (
                update(Contract)
                .where(Contract.id == contract_id, Contract.status.in_(statuses), *extra_conditions)
                .values(**payload)
                .execution_options(synchronize_session="fetch")
            )
            result = self.db.execute(stmt)
            return result.rowcount == 1

    def complete_payment_if_pending(
        self,
        session_id: str,
        completed_at: datetime,
        payment_intent_id: str | None = None,
    ) -> bool:
        """Mark the session's payment completed unless it already is."""
        with self._guard("complete_payment_if_pending", session_id=session_id):
            stmt = (
                update(Payment)
                .where(Payment.session_id == session_id, Payment.status != PaymentStatus.COMPLETED.value)
                .values(
                    status=PaymentStatus.COMPLETED.value,
                    completed_at=completed_at,
                    payment_intent_id=payment_intent_id,
                )
                .execution_options(synchronize_session="fetch")
            )
            return self.db.execute(stmt).rowcount == 1

    def fail_payment_if_pending(self, session_id: str) -> bool:
        with self._guard("fail_payment_if_pending", session_id=session_id):
            stmt = (
                update(Payment)
                .where(Payment.session_id == session_id, Payment.status == PaymentStatus.PENDING.value)
                .values(status=PaymentStatus.FAILED.value)
                .execution_options(synchronize_session="fetch")
            )
            return self.db.execute(stmt).rowcount == 1

    def insert_payment(self, **values: Any) -> Payment | None:
        """Insert a payment row and flush it.

        Returns None when another writer already holds the session id; the
        session is rolled back in that case, so this must be the first write
        of its transaction.
        """
        payment = Payment(**values)
        try:
            self.db.add(payment)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "store.payment_insert_conflict",
                extra={"event": "store.payment_insert_conflict", "session_id": values.get("session_id")},
            )
            return None
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DatabaseError(
                "Store operation 'insert_payment' failed.",
                operation="insert_payment",
                contract_id=values.get("contract_id"),
            ) from exc
        return payment

    def add(self, instance: Any) -> Any:
        with self._guard("add", entity=type(instance).__name__):
            self.db.add(instance)
            self.db.flush()
        return instance

    # ==========================================================================
    # COUNTERS AND ATTEMPTS
    # ==========================================================================

    def increment_usage(
        self,
        company_id: str,
        counter_type: str,
        period_start: datetime,
        period_end: datetime,
    ) -> None:
        """Create the period row or add one to it in a single statement.

        Two first sends of a month both land here; the unique period key turns
        the second insert into ``count = count + 1`` instead of a conflict.
        """
        dialect = self.db.get_bind().dialect.name
        insert = UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise ConfigurationError(f"Usage counters need an upsert-capable database, not {dialect}.")
        now = utcnow()
        stmt = insert(UsageCounter).values(
            id=new_id(),
            company_id=company_id,
            counter_type=counter_type,
            period_start=period_start,
            period_end=period_end,
            count=1,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UsageCounter.company_id, UsageCounter.counter_type, UsageCounter.period_start],
            set_={"count": UsageCounter.count + 1, "updated_at": now},
        )
        with self._guard("increment_usage", company_id=company_id):
            self.db.execute(stmt)

    def get_usage(self, company_id: str, counter_type: str, period_start: datetime) -> int:
        with self._guard("get_usage", company_id=company_id):
            stmt = select(UsageCounter.count).where(
                UsageCounter.company_id == company_id,
                UsageCounter.counter_type == counter_type,
                UsageCounter.period_start == period_start,
            )
            return int(self.db.scalar(stmt) or 0)

    def record_signing_attempt(
        self,
        ip_address: str,
        succeeded: bool,
        contract_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        with self._guard("record_signing_attempt", contract_id=contract_id):
            self.db.add(
                SigningAttempt(ip_address=ip_address, contract_id=contract_id, succeeded=succeeded, reason=reason)
            )
            self.db.flush()

    def count_failed_attempts(self, ip_address: str, since: datetime) -> int:
        with self._guard("count_failed_attempts"):
            stmt = select(func.count(SigningAttempt.id)).where(
                SigningAttempt.ip_address == ip_address,
                SigningAttempt.succeeded.is_(False),
                SigningAttempt.created_at >= since,
            )
            return int(self.db.scalar(stmt) or 0)
