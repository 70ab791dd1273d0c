"""Finalization: the terminal step that produces the signed, paid document.

Preconditions are checked before any write. The document upload overwrites a
fixed per-contract key, and the contract row is only claimed while
``pdf_url`` is still empty, so a second run short-circuits instead of sending
a second pair of notifications.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func
from sqlalchemy.orm import Session

from contractflow.core.config import Config
from contractflow.core.enums import ActorType, ContractStatus, EventType, PaymentStatus, SignerType
from contractflow.core.exceptions import (
    ContractCancelledError,
    InvalidTransitionError,
    PreconditionFailedError,
    ServiceError,
    SignatureMismatchError,
    StorageError,
)
from contractflow.database.models import Contract, Signature
from contractflow.orchestration.state_machine import TransitionContext, contract_state_machine, is_fully_paid
from contractflow.services.audit_service import AuditLog
from contractflow.services.base_service import BaseService
from contractflow.services.document_renderer import DocumentData, render_contract_pdf
from contractflow.services.email_sender import EmailSender
from contractflow.services.notification_service import NotificationPreferences, NotificationService
from contractflow.services.signature_service import content_hash, verify_signature
from contractflow.services.storage import ArtifactKind, ObjectStorage, contract_artifact_path
from contractflow.utils.clock import utcnow

logger = logging.getLogger(__name__)

FINALIZABLE_STATUSES = [ContractStatus.PAID.value, ContractStatus.COMPLETED.value]


@dataclass
class FinalizationResult:
    contract: Contract
    pdf_url: str | None
    finalized: bool
    warnings: list[str] = field(default_factory=list)


class FinalizationService(BaseService):
    def __init__(
        self,
        db: Session | None = None,
        config: Config | None = None,
        storage: ObjectStorage | None = None,
        audit: AuditLog | None = None,
        notifier: NotificationService | None = None,
    ) -> None:
        super().__init__(db=db, config=config)
        self.storage = storage or ObjectStorage(config=self.config)
        self.audit = audit or AuditLog()
        self.notifier = notifier or NotificationService(
            EmailSender(self.config), NotificationPreferences(self.store)
        )

    def finalize(
        self,
        contract_id: str,
        company_id: str | None = None,
        payment_reference: str | None = None,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: str | None = None,
    ) -> FinalizationResult:
        contract = self.store.get_contract(contract_id, company_id=company_id)
        if contract.status == ContractStatus.COMPLETED.value and contract.pdf_url:
            return self._already_finalized(contract)

        signature, total_paid = self._check_preconditions(contract)
        client = self.store.get_client(contract.client_id)
        contractor = self.store.get_contractor(contract.contractor_id)
        warnings: list[str] = []

        try:
            image, transient_path = self._migrate_signature_image(contract, signature, warnings)
            pdf = self._render(contract, client, contractor, signature, image, total_paid, payment_reference)
            path = contract_artifact_path(ArtifactKind.FINAL_DOCUMENT, contract.company_id, contract.id)
            pdf_url = self.storage.put(path, pdf, content_type="application/pdf")

            now = utcnow()
            applied = self.store.update_contract_where(
                contract.id,
                FINALIZABLE_STATUSES,
                {
                    "status": ContractStatus.COMPLETED.value,
                    "completed_at": func.coalesce(Contract.completed_at, now),
                    "pdf_url": pdf_url,
                },
                extra_conditions=(Contract.pdf_url.is_(None),),
            )
        except Exception:
            self.rollback()
            raise
        if not applied:
            self.rollback()
            current = self.store.get_contract(contract.id)
            if current.status == ContractStatus.COMPLETED.value and current.pdf_url:
                return self._already_finalized(current)
            raise InvalidTransitionError("Contract changed during finalization.", contract_id=contract.id)
        self.commit("finalize", contract_id=contract.id)
        self.db.refresh(contract)
        self._cleanup_transient(contract.id, transient_path)

        warnings.extend(
            self.audit.record_many(
                contract.id,
                [
                    (EventType.FINALIZED, {"path": path, "total_paid_cents": total_paid}),
                    (EventType.COMPLETED, None),
                ],
                actor_type,
                actor_id=actor_id,
            )
        )
        warnings.extend(self.notifier.notify_finalized(contract, client, contractor, pdf_url))
        logger.info(
            "finalization.completed",
            extra={"event": "finalization.completed", "contract_id": contract.id, "path": path},
        )
        return FinalizationResult(contract=contract, pdf_url=pdf_url, finalized=True, warnings=warnings)

    def _already_finalized(self, contract: Contract) -> FinalizationResult:
        logger.info(
            "finalization.already_completed",
            extra={"event": "finalization.already_completed", "contract_id": contract.id},
        )
        return FinalizationResult(contract=contract, pdf_url=contract.pdf_url, finalized=False)

    def _check_preconditions(self, contract: Contract) -> tuple[Signature, int]:
        if contract.status == ContractStatus.CANCELLED.value:
            raise ContractCancelledError("This contract has been cancelled.", contract_id=contract.id)
        if contract.status not in FINALIZABLE_STATUSES:
            raise PreconditionFailedError(
                f"Contract must be paid before finalization (status: {contract.status}).",
                contract_id=contract.id,
                status=contract.status,
            )
        if contract.signed_at is None or contract.paid_at is None:
            raise PreconditionFailedError("Contract is missing its signing or payment timestamp.", contract_id=contract.id)

        tolerance = self.config.PAYMENT_AMOUNT_TOLERANCE_CENTS
        total_paid = self.store.sum_completed_payments(contract.id)
        if not is_fully_paid(total_paid, contract.total_amount_cents, tolerance):
            raise PreconditionFailedError(
                "Contract is not fully paid.",
                contract_id=contract.id,
                total_paid_cents=total_paid,
                total_amount_cents=contract.total_amount_cents,
            )

        signature = self.store.find_signature(contract.id, SignerType.CLIENT.value)
        if signature is None:
            raise PreconditionFailedError("Contract has no client signature.", contract_id=contract.id)
        if not verify_signature(signature, contract):
            raise SignatureMismatchError(
                "Signed content does not match the current contract content.", contract_id=contract.id
            )

        if contract.status == ContractStatus.PAID.value:
            contract_state_machine.assert_transition(
                contract.status,
                ContractStatus.COMPLETED.value,
                TransitionContext(
                    total_amount_cents=contract.total_amount_cents,
                    total_paid_cents=total_paid,
                    signature_verified=True,
                    paid_at_set=True,
                    tolerance_cents=tolerance,
                ),
            )
        return signature, total_paid

    def _migrate_signature_image(
        self, contract: Contract, signature: Signature, warnings: list[str]
    ) -> tuple[bytes | None, str | None]:
        """Copy the signing-time upload to its permanent key; failures only warn.

        Returns the image bytes and the transient key to delete once the
        contract update has committed.
        """
        if not signature.signature_path:
            return None, None
        permanent = contract_artifact_path(ArtifactKind.SIGNATURE_IMAGE, contract.company_id, contract.id)
        try:
            image = self.storage.get(signature.signature_path)
            transient = None
            if signature.signature_path != permanent:
                transient = signature.signature_path
                signature.signature_url = self.storage.put(permanent, image, content_type="image/png")
                signature.signature_path = permanent
            return image, transient
        except StorageError:
            logger.warning(
                "finalization.signature_migration_failed",
                extra={"event": "finalization.signature_migration_failed", "contract_id": contract.id},
            )
            warnings.append("signature image could not be moved to permanent storage")
            return None, None

    def _cleanup_transient(self, contract_id: str, path: str | None) -> None:
        if not path:
            return
        try:
            self.storage.delete(path)
        except StorageError:
            logger.info(
                "finalization.transient_cleanup_failed",
                extra={"event": "finalization.transient_cleanup_failed", "contract_id": contract_id, "path": path},
            )

    def _render(self, contract, client, contractor, signature, image, total_paid, payment_reference) -> bytes:
        reference = payment_reference or self._latest_payment_reference(contract.id)
        data = DocumentData(
            contract_id=contract.id,
            title=contract.title,
            content=contract.content,
            currency=contract.currency,
            total_amount_cents=contract.total_amount_cents,
            deposit_amount_cents=contract.deposit_amount_cents,
            total_paid_cents=total_paid,
            contractor_name=contractor.business_name or contractor.name,
            contractor_email=contractor.email,
            client_name=client.name,
            client_email=client.email,
            signer_name=signature.signer_name,
            signed_at=signature.signed_at,
            contract_hash=content_hash(contract.content),
            signature_image=image,
            payment_reference=reference,
        )
        try:
            return render_contract_pdf(data)
        except Exception as exc:
            logger.exception("finalization.render_failed", extra={"event": "finalization.render_failed", "contract_id": contract.id})
            raise ServiceError("Failed to render the final document.", contract_id=contract.id) from exc

    def _latest_payment_reference(self, contract_id: str) -> str | None:
        completed = [
            payment for payment in self.store.list_payments(contract_id) if payment.status == PaymentStatus.COMPLETED.value
        ]
        if not completed:
            return None
        latest = completed[-1]
        return latest.payment_intent_id or latest.session_id
