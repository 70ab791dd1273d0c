"""Contract service: authoring, sending, signing and voiding.

Every status change goes through ``contract_state_machine`` and is applied
with a conditional UPDATE, so a concurrent writer turns into a typed error
rather than a silent overwrite.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from contractflow.core.config import Config
from contractflow.core.enums import (
    EDITABLE_STATUSES,
    LOCKED_STATUSES,
    ActorType,
    ContractStatus,
    EventType,
    SignerType,
)
from contractflow.core.exceptions import (
    ContractAlreadySignedError,
    ContractCancelledError,
    DatabaseError,
    InvalidTransitionError,
    NotFoundError,
    SignatureMismatchError,
    TokenAlreadyUsedError,
    ValidationError,
)
from contractflow.database.models import Contract, ContractEvent, Contractor, Signature
from contractflow.orchestration.state_machine import (
    CONTENT_FIELDS,
    TransitionContext,
    contract_state_machine,
)
from contractflow.services.audit_service import AuditLog
from contractflow.services.base_service import BaseService
from contractflow.services.email_sender import EmailSender
from contractflow.services.notification_service import NotificationPreferences, NotificationService
from contractflow.services.signature_service import (
    StoredImage,
    content_hash,
    decode_data_url,
    upload_transient_signature,
)
from contractflow.services.signing_tokens import SigningTokenManager, hash_token
from contractflow.services.storage import ObjectStorage
from contractflow.services.usage_service import UsageService
from contractflow.utils.clock import utcnow
from contractflow.utils.validators import sanitize_text

logger = logging.getLogger(__name__)

RESENDABLE_STATUSES = frozenset(
    {ContractStatus.SENT.value, ContractStatus.SIGNED.value, ContractStatus.PAID.value}
)
MAX_TITLE_LENGTH = 300
MAX_CONTENT_LENGTH = 200000


@dataclass
class SignaturePayload:
    signer_name: str
    signature_data_url: str | None = None
    signer_email: str | None = None
    contract_hash: str | None = None


@dataclass
class SendResult:
    contract: Contract
    signing_url: str
    expires_at: datetime
    warnings: list[str] = field(default_factory=list)


@dataclass
class SigningResult:
    contract: Contract
    signature: Signature
    warnings: list[str] = field(default_factory=list)


def _validate_amounts(total_amount_cents: int, deposit_amount_cents: int) -> None:
    if total_amount_cents < 0:
        raise ValidationError("Total amount cannot be negative.")
    if deposit_amount_cents < 0:
        raise ValidationError("Deposit amount cannot be negative.")
    if deposit_amount_cents > total_amount_cents:
        raise ValidationError("Deposit amount cannot exceed the total amount.")


def _bounded_text(value: str | None, max_len: int, label: str) -> str:
    cleaned = sanitize_text(value, max_len=max_len + 1)
    if len(cleaned) > max_len:
        raise ValidationError(f"Contract {label} cannot exceed {max_len} characters.")
    return cleaned


class ContractService(BaseService):
    """Service for contract authoring and the draft -> sent -> signed path."""

    def __init__(
        self,
        db: Session | None = None,
        config: Config | None = None,
        audit: AuditLog | None = None,
        storage: ObjectStorage | None = None,
        notifier: NotificationService | None = None,
    ) -> None:
        super().__init__(db=db, config=config)
        self.audit = audit or AuditLog()
        self.storage = storage or ObjectStorage(config=self.config)
        self.notifier = notifier or NotificationService(
            EmailSender(self.config), NotificationPreferences(self.store)
        )
        self.tokens = SigningTokenManager(self.store, self.config)

    # ==========================================================================
    # AUTHORING
    # ==========================================================================

    def get_contract(self, contract_id: str, company_id: str) -> Contract:
        return self.store.get_contract(contract_id, company_id=company_id)

    def create_contract(
        self,
        company_id: str,
        contractor_id: str,
        client_id: str,
        title: str,
        content: str,
        total_amount_cents: int,
        deposit_amount_cents: int = 0,
        field_values: dict[str, Any] | None = None,
        template_id: str | None = None,
        currency: str | None = None,
    ) -> Contract:
        _validate_amounts(total_amount_cents, deposit_amount_cents)
        cleaned_title = _bounded_text(title, MAX_TITLE_LENGTH, "title")
        if not cleaned_title:
            raise ValidationError("Contract title is required.")

        contractor = self.store.get_contractor(contractor_id)
        client = self.store.get_client(client_id)
        if contractor.company_id != company_id or client.company_id != company_id:
            raise NotFoundError("Client or contractor not found for this company.", company_id=company_id)

        contract = Contract(
            company_id=company_id,
            contractor_id=contractor_id,
            client_id=client_id,
            template_id=template_id,
            title=cleaned_title,
            content=_bounded_text(content, MAX_CONTENT_LENGTH, "content"),
            field_values=field_values or {},
            total_amount_cents=total_amount_cents,
            deposit_amount_cents=deposit_amount_cents,
            currency=(currency or self.config.CURRENCY).lower(),
            status=ContractStatus.DRAFT.value,
        )
        self.store.add(contract)
        self.commit("create_contract", company_id=company_id)
        self.db.refresh(contract)

        self.audit.record(contract.id, EventType.CREATED, ActorType.CONTRACTOR, actor_id=contractor_id)
        logger.info(
            "contract.created",
            extra={"event": "contract.created", "contract_id": contract.id, "company_id": company_id},
        )
        return contract

    def update_contract(self, contract_id: str, company_id: str, actor_id: str, changes: dict[str, Any]) -> Contract:
        """Apply content edits; refused once the client has signed."""
        unknown = set(changes) - CONTENT_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")
        if not changes:
            raise ValidationError("No changes supplied.")

        contract = self.get_contract(contract_id, company_id)
        contract_state_machine.assert_editable(contract.status, set(changes))

        values = dict(changes)
        if "title" in values:
            values["title"] = _bounded_text(values["title"], MAX_TITLE_LENGTH, "title")
            if not values["title"]:
                raise ValidationError("Contract title is required.")
        if "content" in values:
            values["content"] = _bounded_text(values["content"], MAX_CONTENT_LENGTH, "content")
        _validate_amounts(
            values.get("total_amount_cents", contract.total_amount_cents),
            values.get("deposit_amount_cents", contract.deposit_amount_cents),
        )
        changed = sorted(key for key, value in values.items() if getattr(contract, key) != value)

        # The status predicate is the lock: a concurrent signature makes this match nothing.
        applied = self.store.update_contract_where(contract_id, EDITABLE_STATUSES, values)
        if not applied:
            self.rollback()
            current = self.get_contract(contract_id, company_id)
            contract_state_machine.assert_editable(current.status, set(changes))
            raise InvalidTransitionError("Contract changed while it was being edited.", contract_id=contract_id)
        self.commit("update_contract", contract_id=contract_id)
        self.db.refresh(contract)

        if changed:
            self.audit.record(
                contract_id, EventType.CONTENT_UPDATED, ActorType.CONTRACTOR, actor_id=actor_id, metadata={"fields": changed}
            )
        return contract

    # ==========================================================================
    # SENDING
    # ==========================================================================

    def send_contract(self, contract_id: str, company_id: str, actor_id: str) -> SendResult:
        contract = self.get_contract(contract_id, company_id)
        contract_state_machine.assert_transition(
            contract.status,
            ContractStatus.SENT.value,
            TransitionContext(
                title=contract.title or "",
                content=contract.content or "",
                total_amount_cents=contract.total_amount_cents,
                deposit_amount_cents=contract.deposit_amount_cents,
            ),
        )

        issued = self.tokens.issue()
        applied = self.store.update_contract_where(
            contract_id,
            [ContractStatus.DRAFT.value],
            {
                "status": ContractStatus.SENT.value,
                "signing_token_hash": issued.token_hash,
                "signing_token_expires_at": issued.expires_at,
                "signing_token_used_at": None,
            },
        )
        if not applied:
            self.rollback()
            raise InvalidTransitionError("Contract is no longer a draft.", contract_id=contract_id)
        self.commit("send_contract", contract_id=contract_id)
        self.db.refresh(contract)

        self.audit.record(
            contract_id,
            EventType.SENT,
            ActorType.CONTRACTOR,
            actor_id=actor_id,
            metadata={"expires_at": issued.expires_at.isoformat()},
        )
        warnings = self._count_send(company_id, contract_id)
        signing_url = self.tokens.signing_url(issued.raw)
        warnings.extend(
            self.notifier.send_signing_link(contract, contract.client, contract.contractor, signing_url)
        )
        logger.info(
            "contract.sent",
            extra={"event": "contract.sent", "contract_id": contract_id, "company_id": company_id},
        )
        return SendResult(contract=contract, signing_url=signing_url, expires_at=issued.expires_at, warnings=warnings)

    def _count_send(self, company_id: str, contract_id: str) -> list[str]:
        """Bump the monthly send counter in its own transaction; failure is only a warning."""
        try:
            UsageService(db=self.db, config=self.config).increment_usage(company_id)
        except DatabaseError:
            self.rollback()
            logger.warning(
                "contract.usage_increment_failed",
                extra={"event": "contract.usage_increment_failed", "contract_id": contract_id, "company_id": company_id},
            )
            return ["usage counter could not be updated"]
        return []

    def resend_signing_link(self, contract_id: str, company_id: str, actor_id: str) -> SendResult:
        """Issue a fresh link; the previous link stops working.

        A signed or paid contract still needs the link to pay its balance, so
        those are reissued too. Their first-use marker is kept, which keeps the
        new link from being used to sign again.
        """
        contract = self.get_contract(contract_id, company_id)
        status = contract.status
        if status == ContractStatus.CANCELLED.value:
            raise ContractCancelledError("This contract has been cancelled.", contract_id=contract_id)
        if status not in RESENDABLE_STATUSES:
            raise InvalidTransitionError(
                f"A new link cannot be issued while the contract is {status}.",
                contract_id=contract_id,
            )

        issued = self.tokens.issue()
        values: dict[str, Any] = {
            "signing_token_hash": issued.token_hash,
            "signing_token_expires_at": issued.expires_at,
        }
        if status == ContractStatus.SENT.value:
            values["signing_token_used_at"] = None
        # Guarded on the status read above so a concurrent signature never gets its marker cleared.
        applied = self.store.update_contract_where(contract_id, [status], values)
        if not applied:
            self.rollback()
            raise InvalidTransitionError("Contract changed while the link was being reissued.", contract_id=contract_id)
        self.commit("resend_signing_link", contract_id=contract_id)
        self.db.refresh(contract)

        self.audit.record(
            contract_id,
            EventType.SENT,
            ActorType.CONTRACTOR,
            actor_id=actor_id,
            metadata={"resend": True, "status": status, "expires_at": issued.expires_at.isoformat()},
        )
        signing_url = self.tokens.signing_url(issued.raw)
        warnings = self.notifier.send_signing_link(
            contract,
            contract.client,
            contract.contractor,
            signing_url,
            awaiting_payment=status != ContractStatus.SENT.value,
        )
        return SendResult(contract=contract, signing_url=signing_url, expires_at=issued.expires_at, warnings=warnings)

    # ==========================================================================
    # CLIENT ACCESS AND SIGNING
    # ==========================================================================

    def get_for_token(self, raw_token: str, ip_address: str | None = None) -> Contract:
        """Read-only client view; does not consume the link."""
        contract = self.tokens.validate(raw_token, ip_address=ip_address, one_time=False, record_use=False)
        self.commit("get_for_token", contract_id=contract.id)
        return contract

    def sign_contract(
        self,
        raw_token: str,
        payload: SignaturePayload,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SigningResult:
        signer_name = sanitize_text(payload.signer_name, max_len=200)
        if not signer_name:
            raise ValidationError("Full name is required.")

        contract = self.tokens.validate(raw_token, ip_address=ip_address, one_time=False, record_use=False)
        self.commit("record_signing_attempt", contract_id=contract.id)
        if contract.status in LOCKED_STATUSES:
            raise ContractAlreadySignedError("This contract has already been signed.", contract_id=contract.id)
        one_time = self.config.SIGNING_TOKEN_ONE_TIME
        if one_time and contract.signing_token_used_at is not None:
            raise TokenAlreadyUsedError("This signing link has already been used.", contract_id=contract.id)

        signed_content = contract.content
        current_hash = content_hash(signed_content)
        submitted_hash = payload.contract_hash or current_hash
        contract_state_machine.assert_transition(
            contract.status,
            ContractStatus.SIGNED.value,
            TransitionContext(token_verified=True, signature_hash=submitted_hash, content_hash=current_hash),
        )

        image = decode_data_url(payload.signature_data_url) if payload.signature_data_url else None
        stored: StoredImage | None = None
        if image is not None:
            stored = upload_transient_signature(
                self.storage, contract.company_id, contract.id, contract.client_id, image
            )

        now = utcnow()
        conditions = [
            Contract.content == signed_content,
            Contract.signing_token_hash == hash_token(raw_token, self.config.SIGNING_TOKEN_SECRET),
        ]
        if one_time:
            conditions.append(Contract.signing_token_used_at.is_(None))
        applied = self.store.update_contract_where(
            contract.id,
            [ContractStatus.SENT.value],
            {"status": ContractStatus.SIGNED.value, "signed_at": now, "signing_token_used_at": now},
            extra_conditions=conditions,
        )
        if not applied:
            self.rollback()
            self._raise_sign_conflict(contract.id, signed_content)

        signature = Signature(
            contract_id=contract.id,
            signer_type=SignerType.CLIENT.value,
            signer_name=signer_name,
            signer_email=payload.signer_email,
            signature_path=stored.path if stored else None,
            signature_url=stored.url if stored else None,
            ip_address=ip_address,
            user_agent=sanitize_text(user_agent, max_len=500) or None,
            contract_hash=current_hash,
            signed_at=now,
        )
        self.store.add(signature)
        self.commit("sign_contract", contract_id=contract.id)
        self.db.refresh(contract)

        warnings: list[str] = []
        if not self.audit.record(
            contract.id,
            EventType.SIGNED,
            ActorType.CLIENT,
            actor_id=contract.client_id,
            metadata={"signer_name": signer_name, "has_signature_image": stored is not None},
        ):
            warnings.append("audit event 'signed' was not recorded")
        warnings.extend(self.notifier.notify_contract_signed(contract, contract.client, contract.contractor))
        logger.info("contract.signed", extra={"event": "contract.signed", "contract_id": contract.id})
        return SigningResult(contract=contract, signature=signature, warnings=warnings)

    def _raise_sign_conflict(self, contract_id: str, signed_content: str) -> None:
        current = self.store.get_contract(contract_id)
        if current.status == ContractStatus.CANCELLED.value:
            raise ContractCancelledError("This contract has been cancelled.", contract_id=contract_id)
        if current.status in LOCKED_STATUSES:
            raise ContractAlreadySignedError("This contract has already been signed.", contract_id=contract_id)
        if current.content != signed_content:
            raise SignatureMismatchError("The contract content changed while it was being signed.", contract_id=contract_id)
        raise TokenAlreadyUsedError("This signing link is no longer valid.", contract_id=contract_id)

    def contractor_sign(
        self,
        contract_id: str,
        company_id: str,
        contractor: Contractor,
        payload: SignaturePayload,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SigningResult:
        """Countersignature by the owning contractor; allowed until the contract is voided."""
        signer_name = sanitize_text(payload.signer_name, max_len=200)
        if not signer_name:
            raise ValidationError("Full name is required.")
        contract = self.get_contract(contract_id, company_id)
        if contract.contractor_id != contractor.id:
            raise NotFoundError(f"Contract {contract_id} not found.", contract_id=contract_id)
        if contract.status == ContractStatus.CANCELLED.value:
            raise ContractCancelledError("This contract has been cancelled.", contract_id=contract_id)
        if self.store.find_signature(contract_id, SignerType.CONTRACTOR.value) is not None:
            raise ContractAlreadySignedError("You have already signed this contract.", contract_id=contract_id)

        current_hash = content_hash(contract.content)
        if payload.contract_hash and payload.contract_hash != current_hash:
            raise SignatureMismatchError("The contract content changed while it was being signed.", contract_id=contract_id)

        stored: StoredImage | None = None
        if payload.signature_data_url:
            stored = upload_transient_signature(
                self.storage, company_id, contract_id, contractor.id, decode_data_url(payload.signature_data_url)
            )

        signature = Signature(
            contract_id=contract_id,
            signer_type=SignerType.CONTRACTOR.value,
            signer_name=signer_name,
            signer_email=contractor.email,
            signature_path=stored.path if stored else None,
            signature_url=stored.url if stored else None,
            ip_address=ip_address,
            user_agent=sanitize_text(user_agent, max_len=500) or None,
            contract_hash=current_hash,
            signed_at=utcnow(),
        )
        self.store.add(signature)
        self.commit("contractor_sign", contract_id=contract_id)

        warnings = self.audit.record_many(
            contract_id,
            [(EventType.SIGNED, {"signer_name": signer_name, "has_signature_image": stored is not None})],
            ActorType.CONTRACTOR,
            actor_id=contractor.id,
        )
        return SigningResult(contract=contract, signature=signature, warnings=warnings)

    # ==========================================================================
    # VOIDING AND HISTORY
    # ==========================================================================

    def void_contract(self, contract_id: str, company_id: str, actor_id: str, reason: str | None = None) -> Contract:
        contract = self.get_contract(contract_id, company_id)
        previous_status = contract.status
        contract_state_machine.assert_transition(previous_status, ContractStatus.CANCELLED.value)

        applied = self.store.update_contract_where(
            contract_id, [previous_status], {"status": ContractStatus.CANCELLED.value}
        )
        if not applied:
            self.rollback()
            raise InvalidTransitionError("Contract changed while it was being voided.", contract_id=contract_id)
        self.commit("void_contract", contract_id=contract_id)
        self.db.refresh(contract)

        self.audit.record(
            contract_id,
            EventType.VOIDED,
            ActorType.CONTRACTOR,
            actor_id=actor_id,
            metadata={"previous_status": previous_status, "reason": sanitize_text(reason, max_len=1000) or None},
        )
        logger.info(
            "contract.voided",
            extra={"event": "contract.voided", "contract_id": contract_id, "from_status": previous_status},
        )
        return contract

    def list_events(self, contract_id: str, company_id: str) -> list[ContractEvent]:
        self.get_contract(contract_id, company_id)
        return self.store.list_events(contract_id)
