"""Payment reconciliation: checkout creation and webhook application.

Webhook deliveries may repeat and may overtake the checkout row they refer
to. The payment row's ``session_id`` is the idempotency key and both the
payment completion and the contract transition are conditional updates in a
single transaction, so a replayed delivery matches nothing and becomes a
reported duplicate.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from contractflow.core.config import Config
from contractflow.core.enums import (
    GATEWAY_PAID_STATUS,
    ActorType,
    ContractStatus,
    EventType,
    PaymentKind,
    PaymentStatus,
    SignerType,
)
from contractflow.core.exceptions import (
    AmountMismatchError,
    ContractCancelledError,
    InvalidTransitionError,
    NotFoundError,
    NothingToPayError,
    ServiceError,
    ValidationError,
)
from contractflow.database.models import Contract, Payment
from contractflow.orchestration.state_machine import (
    TransitionContext,
    amounts_match,
    contract_state_machine,
    is_fully_paid,
)
from contractflow.services.audit_service import AuditLog
from contractflow.services.base_service import BaseService
from contractflow.services.email_sender import EmailSender
from contractflow.services.notification_service import NotificationPreferences, NotificationService
from contractflow.services.payment_gateway import GatewaySession, PaymentGateway, normalize_metadata
from contractflow.services.signature_service import verify_signature
from contractflow.services.signing_tokens import SigningTokenManager
from contractflow.utils.clock import utcnow

logger = logging.getLogger(__name__)

RECONCILED = "reconciled"
DUPLICATE = "duplicate"
IGNORED = "ignored"

# Statuses from which each kind of payment may be collected.
PAYABLE_STATUSES = {
    PaymentKind.DEPOSIT: {ContractStatus.SIGNED.value},
    PaymentKind.REMAINING_BALANCE: {ContractStatus.SIGNED.value, ContractStatus.PAID.value},
}


def checkout_idempotency_key(contract: Contract, kind: PaymentKind, amount_cents: int, customer_email: str | None) -> str:
    """Repeated requests for the same checkout get the same gateway session back.

    The gateway refuses a reused key whose parameters differ, so the link
    (through its hash) and the email are part of the key.
    """
    seed = "|".join(
        [contract.id, kind.value, str(amount_cents), contract.signing_token_hash or "", customer_email or ""]
    )
    return "checkout-" + hashlib.sha256(seed.encode("utf-8")).hexdigest()[:40]


@dataclass
class CheckoutResult:
    contract: Contract
    payment: Payment
    checkout_url: str | None
    session_id: str
    amount_cents: int
    kind: PaymentKind
    warnings: list[str] = field(default_factory=list)


@dataclass
class CheckoutVerification:
    contract: Contract
    session_id: str
    payment_status: str | None
    paid: bool
    amount_cents: int | None
    currency: str | None
    recorded: bool


@dataclass
class ReconciliationResult:
    outcome: str
    session_id: str
    contract_id: str | None = None
    payment_id: str | None = None
    contract_status: str | None = None
    fully_paid: bool = False
    warnings: list[str] = field(default_factory=list)


class PaymentReconciliationService(BaseService):
    def __init__(
        self,
        db: Session | None = None,
        config: Config | None = None,
        gateway: PaymentGateway | None = None,
        audit: AuditLog | None = None,
        notifier: NotificationService | None = None,
    ) -> None:
        super().__init__(db=db, config=config)
        self.gateway = gateway or PaymentGateway(self.config)
        self.audit = audit or AuditLog()
        self.notifier = notifier or NotificationService(
            EmailSender(self.config), NotificationPreferences(self.store)
        )
        self.tokens = SigningTokenManager(self.store, self.config)

    # ==========================================================================
    # LEDGER
    # ==========================================================================

    def total_paid_cents(self, contract_id: str) -> int:
        return self.store.sum_completed_payments(contract_id)

    def remaining_balance_cents(self, contract: Contract) -> int:
        """Recomputed from completed payments on every call."""
        return max(contract.total_amount_cents - self.total_paid_cents(contract.id), 0)

    def list_payments(self, contract_id: str, company_id: str) -> list[Payment]:
        self.store.get_contract(contract_id, company_id=company_id)
        return self.store.list_payments(contract_id)

    def _expected_amount(self, contract: Contract, kind: PaymentKind) -> int:
        if kind is PaymentKind.DEPOSIT:
            return contract.deposit_amount_cents
        return self.remaining_balance_cents(contract)

    def _assert_payable(self, contract: Contract, kind: PaymentKind) -> None:
        if contract.status == ContractStatus.CANCELLED.value:
            raise ContractCancelledError("This contract has been cancelled.", contract_id=contract.id)
        if contract.status not in PAYABLE_STATUSES[kind]:
            raise InvalidTransitionError(
                f"A {kind.value} payment is not accepted while the contract is {contract.status}.",
                contract_id=contract.id,
                status=contract.status,
            )

    # ==========================================================================
    # CHECKOUT
    # ==========================================================================

    def create_checkout(
        self,
        raw_token: str,
        kind: PaymentKind | str = PaymentKind.DEPOSIT,
        ip_address: str | None = None,
        client_email: str | None = None,
    ) -> CheckoutResult:
        kind = PaymentKind(getattr(kind, "value", kind))
        contract = self.tokens.validate(raw_token, ip_address=ip_address, one_time=False, record_use=False)
        self.commit("record_signing_attempt", contract_id=contract.id)
        self._assert_payable(contract, kind)

        amount_cents = self._expected_amount(contract, kind)
        if kind is PaymentKind.DEPOSIT and amount_cents <= 0:
            raise NothingToPayError("This contract does not require a deposit.", contract_id=contract.id)
        if kind is PaymentKind.REMAINING_BALANCE and amount_cents <= self.config.PAYMENT_AMOUNT_TOLERANCE_CENTS:
            raise NothingToPayError("This contract has no remaining balance.", contract_id=contract.id)

        sign_page = self.tokens.signing_url(raw_token)
        customer_email = client_email or contract.client.email
        label = "Deposit" if kind is PaymentKind.DEPOSIT else "Remaining balance"
        session = self.gateway.create_checkout_session(
            amount_cents=amount_cents,
            currency=contract.currency,
            description=f"{label} - {contract.title}",
            customer_email=customer_email,
            success_url=f"{sign_page}?payment=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=sign_page,
            metadata={
                "contract_id": contract.id,
                "company_id": contract.company_id,
                "payment_kind": kind.value,
            },
            idempotency_key=checkout_idempotency_key(contract, kind, amount_cents, customer_email),
        )

        payment = self.store.insert_payment(
            contract_id=contract.id,
            company_id=contract.company_id,
            kind=kind.value,
            amount_cents=amount_cents,
            currency=contract.currency,
            status=PaymentStatus.PENDING.value,
            session_id=session.session_id,
        )
        if payment is None:
            # An earlier request or the session's webhook already wrote the row.
            payment = self.store.find_payment_by_session(session.session_id)
            logger.info(
                "payment.checkout_reused",
                extra={"event": "payment.checkout_reused", "contract_id": contract.id, "session_id": session.session_id},
            )
            return CheckoutResult(
                contract=contract,
                payment=payment,
                checkout_url=session.url,
                session_id=session.session_id,
                amount_cents=amount_cents,
                kind=kind,
            )
        self.commit("create_checkout", contract_id=contract.id)

        self.audit.record(
            contract.id,
            EventType.PAYMENT_INITIATED,
            ActorType.CLIENT,
            actor_id=contract.client_id,
            metadata={"session_id": session.session_id, "amount_cents": amount_cents, "kind": kind.value},
        )
        logger.info(
            "payment.checkout_created",
            extra={
                "event": "payment.checkout_created",
                "contract_id": contract.id,
                "session_id": session.session_id,
                "kind": kind.value,
                "amount_cents": amount_cents,
            },
        )
        warnings: list[str] = []
        if session.url:
            warnings = self.notifier.send_checkout_link(contract, contract.client, session.url, amount_cents)
        return CheckoutResult(
            contract=contract,
            payment=payment,
            checkout_url=session.url,
            session_id=session.session_id,
            amount_cents=amount_cents,
            kind=kind,
            warnings=warnings,
        )

    def verify_checkout(self, raw_token: str, session_id: str, ip_address: str | None = None) -> CheckoutVerification:
        """Report a checkout session's state to the success page.

        Read-only: the payment is applied by the webhook, never here.
        """
        contract = self.tokens.validate(raw_token, ip_address=ip_address, one_time=False, record_use=False)
        self.commit("record_signing_attempt", contract_id=contract.id)

        session = self.gateway.retrieve_session(session_id)
        try:
            owner = normalize_metadata(session.metadata).contract_id
        except ValidationError:
            owner = None
        if owner != contract.id:
            logger.warning(
                "payment.verify_foreign_session",
                extra={"event": "payment.verify_foreign_session", "contract_id": contract.id, "session_id": session_id},
            )
            raise NotFoundError("Checkout session not found for this contract.", contract_id=contract.id)

        payment = self.store.find_payment_by_session(session.session_id)
        return CheckoutVerification(
            contract=contract,
            session_id=session.session_id,
            payment_status=session.payment_status,
            paid=session.payment_status == GATEWAY_PAID_STATUS,
            amount_cents=session.amount_total_cents,
            currency=session.currency,
            recorded=payment is not None and payment.status == PaymentStatus.COMPLETED.value,
        )

    # ==========================================================================
    # WEBHOOK RECONCILIATION
    # ==========================================================================

    def reconcile_webhook(self, session: GatewaySession) -> ReconciliationResult:
        """Apply a completed checkout session exactly once."""
        existing = self.store.find_payment_by_session(session.session_id)
        if existing is not None and existing.status == PaymentStatus.COMPLETED.value:
            return self._duplicate(session.session_id, existing)

        # Identity comes from the session's own metadata, never from the caller.
        metadata = normalize_metadata(session.metadata)
        contract = self.store.get_contract(metadata.contract_id)
        if metadata.company_id and metadata.company_id != contract.company_id:
            raise ValidationError("Payment metadata does not match the contract's company.", contract_id=contract.id)
        if existing is not None and existing.contract_id != contract.id:
            raise ValidationError("Payment session belongs to a different contract.", contract_id=contract.id)

        expected_cents = self._expected_amount(contract, metadata.kind)
        received_cents = session.amount_total_cents
        tolerance = self.config.PAYMENT_AMOUNT_TOLERANCE_CENTS
        if received_cents is None or not amounts_match(received_cents, expected_cents, tolerance):
            logger.error(
                "payment.amount_mismatch",
                extra={
                    "event": "payment.amount_mismatch",
                    "contract_id": contract.id,
                    "session_id": session.session_id,
                    "kind": metadata.kind.value,
                    "amount_cents": received_cents,
                    "expected_cents": expected_cents,
                },
            )
            raise AmountMismatchError(
                "Payment amount does not match the expected amount.",
                contract_id=contract.id,
                expected_cents=expected_cents,
                received_cents=received_cents,
            )

        if session.payment_status != GATEWAY_PAID_STATUS:
            logger.info(
                "payment.not_paid",
                extra={"event": "payment.not_paid", "session_id": session.session_id, "status": session.payment_status},
            )
            return ReconciliationResult(
                outcome=IGNORED, session_id=session.session_id, contract_id=contract.id, contract_status=contract.status
            )

        self._assert_payable(contract, metadata.kind)
        previous_status = contract.status
        had_paid_at = contract.paid_at is not None
        now = utcnow()

        payment = self._complete_payment(session, contract, metadata.kind, received_cents, now)
        if payment is None:
            self.rollback()
            return self._duplicate(session.session_id, self.store.find_payment_by_session(session.session_id))

        total_paid = self.store.sum_completed_payments(contract.id)
        fully_paid = is_fully_paid(total_paid, contract.total_amount_cents, tolerance)
        signature_verified = verify_signature(self.store.find_signature(contract.id, SignerType.CLIENT.value), contract)
        target = ContractStatus.COMPLETED.value if fully_paid and signature_verified else ContractStatus.PAID.value
        if fully_paid and not signature_verified:
            logger.warning(
                "payment.signature_unverified",
                extra={"event": "payment.signature_unverified", "contract_id": contract.id},
            )

        if target != previous_status:
            contract_state_machine.assert_transition(
                previous_status,
                target,
                TransitionContext(
                    total_amount_cents=contract.total_amount_cents,
                    deposit_amount_cents=contract.deposit_amount_cents,
                    payment_completed=True,
                    payment_amount_cents=received_cents,
                    expected_payment_cents=[expected_cents],
                    total_paid_cents=total_paid,
                    signature_verified=signature_verified,
                    paid_at_set=True,
                    tolerance_cents=tolerance,
                ),
            )
            values: dict[str, Any] = {"status": target}
            if not had_paid_at:
                values["paid_at"] = now
            if target == ContractStatus.COMPLETED.value:
                values["completed_at"] = now
            if not self.store.update_contract_where(contract.id, [previous_status], values):
                self.rollback()
                raise ServiceError(
                    "Contract changed during payment reconciliation; retry the delivery.",
                    contract_id=contract.id,
                    session_id=session.session_id,
                )
        self.commit("reconcile_webhook", contract_id=contract.id, session_id=session.session_id)
        self.db.refresh(contract)

        warnings = self.audit.record_many(
            contract.id,
            [
                (
                    EventType.PAYMENT_COMPLETED,
                    {
                        "session_id": session.session_id,
                        "amount_cents": received_cents,
                        "kind": metadata.kind.value,
                    },
                ),
                (EventType.PAID, {"total_paid_cents": total_paid, "fully_paid": fully_paid}),
            ],
            ActorType.WEBHOOK,
        )
        warnings.extend(self.notifier.notify_payment_received(contract, contract.contractor, received_cents))
        logger.info(
            "payment.reconciled",
            extra={
                "event": "payment.reconciled",
                "contract_id": contract.id,
                "session_id": session.session_id,
                "from_status": previous_status,
                "to_status": contract.status,
                "amount_cents": received_cents,
            },
        )
        return ReconciliationResult(
            outcome=RECONCILED,
            session_id=session.session_id,
            contract_id=contract.id,
            payment_id=payment.id,
            contract_status=contract.status,
            fully_paid=fully_paid,
            warnings=warnings,
        )

    def _complete_payment(
        self,
        session: GatewaySession,
        contract: Contract,
        kind: PaymentKind,
        amount_cents: int,
        now,
    ) -> Payment | None:
        """Mark the session's payment completed, creating it if the webhook arrived first.

        Returns None when another delivery already completed it.
        """
        if self.store.complete_payment_if_pending(session.session_id, now, session.payment_intent_id):
            return self.store.find_payment_by_session(session.session_id)
        if self.store.find_payment_by_session(session.session_id) is not None:
            return None
        inserted = self.store.insert_payment(
            contract_id=contract.id,
            company_id=contract.company_id,
            kind=kind.value,
            amount_cents=amount_cents,
            currency=session.currency or contract.currency,
            status=PaymentStatus.COMPLETED.value,
            session_id=session.session_id,
            payment_intent_id=session.payment_intent_id,
            completed_at=now,
        )
        if inserted is not None:
            return inserted
        # Lost an insert race to checkout creation: the row exists now, maybe still pending.
        if self.store.complete_payment_if_pending(session.session_id, now, session.payment_intent_id):
            return self.store.find_payment_by_session(session.session_id)
        return None

    def _duplicate(self, session_id: str, payment: Payment | None) -> ReconciliationResult:
        logger.info("payment.duplicate_delivery", extra={"event": "payment.duplicate_delivery", "session_id": session_id})
        contract_status = None
        contract_id = payment.contract_id if payment else None
        if contract_id:
            contract = self.store.find_contract(contract_id)
            contract_status = contract.status if contract else None
        return ReconciliationResult(
            outcome=DUPLICATE,
            session_id=session_id,
            contract_id=contract_id,
            payment_id=payment.id if payment else None,
            contract_status=contract_status,
        )

    def mark_session_failed(self, metadata: dict[str, Any] | None, payment_intent_id: str | None = None) -> bool:
        """Mark the latest pending payment of the contract named in ``metadata`` as failed."""
        contract_id = normalize_metadata(metadata).contract_id
        pending = [
            payment
            for payment in self.store.list_payments(contract_id)
            if payment.status == PaymentStatus.PENDING.value
        ]
        if payment_intent_id:
            pending = [p for p in pending if p.payment_intent_id in (None, payment_intent_id)]
        if not pending:
            logger.info(
                "payment.failed_without_pending",
                extra={"event": "payment.failed_without_pending", "contract_id": contract_id},
            )
            return False
        target = pending[-1]
        if not self.store.fail_payment_if_pending(target.session_id):
            self.rollback()
            return False
        self.commit("mark_session_failed", contract_id=contract_id)
        self.audit.record(
            contract_id,
            EventType.PAYMENT_FAILED,
            ActorType.WEBHOOK,
            metadata={"session_id": target.session_id, "payment_intent_id": payment_intent_id},
        )
        logger.info(
            "payment.failed",
            extra={"event": "payment.failed", "contract_id": contract_id, "session_id": target.session_id},
        )
        return True

    def settle_zero_balance(self, contract: Contract, actor_type: ActorType = ActorType.CLIENT) -> Contract:
        """Move a signed contract with nothing left to pay to ``paid`` without a checkout."""
        if contract.status == ContractStatus.CANCELLED.value:
            raise ContractCancelledError("This contract has been cancelled.", contract_id=contract.id)
        tolerance = self.config.PAYMENT_AMOUNT_TOLERANCE_CENTS
        remaining = self.remaining_balance_cents(contract)
        if remaining > tolerance:
            raise InvalidTransitionError("This contract still has a balance to pay.", contract_id=contract.id)
        contract_state_machine.assert_transition(
            contract.status,
            ContractStatus.PAID.value,
            TransitionContext(
                total_amount_cents=contract.total_amount_cents,
                payment_completed=True,
                payment_amount_cents=0,
                expected_payment_cents=[remaining],
                tolerance_cents=tolerance,
            ),
        )
        previous_status = contract.status
        applied = self.store.update_contract_where(
            contract.id, [previous_status], {"status": ContractStatus.PAID.value, "paid_at": utcnow()}
        )
        if not applied:
            self.rollback()
            raise InvalidTransitionError("Contract changed before it could be settled.", contract_id=contract.id)
        self.commit("settle_zero_balance", contract_id=contract.id)
        self.db.refresh(contract)
        self.audit.record(
            contract.id,
            EventType.STATUS_CHANGED,
            actor_type,
            metadata={"from": previous_status, "to": ContractStatus.PAID.value, "reason": "zero_balance"},
        )
        return contract
