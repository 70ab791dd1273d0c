"""Transactional notifications for contract lifecycle events.

Delivery failures never propagate: each method returns the warnings the
calling operation should surface in its result.
"""

from __future__ import annotations

import logging

from contractflow.core.enums import NotificationType
from contractflow.core.exceptions import DatabaseError
from contractflow.database.models import Client, Contract, Contractor
from contractflow.database.store import ContractStore
from contractflow.services.email_sender import EmailSender
from contractflow.utils.money import format_cents

logger = logging.getLogger(__name__)


class NotificationPreferences:
    """Per-contractor opt-outs; anything not explicitly disabled is sent."""

    def __init__(self, store: ContractStore) -> None:
        self.store = store

    def should_send(self, contractor_id: str, key: NotificationType | str) -> bool:
        key_value = getattr(key, "value", key)
        try:
            contractor = self.store.find_contractor(contractor_id)
        except DatabaseError:
            logger.warning(
                "notifications.preferences_unavailable",
                extra={"event": "notifications.preferences_unavailable"},
            )
            return True
        if contractor is None or not isinstance(contractor.notification_preferences, dict):
            return True
        should_send = contractor.notification_preferences.get(key_value) is not False
        if not should_send:
            logger.info(
                "notifications.skipped_by_preference",
                extra={"event": "notifications.skipped_by_preference", "status": key_value},
            )
        return should_send


class NotificationService:
    def __init__(self, sender: EmailSender, preferences: NotificationPreferences) -> None:
        self.sender = sender
        self.preferences = preferences

    def _deliver(self, to_email: str | None, subject: str, body: str, label: str) -> list[str]:
        if not to_email:
            return [f"{label} email skipped: no recipient address"]
        if self.sender.send_email(to_email, subject, body):
            return []
        logger.warning(
            "notifications.delivery_failed",
            extra={"event": "notifications.delivery_failed", "warning": label},
        )
        return [f"{label} email could not be delivered"]

    def _sender_name(self, contractor: Contractor) -> str:
        return contractor.business_name or contractor.name

    def send_signing_link(
        self,
        contract: Contract,
        client: Client,
        contractor: Contractor,
        signing_url: str,
        awaiting_payment: bool = False,
    ) -> list[str]:
        if awaiting_payment:
            subject = f"Payment link: {contract.title}"
            intro = f"Here is a new link to \"{contract.title}\" from {self._sender_name(contractor)} to finish your payment."
        else:
            subject = f"Please sign: {contract.title}"
            intro = f"{self._sender_name(contractor)} sent you \"{contract.title}\" to review and sign."
        body = (
            f"Hi {client.name},\n\n"
            f"{intro}\n\n"
            f"Open the contract: {signing_url}\n\n"
            "This link is personal to you; do not forward it."
        )
        return self._deliver(client.email, subject, body, "signing link")

    def notify_contract_signed(self, contract: Contract, client: Client, contractor: Contractor) -> list[str]:
        if not self.preferences.should_send(contractor.id, NotificationType.CONTRACT_SIGNED):
            return []
        body = f"Hi {contractor.name},\n\n{client.name} signed \"{contract.title}\"."
        return self._deliver(contractor.email, f"Contract signed: {contract.title}", body, "contract signed")

    def send_checkout_link(self, contract: Contract, client: Client, checkout_url: str, amount_cents: int) -> list[str]:
        body = (
            f"Hi {client.name},\n\n"
            f"Thanks for signing \"{contract.title}\". "
            f"Complete your payment of {format_cents(amount_cents, contract.currency)} here: {checkout_url}"
        )
        return self._deliver(client.email, f"Payment for {contract.title}", body, "checkout link")

    def notify_payment_received(self, contract: Contract, contractor: Contractor, amount_cents: int) -> list[str]:
        if not self.preferences.should_send(contractor.id, NotificationType.PAYMENT_RECEIVED):
            return []
        body = (
            f"Hi {contractor.name},\n\n"
            f"A payment of {format_cents(amount_cents, contract.currency)} was received for \"{contract.title}\"."
        )
        return self._deliver(contractor.email, f"Payment received: {contract.title}", body, "payment received")

    def notify_finalized(self, contract: Contract, client: Client, contractor: Contractor, pdf_url: str) -> list[str]:
        warnings = self._deliver(
            client.email,
            f"Your signed contract: {contract.title}",
            f"Hi {client.name},\n\nYour contract \"{contract.title}\" is complete.\n\nDownload it: {pdf_url}",
            "client finalized",
        )
        if self.preferences.should_send(contractor.id, NotificationType.CONTRACT_PAID):
            warnings.extend(
                self._deliver(
                    contractor.email,
                    f"Contract completed: {contract.title}",
                    f"Hi {contractor.name},\n\n\"{contract.title}\" is signed and paid in full.\n\nDocument: {pdf_url}",
                    "contractor finalized",
                )
            )
        return warnings
