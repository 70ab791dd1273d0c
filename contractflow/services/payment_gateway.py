"""Stripe checkout gateway and the normalization of what it sends back.

Everything downstream of this module sees ``GatewaySession`` and
``PaymentMetadata`` only; the two metadata key schemes Stripe sessions have
carried over time are folded together here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import stripe

from contractflow.core.config import Config, get_config
from contractflow.core.enums import PaymentKind
from contractflow.core.exceptions import ConfigurationError, GatewayError, ValidationError

logger = logging.getLogger(__name__)

# current key -> legacy key
METADATA_KEYS = {
    "contract_id": "contractId",
    "company_id": "companyId",
    "payment_kind": "type",
}


@dataclass(frozen=True)
class PaymentMetadata:
    contract_id: str
    company_id: str | None
    kind: PaymentKind


@dataclass(frozen=True)
class GatewaySession:
    session_id: str
    payment_status: str | None
    amount_total_cents: int | None
    currency: str | None = None
    payment_intent_id: str | None = None
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise ValidationError(f"Unsupported gateway object: {type(obj).__name__}")


def normalize_metadata(raw: dict[str, Any] | None) -> PaymentMetadata:
    """Map current and legacy metadata keys onto one shape."""
    data = _as_dict(raw)

    def pick(key: str) -> Any:
        value = data.get(key)
        if value in (None, ""):
            value = data.get(METADATA_KEYS[key])
        return value or None

    contract_id = pick("contract_id")
    if not contract_id:
        raise ValidationError("Payment metadata is missing the contract id.")
    kind_value = pick("payment_kind") or PaymentKind.DEPOSIT.value
    try:
        kind = PaymentKind(kind_value)
    except ValueError as exc:
        raise ValidationError(f"Unknown payment kind: {kind_value!r}") from exc
    company_id = pick("company_id")
    return PaymentMetadata(contract_id=str(contract_id), company_id=str(company_id) if company_id else None, kind=kind)


def normalize_session(obj: Any) -> GatewaySession:
    data = _as_dict(obj)
    session_id = data.get("id")
    if not session_id:
        raise ValidationError("Gateway session has no id.")
    amount = data.get("amount_total")
    payment_intent = data.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")
    return GatewaySession(
        session_id=str(session_id),
        payment_status=data.get("payment_status"),
        amount_total_cents=int(amount) if amount is not None else None,
        currency=data.get("currency"),
        payment_intent_id=payment_intent,
        url=data.get("url"),
        metadata=_as_dict(data.get("metadata")),
    )


class PaymentGateway:
    """Thin wrapper over the stripe SDK; errors become ``GatewayError``."""

    def __init__(self, config: Config | None = None, client: Any = stripe) -> None:
        self.config = config or get_config()
        self._stripe = client

    def _api_key(self) -> str:
        if not self.config.STRIPE_SECRET_KEY:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured.")
        return self.config.STRIPE_SECRET_KEY

    def create_checkout_session(
        self,
        amount_cents: int,
        currency: str,
        description: str,
        customer_email: str | None,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> GatewaySession:
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": description},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "api_key": self._api_key(),
        }
        if customer_email:
            params["customer_email"] = customer_email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            session = self._stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            logger.error(
                "gateway.checkout_failed",
                extra={"event": "gateway.checkout_failed", "contract_id": metadata.get("contract_id")},
            )
            raise GatewayError("Payment provider rejected the checkout request.", contract_id=metadata.get("contract_id")) from exc
        return normalize_session(session)

    def retrieve_session(self, session_id: str) -> GatewaySession:
        try:
            session = self._stripe.checkout.Session.retrieve(session_id, api_key=self._api_key())
        except stripe.StripeError as exc:
            raise GatewayError("Could not load the checkout session.", session_id=session_id) from exc
        return normalize_session(session)

    def construct_event(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """Verify the ``Stripe-Signature`` header and parse the event."""
        if not self.config.STRIPE_WEBHOOK_SECRET:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured.")
        if not signature_header:
            raise ValidationError("Missing webhook signature.")
        try:
            event = self._stripe.Webhook.construct_event(payload, signature_header, self.config.STRIPE_WEBHOOK_SECRET)
        except stripe.SignatureVerificationError as exc:
            logger.warning("gateway.webhook_signature_invalid", extra={"event": "gateway.webhook_signature_invalid"})
            raise ValidationError("Invalid webhook signature.") from exc
        except ValueError as exc:
            raise ValidationError("Malformed webhook payload.") from exc
        return _as_dict(event)
