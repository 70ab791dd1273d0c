"""Payment provider webhook.

Only signature failures are rejected outright. Domain failures are logged and
acknowledged with 200 so the provider stops retrying a delivery that can never
succeed; infrastructure failures return 500 so it retries.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from contractflow.api.v1.errors import RETRYABLE_ERRORS, map_domain_error
from contractflow.core import dependencies
from contractflow.core.enums import ActorType
from contractflow.core.dependencies import get_db_session
from contractflow.core.exceptions import ContractFlowException, ValidationError
from contractflow.schemas.common import ErrorEnvelope
from contractflow.schemas.payments import WebhookAck
from contractflow.services.payment_gateway import normalize_session
from contractflow.services.payment_service import RECONCILED

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

CHECKOUT_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}


def _event_object(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj or {}


def _handle_checkout(db: Session, event: dict[str, Any]) -> WebhookAck:
    event_type = event.get("type")
    session = normalize_session(_event_object(event))
    result = dependencies.build_payment_service(db).reconcile_webhook(session)
    contract_status = result.contract_status

    if result.outcome == RECONCILED and result.fully_paid and result.contract_id:
        try:
            finalized = dependencies.build_finalization_service(db).finalize(
                result.contract_id,
                payment_reference=session.payment_intent_id or session.session_id,
                actor_type=ActorType.WEBHOOK,
            )
            contract_status = finalized.contract.status
        except ContractFlowException as exc:
            # The payment is recorded; finalization can be retried from the signing page.
            db.rollback()
            logger.warning(
                "webhook.finalization_deferred",
                extra={
                    "event": "webhook.finalization_deferred",
                    "contract_id": result.contract_id,
                    "error_code": exc.error_code,
                },
            )
    return WebhookAck(event_type=event_type, outcome=result.outcome, contract_status=contract_status)


def _handle_payment_failed(db: Session, event: dict[str, Any]) -> WebhookAck:
    intent = _event_object(event)
    marked = dependencies.build_payment_service(db).mark_session_failed(intent.get("metadata"), intent.get("id"))
    return WebhookAck(event_type=event.get("type"), outcome="failed" if marked else "ignored")


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db_session),
) -> WebhookAck:
    payload = await request.body()
    gateway = dependencies.get_gateway()
    try:
        event = gateway.construct_event(payload, stripe_signature)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ErrorEnvelope(error_code=exc.error_code, detail=exc.message).model_dump(),
        ) from exc
    except ContractFlowException as exc:
        code, envelope = map_domain_error(exc)
        logger.error("webhook.rejected", extra={"event": "webhook.rejected", "error_code": exc.error_code})
        raise HTTPException(status_code=code, detail=envelope.model_dump()) from exc

    event_type = event.get("type")
    logger.info("webhook.received", extra={"event": "webhook.received", "event_type": event_type})
    try:
        if event_type in CHECKOUT_EVENTS:
            return _handle_checkout(db, event)
        if event_type == "payment_intent.payment_failed":
            return _handle_payment_failed(db, event)
        if event_type == "charge.refunded":
            charge = _event_object(event)
            logger.warning(
                "webhook.refund_received",
                extra={"event": "webhook.refund_received", "charge_id": charge.get("id")},
            )
            return WebhookAck(event_type=event_type, outcome="logged")
    except RETRYABLE_ERRORS as exc:
        _, envelope = map_domain_error(exc)
        logger.exception("webhook.retryable_failure", extra={"event": "webhook.retryable_failure", "event_type": event_type})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=envelope.model_dump()) from exc
    except ContractFlowException as exc:
        logger.error(
            "webhook.rejected",
            extra={"event": "webhook.rejected", "event_type": event_type, "error_code": exc.error_code},
        )
        return WebhookAck(event_type=event_type, outcome="rejected", error_code=exc.error_code, detail=exc.message)
    return WebhookAck(event_type=event_type, outcome="ignored")
