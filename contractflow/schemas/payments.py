"""Webhook acknowledgement schema."""

from __future__ import annotations

from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: bool = True
    event_type: str | None = None
    outcome: str | None = None
    contract_status: str | None = None
    error_code: str | None = None
    detail: str | None = None
