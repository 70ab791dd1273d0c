"""Contract request/response schemas for the contractor API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from contractflow.utils.money import from_cents


class ContractCreateRequest(BaseModel):
    client_id: str = Field(min_length=1, max_length=36)
    template_id: str | None = Field(default=None, max_length=36)
    title: str = Field(min_length=1, max_length=300)
    content: str = Field(default="", max_length=200000)
    field_values: dict[str, Any] = Field(default_factory=dict)
    total_amount: Decimal = Field(ge=0, decimal_places=2)
    deposit_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)

    @model_validator(mode="after")
    def _deposit_within_total(self) -> "ContractCreateRequest":
        if self.deposit_amount > self.total_amount:
            raise ValueError("deposit_amount cannot exceed total_amount")
        return self


class ContractUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=300)
    content: str | None = Field(default=None, max_length=200000)
    field_values: dict[str, Any] | None = None
    total_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    deposit_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)


class VoidRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class ContractorSignRequest(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    signature_data_url: str | None = Field(default=None, max_length=3_000_000)
    contract_hash: str | None = Field(default=None, min_length=64, max_length=64)


class ContractResponse(BaseModel):
    id: str
    company_id: str
    contractor_id: str
    client_id: str
    template_id: str | None = None
    title: str
    content: str
    field_values: dict[str, Any] | None = None
    status: str
    currency: str
    total_amount: Decimal
    deposit_amount: Decimal
    signing_token_expires_at: datetime | None = None
    signed_at: datetime | None = None
    paid_at: datetime | None = None
    completed_at: datetime | None = None
    pdf_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, contract) -> "ContractResponse":
        return cls(
            id=contract.id,
            company_id=contract.company_id,
            contractor_id=contract.contractor_id,
            client_id=contract.client_id,
            template_id=contract.template_id,
            title=contract.title,
            content=contract.content,
            field_values=contract.field_values,
            status=contract.status,
            currency=contract.currency,
            total_amount=from_cents(contract.total_amount_cents),
            deposit_amount=from_cents(contract.deposit_amount_cents),
            signing_token_expires_at=contract.signing_token_expires_at,
            signed_at=contract.signed_at,
            paid_at=contract.paid_at,
            completed_at=contract.completed_at,
            pdf_url=contract.pdf_url,
            created_at=contract.created_at,
            updated_at=contract.updated_at,
        )


class SendResponse(BaseModel):
    contract: ContractResponse
    signing_link_expires_at: datetime
    warnings: list[str] = Field(default_factory=list)


class ContractEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    contract_id: str
    event_type: str
    actor_type: str
    actor_id: str | None = None
    event_metadata: dict[str, Any] | None = Field(default=None, serialization_alias="metadata")
    created_at: datetime | None = None


class PaymentResponse(BaseModel):
    id: str
    contract_id: str
    kind: str
    amount: Decimal
    currency: str
    status: str
    session_id: str
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, payment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            contract_id=payment.contract_id,
            kind=payment.kind,
            amount=from_cents(payment.amount_cents),
            currency=payment.currency,
            status=payment.status,
            session_id=payment.session_id,
            completed_at=payment.completed_at,
            created_at=payment.created_at,
        )


class FinalizeResponse(BaseModel):
    contract: ContractResponse
    pdf_url: str | None = None
    finalized: bool
    warnings: list[str] = Field(default_factory=list)
