"""Schemas for the public, token-authorized signing pages."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from contractflow.core.enums import PaymentKind
from contractflow.utils.money import from_cents


class SignRequest(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    signature_data_url: str | None = Field(default=None, max_length=3_000_000)
    contract_hash: str | None = Field(default=None, min_length=64, max_length=64)


class PublicContractView(BaseModel):
    """What a client sees through a signing link; no internal identifiers beyond the contract id."""

    id: str
    title: str
    content: str
    contract_hash: str
    status: str
    currency: str
    total_amount: Decimal
    deposit_amount: Decimal
    remaining_balance: Decimal
    contractor_name: str
    client_name: str
    signed_at: datetime | None = None
    pdf_url: str | None = None

    @classmethod
    def build(cls, contract, contract_hash: str, remaining_cents: int) -> "PublicContractView":
        contractor = contract.contractor
        return cls(
            id=contract.id,
            title=contract.title,
            content=contract.content,
            contract_hash=contract_hash,
            status=contract.status,
            currency=contract.currency,
            total_amount=from_cents(contract.total_amount_cents),
            deposit_amount=from_cents(contract.deposit_amount_cents),
            remaining_balance=from_cents(remaining_cents),
            contractor_name=contractor.business_name or contractor.name,
            client_name=contract.client.name,
            signed_at=contract.signed_at,
            pdf_url=contract.pdf_url,
        )


class SigningResponse(BaseModel):
    status: str
    signed_at: datetime | None = None
    payment_required: bool
    warnings: list[str] = Field(default_factory=list)


class CheckoutRequest(BaseModel):
    kind: PaymentKind = PaymentKind.DEPOSIT
    email: str | None = Field(default=None, max_length=320)


class CheckoutResponse(BaseModel):
    checkout_url: str | None = None
    session_id: str
    amount: Decimal
    kind: PaymentKind
    warnings: list[str] = Field(default_factory=list)


class CompleteResponse(BaseModel):
    status: str
    pdf_url: str | None = None
    warnings: list[str] = Field(default_factory=list)


class CheckoutStatusResponse(BaseModel):
    """Gateway-side state of a checkout, shown on the payment success page."""

    session_id: str
    paid: bool
    payment_status: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    contract_status: str
    recorded: bool
