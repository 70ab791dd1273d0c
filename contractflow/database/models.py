from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from contractflow.utils.clock import utcnow
from contractflow.utils.ids import new_id

from .db import Base


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    subscription_tier = Column(String, nullable=False, default="free")
    created_at = Column(DateTime, default=utcnow)


class Contractor(Base):
    __tablename__ = "contractors"

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    business_name = Column(String)
    notification_preferences = Column(JSON)
    created_at = Column(DateTime, default=utcnow)

    company = relationship("Company")


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String)
    address = Column(Text)
    created_at = Column(DateTime, default=utcnow)


class Contract(Base):
    __tablename__ = "contracts"
    __table_args__ = (
        Index("idx_contracts_company_status", "company_id", "status"),
        CheckConstraint("total_amount_cents >= 0", name="ck_contracts_total_nonnegative"),
        CheckConstraint(
            "deposit_amount_cents >= 0 AND deposit_amount_cents <= total_amount_cents",
            name="ck_contracts_deposit_within_total",
        ),
        CheckConstraint(
            "status IN ('draft', 'sent', 'signed', 'paid', 'completed', 'cancelled')",
            name="ck_contracts_status",
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    contractor_id = Column(String(36), ForeignKey("contractors.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    template_id = Column(String(36))
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")
    field_values = Column(JSON)
    deposit_amount_cents = Column(Integer, nullable=False, default=0)
    total_amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String, nullable=False, default="draft")
    signing_token_hash = Column(String(64), unique=True)
    signing_token_expires_at = Column(DateTime)
    signing_token_used_at = Column(DateTime)
    signed_at = Column(DateTime)
    paid_at = Column(DateTime)
    completed_at = Column(DateTime)
    pdf_url = Column(String)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    client = relationship("Client")
    contractor = relationship("Contractor")
    company = relationship("Company")
    payments = relationship("Payment", back_populates="contract", cascade="all, delete-orphan")
    signatures = relationship("Signature", back_populates="contract", cascade="all, delete-orphan")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_payments_contract_status", "contract_id", "status"),
        UniqueConstraint("session_id", name="uq_payments_session_id"),
        CheckConstraint("amount_cents >= 0", name="ck_payments_amount_nonnegative"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False)
    kind = Column(String, nullable=False, default="deposit")
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String, nullable=False, default="pending")
    session_id = Column(String, nullable=False)
    payment_intent_id = Column(String)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    contract = relationship("Contract", back_populates="payments")


class Signature(Base):
    __tablename__ = "signatures"
    __table_args__ = (UniqueConstraint("contract_id", "signer_type", name="uq_signatures_contract_signer"),)

    id = Column(String(36), primary_key=True, default=new_id)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    signer_type = Column(String, nullable=False)
    signer_name = Column(String, nullable=False)
    signer_email = Column(String)
    signature_path = Column(String)
    signature_url = Column(String)
    ip_address = Column(String)
    user_agent = Column(String)
    contract_hash = Column(String(64), nullable=False)
    signed_at = Column(DateTime, default=utcnow)

    contract = relationship("Contract", back_populates="signatures")


class ContractEvent(Base):
    __tablename__ = "contract_events"
    __table_args__ = (Index("idx_contract_events_contract_created", "contract_id", "created_at"),)

    id = Column(String(36), primary_key=True, default=new_id)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False)
    event_type = Column(String, nullable=False)
    actor_type = Column(String, nullable=False)
    actor_id = Column(String(36))
    # "metadata" is reserved on declarative classes.
    event_metadata = Column("metadata", JSON)
    created_at = Column(DateTime, default=utcnow)


class UsageCounter(Base):
    __tablename__ = "usage_counters"
    __table_args__ = (
        UniqueConstraint("company_id", "counter_type", "period_start", name="uq_usage_company_type_period"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False)
    counter_type = Column(String, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow)


class SigningAttempt(Base):
    __tablename__ = "signing_attempts"
    __table_args__ = (Index("idx_signing_attempts_ip_created", "ip_address", "created_at"),)

    id = Column(String(36), primary_key=True, default=new_id)
    ip_address = Column(String, nullable=False)
    contract_id = Column(String(36))
    succeeded = Column(Boolean, nullable=False, default=False)
    reason = Column(String)
    created_at = Column(DateTime, default=utcnow)
