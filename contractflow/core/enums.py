"""Canonical enum values for the contract lifecycle."""

from __future__ import annotations

import enum


class ContractStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    SIGNED = "signed"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentKind(str, enum.Enum):
    DEPOSIT = "deposit"
    REMAINING_BALANCE = "remaining_balance"


class SignerType(str, enum.Enum):
    CLIENT = "client"
    CONTRACTOR = "contractor"


class ActorType(str, enum.Enum):
    CONTRACTOR = "contractor"
    CLIENT = "client"
    SYSTEM = "system"
    WEBHOOK = "webhook"


class EventType(str, enum.Enum):
    CREATED = "created"
    SENT = "sent"
    SIGNED = "signed"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    PAID = "paid"
    FINALIZED = "finalized"
    COMPLETED = "completed"
    VOIDED = "voided"
    CONTENT_UPDATED = "content_updated"
    STATUS_CHANGED = "status_changed"


class SubscriptionTier(str, enum.Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    PREMIUM = "premium"


class NotificationType(str, enum.Enum):
    CONTRACT_SIGNED = "contractSigned"
    CONTRACT_PAID = "contractPaid"
    CONTRACT_SENT = "contractSent"
    PAYMENT_RECEIVED = "paymentReceived"
    INVOICE_UPCOMING = "invoiceUpcoming"
    SUBSCRIPTION_UPDATES = "subscriptionUpdates"
    MARKETING_EMAILS = "marketingEmails"


class UsageCounterType(str, enum.Enum):
    CONTRACTS_SENT = "contracts_sent"


# Statuses in which title/content/field values/amounts are frozen.
LOCKED_STATUSES = frozenset({ContractStatus.SIGNED.value, ContractStatus.PAID.value, ContractStatus.COMPLETED.value})
EDITABLE_STATUSES = frozenset({ContractStatus.DRAFT.value, ContractStatus.SENT.value})
TERMINAL_STATUSES = frozenset({ContractStatus.COMPLETED.value, ContractStatus.CANCELLED.value})

GATEWAY_PAID_STATUS = "paid"
