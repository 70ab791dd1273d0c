"""Canonical state transition helpers for the contract lifecycle."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from contractflow.core.enums import EDITABLE_STATUSES, LOCKED_STATUSES, ContractStatus
from contractflow.core.exceptions import (
    ContractCancelledError,
    ContractLockedError,
    InvalidTransitionError,
    PreconditionFailedError,
    SignatureMismatchError,
)

DRAFT = ContractStatus.DRAFT.value
SENT = ContractStatus.SENT.value
SIGNED = ContractStatus.SIGNED.value
PAID = ContractStatus.PAID.value
COMPLETED = ContractStatus.COMPLETED.value
CANCELLED = ContractStatus.CANCELLED.value

CONTRACT_TRANSITIONS: dict[str, set[str]] = {
    DRAFT: {SENT, CANCELLED},
    SENT: {SIGNED, CANCELLED},
    SIGNED: {PAID, COMPLETED, CANCELLED},
    PAID: {COMPLETED, CANCELLED},
    COMPLETED: set(),
    CANCELLED: set(),
}

# Fields frozen once the client has signed.
CONTENT_FIELDS = frozenset(
    {"title", "content", "field_values", "deposit_amount_cents", "total_amount_cents"}
)


class StateMachine:
    """Simple in-memory state machine over a transition table."""

    def __init__(self, transitions: dict[str, set[str]]) -> None:
        self._transitions = transitions

    def can_transition(self, current: str, target: str) -> bool:
        return target in self._transitions.get(current, set())

    def assert_transition(self, current: str, target: str) -> None:
        if not self.can_transition(current=current, target=target):
            raise InvalidTransitionError(
                f"Transition not allowed: {current} -> {target}",
                from_status=current,
                to_status=target,
            )

    def allowed_targets(self, current: str) -> set[str]:
        return set(self._transitions.get(current, set()))


@dataclass
class TransitionContext:
    """Facts a guard needs to decide whether a legal edge may be taken."""

    title: str = ""
    content: str = ""
    total_amount_cents: int = 0
    deposit_amount_cents: int = 0
    token_verified: bool = False
    signature_hash: str | None = None
    content_hash: str | None = None
    payment_completed: bool = False
    payment_amount_cents: int | None = None
    expected_payment_cents: list[int] = field(default_factory=list)
    total_paid_cents: int = 0
    signature_verified: bool = False
    paid_at_set: bool = False
    tolerance_cents: int = 0


def is_fully_paid(total_paid_cents: int, total_amount_cents: int, tolerance_cents: int = 0) -> bool:
    return total_paid_cents >= total_amount_cents - tolerance_cents


def amounts_match(received_cents: int, expected_cents: int, tolerance_cents: int = 0) -> bool:
    return abs(received_cents - expected_cents) <= tolerance_cents


def _guard_send(ctx: TransitionContext) -> None:
    if not ctx.title.strip():
        raise PreconditionFailedError("Contract title is required before sending.")
    if not ctx.content.strip():
        raise PreconditionFailedError("Contract content is required before sending.")
    if ctx.total_amount_cents < 0:
        raise PreconditionFailedError("Contract total amount cannot be negative.")


def _guard_sign(ctx: TransitionContext) -> None:
    if not ctx.token_verified:
        raise PreconditionFailedError("A verified signing link is required to sign.")
    if not ctx.signature_hash or ctx.signature_hash != ctx.content_hash:
        raise SignatureMismatchError("The contract content changed while it was being signed.")


def _guard_pay(ctx: TransitionContext) -> None:
    if not ctx.payment_completed or ctx.payment_amount_cents is None:
        raise PreconditionFailedError("A completed payment is required.")
    if not any(
        amounts_match(ctx.payment_amount_cents, expected, ctx.tolerance_cents)
        for expected in ctx.expected_payment_cents
    ):
        raise PreconditionFailedError("Payment amount matches neither the deposit nor the remaining balance.")


def _guard_complete_from_paid(ctx: TransitionContext) -> None:
    if not ctx.paid_at_set:
        raise PreconditionFailedError("Contract has no payment timestamp.")
    _guard_fully_paid_and_signed(ctx)


def _guard_fully_paid_and_signed(ctx: TransitionContext) -> None:
    if not is_fully_paid(ctx.total_paid_cents, ctx.total_amount_cents, ctx.tolerance_cents):
        raise PreconditionFailedError(
            "Contract is not fully paid.",
            total_paid_cents=ctx.total_paid_cents,
            total_amount_cents=ctx.total_amount_cents,
        )
    if not ctx.signature_verified:
        raise PreconditionFailedError("Contract has no verified client signature.")


def _guard_complete_from_signed(ctx: TransitionContext) -> None:
    _guard_pay(ctx)
    _guard_fully_paid_and_signed(ctx)


GUARDS: dict[tuple[str, str], Callable[[TransitionContext], None]] = {
    (DRAFT, SENT): _guard_send,
    (SENT, SIGNED): _guard_sign,
    (SIGNED, PAID): _guard_pay,
    (SIGNED, COMPLETED): _guard_complete_from_signed,
    (PAID, COMPLETED): _guard_complete_from_paid,
}


class ContractStateMachine(StateMachine):
    """Contract lifecycle: legal edges plus the guard attached to each edge."""

    def __init__(self) -> None:
        super().__init__(CONTRACT_TRANSITIONS)
        self._guards = GUARDS

    def assert_transition(self, current: str, target: str, context: TransitionContext | None = None) -> None:
        if current == CANCELLED:
            raise ContractCancelledError("This contract has been cancelled.", from_status=current, to_status=target)
        super().assert_transition(current, target)
        guard = self._guards.get((current, target))
        if guard is None:
            return
        if context is None:
            raise PreconditionFailedError(f"Transition {current} -> {target} requires context.")
        guard(context)

    def assert_editable(self, status: str, fields: set[str] | frozenset[str] = CONTENT_FIELDS) -> None:
        """Reject content writes outside draft/sent."""
        if not fields & CONTENT_FIELDS:
            return
        if status == CANCELLED:
            raise ContractCancelledError("Cancelled contracts cannot be edited.", status=status)
        if status in LOCKED_STATUSES:
            raise ContractLockedError(
                "Contract content is locked after signing.",
                status=status,
                fields=sorted(fields & CONTENT_FIELDS),
            )
        if status not in EDITABLE_STATUSES:
            raise InvalidTransitionError(f"Contract in status {status} cannot be edited.", status=status)


contract_state_machine = ContractStateMachine()
