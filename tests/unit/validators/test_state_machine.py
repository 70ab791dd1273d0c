from __future__ import annotations

import pytest

from contractflow.core.exceptions import (
    ContractCancelledError,
    ContractLockedError,
    InvalidTransitionError,
    PreconditionFailedError,
    SignatureMismatchError,
)
from contractflow.orchestration.state_machine import (
    StateMachine,
    TransitionContext,
    amounts_match,
    contract_state_machine,
    is_fully_paid,
)


def test_state_machine_allows_valid_transition():
    sm = StateMachine({"new": {"running"}, "running": {"completed"}})
    assert sm.can_transition("new", "running") is True
    sm.assert_transition("new", "running")


def test_state_machine_rejects_invalid_transition():
    sm = StateMachine({"new": {"running"}})
    with pytest.raises(InvalidTransitionError):
        sm.assert_transition("new", "completed")


def test_contract_edges_match_lifecycle():
    assert contract_state_machine.allowed_targets("draft") == {"sent", "cancelled"}
    assert contract_state_machine.allowed_targets("signed") == {"paid", "completed", "cancelled"}
    assert contract_state_machine.allowed_targets("completed") == set()
    with pytest.raises(InvalidTransitionError):
        contract_state_machine.assert_transition("draft", "signed")
    with pytest.raises(InvalidTransitionError):
        contract_state_machine.assert_transition("completed", "cancelled")


def test_cancelled_is_terminal_with_its_own_error():
    with pytest.raises(ContractCancelledError):
        contract_state_machine.assert_transition("cancelled", "sent")


def test_guarded_edge_requires_context():
    with pytest.raises(PreconditionFailedError):
        contract_state_machine.assert_transition("draft", "sent")


def test_send_guard_requires_title_and_content():
    with pytest.raises(PreconditionFailedError):
        contract_state_machine.assert_transition("draft", "sent", TransitionContext(title="Job", content="  "))
    contract_state_machine.assert_transition("draft", "sent", TransitionContext(title="Job", content="Terms"))


def test_sign_guard_checks_token_and_hash():
    with pytest.raises(PreconditionFailedError):
        contract_state_machine.assert_transition(
            "sent", "signed", TransitionContext(token_verified=False, signature_hash="a", content_hash="a")
        )
    with pytest.raises(SignatureMismatchError):
        contract_state_machine.assert_transition(
            "sent", "signed", TransitionContext(token_verified=True, signature_hash="a", content_hash="b")
        )


def test_pay_guard_accepts_only_expected_amounts():
    ok = TransitionContext(payment_completed=True, payment_amount_cents=30000, expected_payment_cents=[30000])
    contract_state_machine.assert_transition("signed", "paid", ok)

    wrong = TransitionContext(payment_completed=True, payment_amount_cents=30001, expected_payment_cents=[30000])
    with pytest.raises(PreconditionFailedError):
        contract_state_machine.assert_transition("signed", "paid", wrong)


def test_complete_from_paid_requires_full_payment_and_signature():
    partial = TransitionContext(
        total_amount_cents=100000, total_paid_cents=30000, signature_verified=True, paid_at_set=True
    )
    with pytest.raises(PreconditionFailedError):
        contract_state_machine.assert_transition("paid", "completed", partial)

    unsigned = TransitionContext(
        total_amount_cents=100000, total_paid_cents=100000, signature_verified=False, paid_at_set=True
    )
    with pytest.raises(PreconditionFailedError):
        contract_state_machine.assert_transition("paid", "completed", unsigned)

    full = TransitionContext(
        total_amount_cents=100000, total_paid_cents=100000, signature_verified=True, paid_at_set=True
    )
    contract_state_machine.assert_transition("paid", "completed", full)


def test_content_is_locked_after_signing():
    contract_state_machine.assert_editable("draft", {"title"})
    contract_state_machine.assert_editable("sent", {"content"})
    for status in ("signed", "paid", "completed"):
        with pytest.raises(ContractLockedError):
            contract_state_machine.assert_editable(status, {"total_amount_cents"})
    with pytest.raises(ContractCancelledError):
        contract_state_machine.assert_editable("cancelled", {"title"})


def test_amount_helpers_use_integer_tolerance():
    assert is_fully_paid(99999, 100000, tolerance_cents=1) is True
    assert is_fully_paid(99998, 100000, tolerance_cents=1) is False
    assert amounts_match(10002, 10000, tolerance_cents=1) is False
    assert amounts_match(10001, 10000, tolerance_cents=1) is True
