from __future__ import annotations

from datetime import timedelta

import pytest

from contractflow.core.exceptions import (
    ContractAlreadySignedError,
    ContractCancelledError,
    ContractLockedError,
    DatabaseError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    SignatureMismatchError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)
from contractflow.database.models import Contract, Signature, UsageCounter
from contractflow.services.contract_service import SignaturePayload
from contractflow.services.signature_service import content_hash
from contractflow.services.usage_service import UsageService
from contractflow.utils.clock import utcnow

from tests.support import PNG_DATA_URL, paid_session, token_from


def _event_types(contract_service, contract_id, company_id):
    return [event.event_type for event in contract_service.list_events(contract_id, company_id)]


def test_create_contract_starts_as_draft(make_contract, contract_service, seeded):
    contract = make_contract(total_cents=100000, deposit_cents=30000)
    assert contract.status == "draft"
    assert contract.total_amount_cents == 100000
    assert contract.deposit_amount_cents == 30000
    assert contract.currency == "usd"
    assert _event_types(contract_service, contract.id, seeded["company"].id) == ["created"]


def test_deposit_cannot_exceed_total(make_contract):
    with pytest.raises(ValidationError):
        make_contract(total_cents=1000, deposit_cents=1001)


def test_contract_is_scoped_to_company(make_contract, contract_service):
    contract = make_contract()
    with pytest.raises(NotFoundError):
        contract_service.get_contract(contract.id, "other-company")


def test_send_issues_link_and_counts_usage(make_contract, contract_service, seeded, sender, db_session, config):
    contract = make_contract()
    result = contract_service.send_contract(contract.id, seeded["company"].id, seeded["contractor"].id)

    assert result.contract.status == "sent"
    assert result.signing_url.startswith("https://app.test/sign/")
    assert sender.sent == [("sam@client.test", "Please sign: Kitchen remodel")]
    assert UsageService(db=db_session, config=config).get_usage(seeded["company"].id) == 1


def test_send_adds_to_existing_usage_row(make_contract, contract_service, seeded, db_session, config):
    usage = UsageService(db=db_session, config=config)
    usage.increment_usage(seeded["company"].id)

    contract = make_contract()
    contract_service.send_contract(contract.id, seeded["company"].id, seeded["contractor"].id)

    assert usage.get_usage(seeded["company"].id) == 2
    assert db_session.query(UsageCounter).filter(UsageCounter.company_id == seeded["company"].id).count() == 1


def test_usage_failure_does_not_block_send(make_contract, contract_service, seeded, sender, monkeypatch):
    def broken_increment(self, company_id, *args, **kwargs):
        raise DatabaseError("Store operation 'increment_usage' failed.", operation="increment_usage")

    monkeypatch.setattr(UsageService, "increment_usage", broken_increment)
    contract = make_contract()

    result = contract_service.send_contract(contract.id, seeded["company"].id, seeded["contractor"].id)

    assert result.contract.status == "sent"
    assert result.warnings == ["usage counter could not be updated"]
    assert sender.sent == [("sam@client.test", "Please sign: Kitchen remodel")]


def test_overlong_content_is_rejected(make_contract, contract_service, seeded):
    with pytest.raises(ValidationError):
        make_contract(content="x" * 200001)

    contract = make_contract(content="x" * 200000)
    assert len(contract.content) == 200000
    with pytest.raises(ValidationError):
        contract_service.update_contract(
            contract.id, seeded["company"].id, seeded["contractor"].id, {"content": "y" * 200001}
        )


def test_send_requires_content(make_contract, contract_service, seeded):
    contract = make_contract(content="")
    with pytest.raises(PreconditionFailedError):
        contract_service.send_contract(contract.id, seeded["company"].id, seeded["contractor"].id)


def test_send_twice_is_invalid(sent_contract, contract_service, seeded):
    contract, _ = sent_contract()
    with pytest.raises(InvalidTransitionError):
        contract_service.send_contract(contract.id, seeded["company"].id, seeded["contractor"].id)


def test_edit_allowed_while_sent(sent_contract, contract_service, seeded):
    contract, _ = sent_contract()
    updated = contract_service.update_contract(
        contract.id, seeded["company"].id, seeded["contractor"].id, {"content": "Revised scope."}
    )
    assert updated.content == "Revised scope."
    assert "content_updated" in _event_types(contract_service, contract.id, seeded["company"].id)


def test_content_locked_after_signing(signed_contract, contract_service, seeded, db_session):
    contract, _ = signed_contract()
    with pytest.raises(ContractLockedError):
        contract_service.update_contract(
            contract.id, seeded["company"].id, seeded["contractor"].id, {"total_amount_cents": 1}
        )
    db_session.expire_all()
    assert db_session.get(Contract, contract.id).total_amount_cents == 100000


def test_update_rejects_unknown_fields(make_contract, contract_service, seeded):
    contract = make_contract()
    with pytest.raises(ValidationError):
        contract_service.update_contract(contract.id, seeded["company"].id, seeded["contractor"].id, {"status": "paid"})


def test_sign_records_signature_and_stamps_token(signed_contract, db_session, storage, sender):
    contract, _ = signed_contract()
    stored = db_session.get(Contract, contract.id)
    signature = db_session.query(Signature).filter(Signature.contract_id == contract.id).one()

    assert stored.status == "signed"
    assert stored.signed_at is not None
    assert stored.signing_token_used_at is not None
    assert signature.contract_hash == content_hash(stored.content)
    assert signature.ip_address == "203.0.113.7"
    assert signature.signature_path.startswith(f"signatures/{contract.company_id}/{contract.id}/")
    assert signature.signature_path in storage.objects
    assert ("dana@acme.test", "Contract signed: Kitchen remodel") in sender.sent


def test_sign_with_stale_hash_is_rejected(sent_contract, contract_service, db_session):
    contract, raw = sent_contract()
    with pytest.raises(SignatureMismatchError):
        contract_service.sign_contract(
            raw, SignaturePayload(signer_name="Sam Client", contract_hash=content_hash("older text"))
        )
    db_session.expire_all()
    assert db_session.get(Contract, contract.id).status == "sent"


def test_second_signature_attempt_fails(signed_contract, contract_service):
    _, raw = signed_contract()
    with pytest.raises(ContractAlreadySignedError):
        contract_service.sign_contract(raw, SignaturePayload(signer_name="Sam Client"))


def test_sign_requires_name(sent_contract, contract_service):
    _, raw = sent_contract()
    with pytest.raises(ValidationError):
        contract_service.sign_contract(raw, SignaturePayload(signer_name="   "))


def test_sign_rejects_non_png_signature(sent_contract, contract_service):
    _, raw = sent_contract()
    with pytest.raises(ValidationError):
        contract_service.sign_contract(
            raw, SignaturePayload(signer_name="Sam Client", signature_data_url="data:image/gif;base64,R0lGOD")
        )


def test_resend_rotates_link(sent_contract, contract_service, seeded):
    contract, old_raw = sent_contract()
    result = contract_service.resend_signing_link(contract.id, seeded["company"].id, seeded["contractor"].id)
    new_raw = token_from(result.signing_url)

    assert new_raw != old_raw
    with pytest.raises(TokenInvalidError):
        contract_service.get_for_token(old_raw)
    assert contract_service.get_for_token(new_raw).id == contract.id


def test_resend_for_balance_after_link_expired(
    signed_contract, contract_service, payment_service, seeded, sender, db_session
):
    contract, raw = signed_contract(total_cents=100000, deposit_cents=30000)
    payment_service.reconcile_webhook(paid_session("cs_dep", contract, 30000))
    db_session.query(Contract).filter(Contract.id == contract.id).update(
        {"signing_token_expires_at": utcnow() - timedelta(minutes=1)}
    )
    db_session.commit()
    with pytest.raises(TokenExpiredError):
        payment_service.create_checkout(raw, kind="remaining_balance")
    sender.sent.clear()

    result = contract_service.resend_signing_link(contract.id, seeded["company"].id, seeded["contractor"].id)
    new_raw = token_from(result.signing_url)
    checkout = payment_service.create_checkout(new_raw, kind="remaining_balance")

    assert result.contract.status == "paid"
    assert checkout.amount_cents == 70000
    assert sender.sent[0] == ("sam@client.test", "Payment link: Kitchen remodel")
    db_session.expire_all()
    assert db_session.get(Contract, contract.id).signing_token_used_at is not None
    with pytest.raises(ContractAlreadySignedError):
        contract_service.sign_contract(new_raw, SignaturePayload(signer_name="Sam Client"))


def test_resend_after_signing_keeps_used_marker(signed_contract, contract_service, seeded, db_session):
    contract, old_raw = signed_contract()
    result = contract_service.resend_signing_link(contract.id, seeded["company"].id, seeded["contractor"].id)

    assert result.contract.status == "signed"
    assert result.contract.signing_token_used_at is not None
    with pytest.raises(TokenInvalidError):
        contract_service.get_for_token(old_raw)
    assert contract_service.get_for_token(token_from(result.signing_url)).id == contract.id


def test_resend_after_completion_is_invalid(make_contract, contract_service, seeded, db_session):
    contract = make_contract()
    db_session.query(Contract).filter(Contract.id == contract.id).update({"status": "completed"})
    db_session.commit()
    with pytest.raises(InvalidTransitionError):
        contract_service.resend_signing_link(contract.id, seeded["company"].id, seeded["contractor"].id)


def test_resend_draft_is_invalid(make_contract, contract_service, seeded):
    contract = make_contract()
    with pytest.raises(InvalidTransitionError):
        contract_service.resend_signing_link(contract.id, seeded["company"].id, seeded["contractor"].id)


def test_void_blocks_further_operations(sent_contract, contract_service, seeded):
    contract, raw = sent_contract()
    voided = contract_service.void_contract(contract.id, seeded["company"].id, seeded["contractor"].id, reason="Client withdrew")
    assert voided.status == "cancelled"

    with pytest.raises(ContractCancelledError):
        contract_service.sign_contract(raw, SignaturePayload(signer_name="Sam Client"))
    with pytest.raises(ContractCancelledError):
        contract_service.void_contract(contract.id, seeded["company"].id, seeded["contractor"].id)
    assert _event_types(contract_service, contract.id, seeded["company"].id)[-1] == "voided"


def test_completed_contract_cannot_be_voided(make_contract, contract_service, seeded, db_session):
    contract = make_contract()
    db_session.query(Contract).filter(Contract.id == contract.id).update({"status": "completed"})
    db_session.commit()
    with pytest.raises(InvalidTransitionError):
        contract_service.void_contract(contract.id, seeded["company"].id, seeded["contractor"].id)


def test_contractor_countersign(signed_contract, contract_service, seeded):
    contract, _ = signed_contract()
    result = contract_service.contractor_sign(
        contract.id,
        seeded["company"].id,
        seeded["contractor"],
        SignaturePayload(signer_name="Dana Builder", signature_data_url=PNG_DATA_URL),
    )
    assert result.signature.signer_type == "contractor"
    assert result.contract.status == "signed"

    with pytest.raises(ContractAlreadySignedError):
        contract_service.contractor_sign(
            contract.id, seeded["company"].id, seeded["contractor"], SignaturePayload(signer_name="Dana Builder")
        )


def test_one_time_link_refused_after_use_even_if_status_reset(signed_contract, contract_service, db_session):
    contract, raw = signed_contract()
    # Force the row back to sent; the used marker still blocks a second signature.
    db_session.query(Contract).filter(Contract.id == contract.id).update({"status": "sent"})
    db_session.query(Signature).filter(Signature.contract_id == contract.id).delete()
    db_session.commit()
    with pytest.raises(TokenAlreadyUsedError):
        contract_service.sign_contract(raw, SignaturePayload(signer_name="Sam Client"))
