from __future__ import annotations

import pytest

import contractflow.database.db as db_module
from contractflow.core.exceptions import (
    ContractCancelledError,
    PreconditionFailedError,
    SignatureMismatchError,
)
from contractflow.database.models import Contract, ContractEvent, Signature
from contractflow.services.finalization_service import FinalizationService
from contractflow.services.notification_service import NotificationPreferences, NotificationService
from contractflow.database.store import ContractStore

from tests.support import RecordingSender, paid_session

FINAL_PATH = "company/{company}/contracts/{contract}/final.pdf"


def _fully_paid(signed_contract, payment_service, total_cents=100000, deposit_cents=30000, with_image=True):
    contract, raw = signed_contract(total_cents, deposit_cents, with_image=with_image)
    if deposit_cents:
        payment_service.reconcile_webhook(paid_session("cs_dep", contract, deposit_cents))
    payment_service.reconcile_webhook(
        paid_session("cs_rest", contract, total_cents - deposit_cents, kind="remaining_balance")
    )
    return contract, raw


def test_scenario_b_finalization_produces_document(
    signed_contract, payment_service, finalization_service, storage, sender, db_session
):
    contract, _ = _fully_paid(signed_contract, payment_service)
    sender.sent.clear()

    result = finalization_service.finalize(contract.id)

    path = FINAL_PATH.format(company=contract.company_id, contract=contract.id)
    assert result.finalized is True
    assert result.pdf_url == f"https://files.test/{path}"
    assert storage.objects[path].startswith(b"%PDF")
    db_session.expire_all()
    stored = db_session.get(Contract, contract.id)
    assert stored.status == "completed"
    assert stored.pdf_url == result.pdf_url
    assert stored.completed_at is not None
    recipients = sorted(to for to, _ in sender.sent)
    assert recipients == ["dana@acme.test", "sam@client.test"]
    events = [e.event_type for e in db_session.query(ContractEvent).filter(ContractEvent.contract_id == contract.id)]
    assert "finalized" in events and "completed" in events


def test_finalize_twice_uploads_once(signed_contract, payment_service, finalization_service, storage, sender):
    contract, _ = _fully_paid(signed_contract, payment_service)
    first = finalization_service.finalize(contract.id)
    uploads = storage.puts.count(FINAL_PATH.format(company=contract.company_id, contract=contract.id))
    emails = len(sender.sent)

    second = finalization_service.finalize(contract.id)

    assert second.finalized is False
    assert second.pdf_url == first.pdf_url
    assert storage.puts.count(FINAL_PATH.format(company=contract.company_id, contract=contract.id)) == uploads == 1
    assert len(sender.sent) == emails


def test_scenario_e_signed_without_payment_is_refused(signed_contract, finalization_service, storage, db_session):
    contract, _ = signed_contract()
    uploads_before = list(storage.puts)

    with pytest.raises(PreconditionFailedError):
        finalization_service.finalize(contract.id)

    assert storage.puts == uploads_before
    db_session.expire_all()
    assert db_session.get(Contract, contract.id).status == "signed"


def test_partially_paid_contract_is_refused(signed_contract, payment_service, finalization_service):
    contract, _ = signed_contract()
    payment_service.reconcile_webhook(paid_session("cs_dep", contract, 30000))
    with pytest.raises(PreconditionFailedError):
        finalization_service.finalize(contract.id)


def test_tampered_signature_hash_is_refused(signed_contract, payment_service, finalization_service, db_session):
    contract, _ = signed_contract()
    payment_service.reconcile_webhook(paid_session("cs_dep", contract, 30000))
    payment_service.reconcile_webhook(paid_session("cs_rest", contract, 70000, kind="remaining_balance"))
    db_session.query(Signature).filter(Signature.contract_id == contract.id).update({"contract_hash": "0" * 64})
    db_session.query(Contract).filter(Contract.id == contract.id).update({"status": "paid"})
    db_session.commit()

    with pytest.raises(SignatureMismatchError):
        finalization_service.finalize(contract.id)


def test_cancelled_contract_is_refused(signed_contract, contract_service, finalization_service, seeded):
    contract, _ = signed_contract()
    contract_service.void_contract(contract.id, seeded["company"].id, seeded["contractor"].id)
    with pytest.raises(ContractCancelledError):
        finalization_service.finalize(contract.id)


def test_signature_image_moves_to_permanent_path(signed_contract, payment_service, finalization_service, storage):
    contract, _ = _fully_paid(signed_contract, payment_service)
    transient = [path for path in storage.objects if path.startswith("signatures/")]

    finalization_service.finalize(contract.id)

    permanent = f"company/{contract.company_id}/contracts/{contract.id}/signature.png"
    assert permanent in storage.objects
    assert transient and all(path in storage.deleted for path in transient)


def test_signature_migration_failure_is_a_warning(signed_contract, payment_service, finalization_service, storage):
    contract, _ = _fully_paid(signed_contract, payment_service)
    storage.fail_get = True

    result = finalization_service.finalize(contract.id)

    assert result.finalized is True
    assert "signature image could not be moved to permanent storage" in result.warnings


def test_finalize_without_signature_image(signed_contract, payment_service, finalization_service):
    contract, _ = _fully_paid(signed_contract, payment_service, with_image=False)
    assert finalization_service.finalize(contract.id).finalized is True


def test_email_failure_does_not_undo_finalization(
    signed_contract, payment_service, db_session, config, storage
):
    contract, _ = _fully_paid(signed_contract, payment_service)
    failing = NotificationService(RecordingSender(fail=True), NotificationPreferences(ContractStore(db_session)))
    service = FinalizationService(db=db_session, config=config, storage=storage, notifier=failing)

    result = service.finalize(contract.id)

    assert result.finalized is True
    assert "client finalized email could not be delivered" in result.warnings
    db_session.expire_all()
    assert db_session.get(Contract, contract.id).pdf_url is not None


def test_contractor_opt_out_skips_contractor_email(
    signed_contract, payment_service, finalization_service, seeded, sender, db_session
):
    contract, _ = _fully_paid(signed_contract, payment_service)
    seeded["contractor"].notification_preferences = {"contractPaid": False}
    db_session.commit()
    sender.sent.clear()

    finalization_service.finalize(contract.id)

    assert [to for to, _ in sender.sent] == ["sam@client.test"]


def test_company_scope_is_enforced(signed_contract, payment_service, finalization_service):
    from contractflow.core.exceptions import NotFoundError

    contract, _ = _fully_paid(signed_contract, payment_service)
    with pytest.raises(NotFoundError):
        finalization_service.finalize(contract.id, company_id="another-company")


def test_losing_the_completion_claim_returns_existing_document(
    signed_contract, payment_service, finalization_service, storage, sender, db_session
):
    contract, _ = _fully_paid(signed_contract, payment_service, with_image=False)
    final_path = FINAL_PATH.format(company=contract.company_id, contract=contract.id)
    winner_url = "https://files.test/other-worker/final.pdf"

    def finish_elsewhere(path):
        if path != final_path:
            return
        other = db_module.SessionLocal()
        try:
            row = other.get(Contract, contract.id)
            row.status = "completed"
            row.pdf_url = winner_url
            other.commit()
        finally:
            other.close()

    storage.on_put = finish_elsewhere
    sender.sent.clear()

    result = finalization_service.finalize(contract.id)

    assert result.finalized is False
    assert result.pdf_url == winner_url
    assert sender.sent == []
    db_session.expire_all()
    assert db_session.get(Contract, contract.id).pdf_url == winner_url
    finalized_events = (
        db_session.query(ContractEvent)
        .filter(ContractEvent.contract_id == contract.id, ContractEvent.event_type == "finalized")
        .count()
    )
    assert finalized_events == 0
