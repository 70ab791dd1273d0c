from __future__ import annotations

from contractflow.core.enums import NotificationType
from contractflow.database.store import ContractStore
from contractflow.services.notification_service import NotificationPreferences, NotificationService

from tests.support import RecordingSender


def test_preferences_default_to_send(seeded, db_session):
    prefs = NotificationPreferences(ContractStore(db_session))
    assert prefs.should_send(seeded["contractor"].id, NotificationType.PAYMENT_RECEIVED) is True
    assert prefs.should_send("missing-contractor", "contractSigned") is True


def test_only_explicit_false_disables(seeded, db_session):
    seeded["contractor"].notification_preferences = {"contractSigned": False, "paymentReceived": None}
    db_session.commit()
    prefs = NotificationPreferences(ContractStore(db_session))

    assert prefs.should_send(seeded["contractor"].id, NotificationType.CONTRACT_SIGNED) is False
    assert prefs.should_send(seeded["contractor"].id, NotificationType.PAYMENT_RECEIVED) is True
    assert prefs.should_send(seeded["contractor"].id, NotificationType.CONTRACT_PAID) is True


def test_opted_out_contractor_gets_no_signed_email(make_contract, seeded, db_session):
    contract = make_contract()
    seeded["contractor"].notification_preferences = {"contractSigned": False}
    db_session.commit()
    sender = RecordingSender()
    service = NotificationService(sender, NotificationPreferences(ContractStore(db_session)))

    warnings = service.notify_contract_signed(contract, seeded["client"], seeded["contractor"])

    assert warnings == []
    assert sender.sent == []


def test_delivery_failure_becomes_warning(make_contract, seeded, db_session):
    contract = make_contract()
    service = NotificationService(RecordingSender(fail=True), NotificationPreferences(ContractStore(db_session)))

    warnings = service.notify_payment_received(contract, seeded["contractor"], 30000)

    assert warnings == ["payment received email could not be delivered"]


def test_checkout_email_formats_amount(make_contract, seeded, db_session):
    contract = make_contract()
    sender = RecordingSender()
    service = NotificationService(sender, NotificationPreferences(ContractStore(db_session)))

    service.send_checkout_link(contract, seeded["client"], "https://checkout.test/cs_1", 30000)

    assert sender.sent == [("sam@client.test", "Payment for Kitchen remodel")]
