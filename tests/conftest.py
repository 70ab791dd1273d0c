from __future__ import annotations

import dataclasses

import pytest

import contractflow.database.db as db_module
from contractflow.core.config import get_config
from contractflow.database.models import Base, Client, Company, Contractor
from contractflow.database.store import ContractStore
from contractflow.services.audit_service import AuditLog
from contractflow.services.contract_service import ContractService, SignaturePayload
from contractflow.services.finalization_service import FinalizationService
from contractflow.services.notification_service import NotificationPreferences, NotificationService
from contractflow.services.payment_service import PaymentReconciliationService

from tests.support import PNG_DATA_URL, FakeGateway, FakeStorage, RecordingSender, token_from


@pytest.fixture
def config():
    return dataclasses.replace(get_config(), EMAIL_SANDBOX_MODE=False, APP_BASE_URL="https://app.test")


@pytest.fixture
def db_session(tmp_path):
    # File-backed so the audit log's separate session sees committed rows.
    db_module.reset_engine(f"sqlite:///{tmp_path / 'contractflow_test.db'}")
    Base.metadata.create_all(bind=db_module.get_engine())
    session = db_module.SessionLocal()
    try:
        yield session
    finally:
        session.close()
        db_module.get_engine().dispose()


@pytest.fixture
def seeded(db_session):
    company = Company(name="Acme Renovations")
    db_session.add(company)
    db_session.flush()
    contractor = Contractor(
        company_id=company.id,
        name="Dana Builder",
        email="dana@acme.test",
        business_name="Acme Renovations LLC",
    )
    client = Client(company_id=company.id, name="Sam Client", email="sam@client.test")
    db_session.add_all([contractor, client])
    db_session.commit()
    return {"company": company, "contractor": contractor, "client": client}


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def notifier(db_session, sender):
    return NotificationService(sender, NotificationPreferences(ContractStore(db_session)))


@pytest.fixture
def contract_service(db_session, config, storage, notifier):
    return ContractService(db=db_session, config=config, audit=AuditLog(), storage=storage, notifier=notifier)


@pytest.fixture
def payment_service(db_session, config, gateway, notifier):
    return PaymentReconciliationService(
        db=db_session, config=config, gateway=gateway, audit=AuditLog(), notifier=notifier
    )


@pytest.fixture
def finalization_service(db_session, config, storage, notifier):
    return FinalizationService(db=db_session, config=config, storage=storage, audit=AuditLog(), notifier=notifier)


@pytest.fixture
def make_contract(contract_service, seeded):
    def _make(total_cents: int = 100000, deposit_cents: int = 30000, content: str = "Scope: kitchen remodel."):
        return contract_service.create_contract(
            company_id=seeded["company"].id,
            contractor_id=seeded["contractor"].id,
            client_id=seeded["client"].id,
            title="Kitchen remodel",
            content=content,
            total_amount_cents=total_cents,
            deposit_amount_cents=deposit_cents,
        )

    return _make


@pytest.fixture
def sent_contract(contract_service, make_contract, seeded):
    """Returns (contract, raw_token) for a freshly sent contract."""

    def _send(total_cents: int = 100000, deposit_cents: int = 30000):
        contract = make_contract(total_cents, deposit_cents)
        result = contract_service.send_contract(contract.id, seeded["company"].id, seeded["contractor"].id)
        return result.contract, token_from(result.signing_url)

    return _send


@pytest.fixture
def signed_contract(contract_service, sent_contract):
    def _sign(total_cents: int = 100000, deposit_cents: int = 30000, with_image: bool = True):
        contract, raw = sent_contract(total_cents, deposit_cents)
        contract_service.sign_contract(
            raw,
            SignaturePayload(
                signer_name="Sam Client",
                signature_data_url=PNG_DATA_URL if with_image else None,
                signer_email="sam@client.test",
            ),
            ip_address="203.0.113.7",
            user_agent="pytest",
        )
        return contract, raw

    return _sign
