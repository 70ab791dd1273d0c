from __future__ import annotations

import dataclasses
from types import SimpleNamespace

import pytest
import stripe

from contractflow.core.enums import PaymentKind
from contractflow.core.exceptions import ConfigurationError, GatewayError, ValidationError
from contractflow.services.payment_gateway import PaymentGateway, normalize_metadata, normalize_session


def test_current_metadata_keys():
    meta = normalize_metadata({"contract_id": "c1", "company_id": "co1", "payment_kind": "remaining_balance"})
    assert meta.contract_id == "c1"
    assert meta.company_id == "co1"
    assert meta.kind is PaymentKind.REMAINING_BALANCE


def test_legacy_metadata_keys():
    meta = normalize_metadata({"contractId": "c1", "companyId": "co1", "type": "deposit"})
    assert meta.contract_id == "c1"
    assert meta.company_id == "co1"
    assert meta.kind is PaymentKind.DEPOSIT


def test_current_keys_win_over_legacy():
    meta = normalize_metadata({"contract_id": "new", "contractId": "old"})
    assert meta.contract_id == "new"
    assert meta.kind is PaymentKind.DEPOSIT


def test_metadata_without_contract_is_rejected():
    with pytest.raises(ValidationError):
        normalize_metadata({"companyId": "co1"})


def test_unknown_payment_kind_is_rejected():
    with pytest.raises(ValidationError):
        normalize_metadata({"contract_id": "c1", "payment_kind": "tip"})


def test_normalize_session_reads_gateway_shape():
    session = normalize_session(
        {
            "id": "cs_123",
            "payment_status": "paid",
            "amount_total": 30000,
            "currency": "usd",
            "payment_intent": {"id": "pi_1"},
            "metadata": {"contractId": "c1"},
        }
    )
    assert session.session_id == "cs_123"
    assert session.amount_total_cents == 30000
    assert session.payment_intent_id == "pi_1"
    assert session.metadata == {"contractId": "c1"}


def test_session_without_id_is_rejected():
    with pytest.raises(ValidationError):
        normalize_session({"payment_status": "paid"})


def test_webhook_requires_configured_secret(config):
    gateway = PaymentGateway(dataclasses.replace(config, STRIPE_WEBHOOK_SECRET=None))
    with pytest.raises(ConfigurationError):
        gateway.construct_event(b"{}", "t=1,v1=abc")


def test_webhook_requires_signature_header(config):
    gateway = PaymentGateway(dataclasses.replace(config, STRIPE_WEBHOOK_SECRET="whsec_test"))
    with pytest.raises(ValidationError):
        gateway.construct_event(b"{}", None)


def test_webhook_bad_signature_is_validation_error(config):
    gateway = PaymentGateway(dataclasses.replace(config, STRIPE_WEBHOOK_SECRET="whsec_test"))
    with pytest.raises(ValidationError):
        gateway.construct_event(b'{"id": "evt_1"}', "t=1,v1=deadbeef")


def test_checkout_requires_api_key(config):
    gateway = PaymentGateway(dataclasses.replace(config, STRIPE_SECRET_KEY=None))
    with pytest.raises(ConfigurationError):
        gateway.create_checkout_session(
            amount_cents=100,
            currency="usd",
            description="Deposit",
            customer_email=None,
            success_url="https://app.test/ok",
            cancel_url="https://app.test/cancel",
            metadata={"contract_id": "c1"},
        )


class _FakeSessions:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict] = []

    def create(self, **params):
        self.calls.append(params)
        if self.fail:
            raise stripe.StripeError("card network down")
        return {"id": "cs_live_1", "url": "https://checkout.stripe.test/cs_live_1", "metadata": params["metadata"]}

    def retrieve(self, session_id, api_key=None):
        if self.fail:
            raise stripe.StripeError("not found")
        return {"id": session_id, "payment_status": "paid", "amount_total": 30000, "currency": "usd"}


def _stripe_client(sessions):
    return SimpleNamespace(checkout=SimpleNamespace(Session=sessions))


def test_checkout_session_is_built_from_cents(config):
    sessions = _FakeSessions()
    gateway = PaymentGateway(dataclasses.replace(config, STRIPE_SECRET_KEY="sk_test"), client=_stripe_client(sessions))

    session = gateway.create_checkout_session(
        amount_cents=30000,
        currency="usd",
        description="Deposit",
        customer_email="sam@client.test",
        success_url="https://app.test/ok",
        cancel_url="https://app.test/cancel",
        metadata={"contract_id": "c1"},
        idempotency_key="c1:deposit",
    )

    params = sessions.calls[0]
    assert params["line_items"][0]["price_data"]["unit_amount"] == 30000
    assert params["payment_intent_data"] == {"metadata": {"contract_id": "c1"}}
    assert params["customer_email"] == "sam@client.test"
    assert params["idempotency_key"] == "c1:deposit"
    assert session.session_id == "cs_live_1"
    assert session.url.endswith("cs_live_1")


def test_provider_failure_becomes_gateway_error(config):
    gateway = PaymentGateway(
        dataclasses.replace(config, STRIPE_SECRET_KEY="sk_test"), client=_stripe_client(_FakeSessions(fail=True))
    )
    with pytest.raises(GatewayError):
        gateway.retrieve_session("cs_missing")


def test_retrieve_session_normalizes(config):
    gateway = PaymentGateway(
        dataclasses.replace(config, STRIPE_SECRET_KEY="sk_test"), client=_stripe_client(_FakeSessions())
    )
    session = gateway.retrieve_session("cs_live_1")
    assert session.payment_status == "paid"
    assert session.amount_total_cents == 30000
