"""Fakes and builders shared by the test suite."""

from __future__ import annotations

import base64
import itertools
from dataclasses import replace
from typing import Any

from contractflow.core.exceptions import GatewayError, StorageError, ValidationError
from contractflow.services.payment_gateway import GatewaySession

# 1x1 transparent PNG.
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


class FakeStorage:
    """In-memory stand-in for ObjectStorage."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.puts: list[str] = []
        self.deleted: list[str] = []
        self.fail_get = False
        self.fail_put_prefixes: tuple[str, ...] = ()
        self.on_put = None

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        if path.startswith(self.fail_put_prefixes) and self.fail_put_prefixes:
            raise StorageError(f"Failed to store object at {path}.", path=path)
        self.objects[path] = data
        self.puts.append(path)
        if self.on_put is not None:
            self.on_put(path)
        return self.url_for(path)

    def get(self, path: str) -> bytes:
        if self.fail_get or path not in self.objects:
            raise StorageError(f"Failed to read object at {path}.", path=path)
        return self.objects[path]

    def delete(self, path: str) -> None:
        self.objects.pop(path, None)
        self.deleted.append(path)

    def url_for(self, path: str) -> str:
        return f"https://files.test/{path}"


class FakeGateway:
    """Records checkout requests and returns deterministic sessions.

    Like the real API, a repeated idempotency key returns the first session.
    ``on_create`` runs after a new session is made, before it is returned.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.created: list[dict[str, Any]] = []
        self.sessions: dict[str, GatewaySession] = {}
        self.by_key: dict[str, GatewaySession] = {}
        self.event: dict[str, Any] | None = None
        self.on_create = None

    def create_checkout_session(self, **params: Any) -> GatewaySession:
        key = params.get("idempotency_key")
        if key and key in self.by_key:
            return self.by_key[key]
        session_id = f"cs_test_{next(self._ids)}"
        self.created.append(dict(params, session_id=session_id))
        session = GatewaySession(
            session_id=session_id,
            payment_status="unpaid",
            amount_total_cents=params["amount_cents"],
            currency=params["currency"],
            url=f"https://checkout.test/{session_id}",
            metadata=params["metadata"],
        )
        self.sessions[session_id] = session
        if key:
            self.by_key[key] = session
        if self.on_create is not None:
            self.on_create(session)
        return session

    def retrieve_session(self, session_id: str) -> GatewaySession:
        if session_id not in self.sessions:
            raise GatewayError("Could not load the checkout session.", session_id=session_id)
        return self.sessions[session_id]

    def mark_paid(self, session_id: str) -> GatewaySession:
        session = replace(self.sessions[session_id], payment_status="paid", payment_intent_id=f"pi_{session_id}")
        self.sessions[session_id] = session
        return session

    def construct_event(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        if signature_header != "valid":
            raise ValidationError("Invalid webhook signature.")
        return self.event or {}


class RecordingSender:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str]] = []
        self.bodies: list[str] = []

    def send_email(self, to_email: str, subject: str, body: str, is_html: bool = False) -> bool:
        if self.fail:
            return False
        self.sent.append((to_email, subject))
        self.bodies.append(body)
        return True


def paid_session(session_id: str, contract, amount_cents: int, kind: str = "deposit", **overrides) -> GatewaySession:
    values = {
        "session_id": session_id,
        "payment_status": "paid",
        "amount_total_cents": amount_cents,
        "currency": contract.currency,
        "payment_intent_id": f"pi_{session_id}",
        "metadata": {"contract_id": contract.id, "company_id": contract.company_id, "payment_kind": kind},
    }
    values.update(overrides)
    return GatewaySession(**values)


def token_from(signing_url: str) -> str:
    return signing_url.rsplit("/sign/", 1)[1]


