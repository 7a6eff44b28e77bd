"""Shared fixtures: in-memory storage, signed Stripe payloads, fake sockets."""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocket
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from billing_app.db import make_engine, make_session_factory
from billing_app.main import create_app
from billing_app.payments import StripeGateway
from billing_app.storage import Storage

WEBHOOK_SECRET = "whsec_test123456789"


def generate_stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Generate Stripe webhook signature for testing."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, obj: Dict[str, Any], event_id: Optional[str] = "evt_test_1", created: int = 1700000000) -> Dict[str, Any]:
    event = {
        "object": "event",
        "type": event_type,
        "created": created,
        "livemode": False,
        "data": {"object": obj},
    }
    if event_id is not None:
        event["id"] = event_id
    return event


def failed_intent(customer: Optional[str] = "cus_123", amount: int = 1999, message: Optional[str] = "Your card was declined.") -> Dict[str, Any]:
    obj = {"id": "pi_failed_1", "object": "payment_intent", "amount": amount, "currency": "usd", "customer": customer}
    if message is not None:
        obj["last_payment_error"] = {"message": message, "code": "card_declined"}
    return obj


@pytest.fixture
def storage():
    engine = make_engine("sqlite://")
    store = Storage(make_session_factory(engine))
    store.init_schema()
    yield store
    engine.dispose()


@pytest.fixture
def customer(storage):
    """A user mapped to Stripe customer cus_123 with one active subscription."""
    user = storage.create_user("alice", "alice@example.com", stripe_customer_id="cus_123")
    plan = storage.create_subscription_plan({
        "name": "Pro",
        "price": Decimal("49.00"),
        "billing_cycle": "monthly",
        "features": ["Priority support"],
    })
    sub = storage.create_subscription({"user_id": user.id, "plan_id": plan.id, "status": "active"})
    return {"user": user, "plan": plan, "subscription": sub}


@pytest.fixture
def make_socket():
    def _make(send_json=None):
        ws = AsyncMock(spec=WebSocket)
        ws.client_state = WebSocketState.CONNECTED
        ws.application_state = WebSocketState.CONNECTED
        if send_json is not None:
            ws.send_json = send_json
        return ws

    return _make


def sent_messages(ws) -> list:
    return [call.args[0] for call in ws.send_json.await_args_list]


@pytest.fixture
def app(storage):
    return create_app(
        storage=storage,
        processor=StripeGateway("sk_test_dummy"),
        webhook_secret=WEBHOOK_SECRET,
        ws_auth_token="",
        seed_plans=False,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def post_webhook(client: TestClient, event: Dict[str, Any], secret: Optional[str] = WEBHOOK_SECRET, signature: Optional[str] = None):
    payload = json.dumps(event)
    headers = {"content-type": "application/json"}
    if signature is not None:
        headers["stripe-signature"] = signature
    elif secret is not None:
        headers["stripe-signature"] = generate_stripe_signature(payload, secret)
    return client.post("/api/stripe/webhook", content=payload, headers=headers)
