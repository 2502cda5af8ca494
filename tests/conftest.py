"""Shared fixtures for the webhook receiver test suite."""

from __future__ import annotations

import json
import time
from typing import Any

import pytest
from fastapi.testclient import TestClient

from paywebhooks.app import create_app
from paywebhooks.config import Settings
from paywebhooks.context import WebhookContext
from paywebhooks.dispatcher import EventDispatcher
from paywebhooks.providers import build_providers
from paywebhooks.verification import build_signature_header

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture()
def settings() -> Settings:
    """Settings isolated from the process environment and .env."""
    return Settings(
        _env_file=None,
        stripe_secret_key="sk_test_key",
        stripe_webhook_secret=WEBHOOK_SECRET,
        redis_url=None,
        paypal_client_id="paypal-client",
        paypal_client_secret="paypal-secret",
        paypal_mode="sandbox",
        paypal_webhook_id="WH-TEST-1",
        audit_key="audit-test-key",
    )


@pytest.fixture()
def context(settings: Settings) -> WebhookContext:
    return WebhookContext.from_settings(settings)


@pytest.fixture()
def dispatcher(context: WebhookContext) -> EventDispatcher:
    return EventDispatcher(context, build_providers(context))


@pytest.fixture()
def client(settings: Settings, context: WebhookContext):
    """TestClient over an app sharing the ``context`` fixture."""
    with TestClient(create_app(settings, context), raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def make_event():
    """Factory for raw Stripe event bodies."""

    def _make(
        event_type: str,
        obj: dict[str, Any],
        event_id: str = "evt_test_1",
        created: int | None = None,
    ) -> bytes:
        return json.dumps(
            {
                "id": event_id,
                "type": event_type,
                "created": created if created is not None else int(time.time()),
                "livemode": False,
                "data": {"object": obj},
            }
        ).encode()

    return _make


@pytest.fixture()
def sign():
    """Factory for Stripe-Signature headers over a body."""

    def _sign(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> dict[str, str]:
        return {"Stripe-Signature": build_signature_header(body, secret, timestamp)}

    return _sign


@pytest.fixture()
def checkout_session() -> dict[str, Any]:
    return {
        "id": "cs_test_1",
        "status": "complete",
        "customer": "cus_123",
        "customer_email": "a@x.com",
        "subscription": "sub_123",
        "amount_total": 2900,
        "currency": "eur",
        "metadata": {"plan": "pro_monthly"},
    }
