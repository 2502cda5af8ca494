"""PayPal webhooks: postback signature verification and billing handlers.

PayPal signs with a certificate chain rather than a shared secret, so the
transmission headers are posted back to the verify-webhook-signature API
together with the configured webhook ID and the event body.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Mapping

from pydantic import BaseModel, Field

from paywebhooks.events import WebhookEvent, decode_payload, load_json_object, validate_envelope
from paywebhooks.exceptions import (
    HandlerError,
    MissingSignatureError,
    ParseError,
    SignatureMismatchError,
)
from paywebhooks.providers.base import EventHandler, WebhookProvider, resolve_customer_key

if TYPE_CHECKING:
    from paywebhooks.context import WebhookContext
    from paywebhooks.provider_client import PayPalClient

logger = logging.getLogger(__name__)

# Transmission header -> verify-webhook-signature request field
TRANSMISSION_HEADERS = {
    "paypal-transmission-id": "transmission_id",
    "paypal-transmission-time": "transmission_time",
    "paypal-transmission-sig": "transmission_sig",
    "paypal-cert-url": "cert_url",
    "paypal-auth-algo": "auth_algo",
}


# ── Wire models ────────────────────────────────────────────────────────────


class PayPalEventEnvelope(BaseModel):
    id: str = Field(min_length=1)
    event_type: str = Field(min_length=1)
    create_time: str
    resource_type: str = ""
    resource: dict[str, Any]
    summary: str | None = None


class Money(BaseModel):
    value: str
    currency_code: str | None = None


class Capture(BaseModel):
    id: str
    amount: Money | None = None
    custom_id: str | None = None


class Subscriber(BaseModel):
    email_address: str | None = None
    payer_id: str | None = None


class BillingSubscription(BaseModel):
    id: str
    plan_id: str | None = None
    custom_id: str | None = None
    status: str | None = None
    subscriber: Subscriber | None = None


def _to_minor_units(money: Money | None) -> int | None:
    if money is None:
        return None
    try:
        return int((Decimal(money.value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError, OverflowError):
        raise HandlerError(f"Invalid amount: {money.value!r}") from None


# ── Handlers ───────────────────────────────────────────────────────────────


async def handle_capture_completed(context: WebhookContext, event: WebhookEvent) -> dict[str, Any]:
    capture = decode_payload(Capture, event, "capture")
    amount = _to_minor_units(capture.amount)
    customer_key = capture.custom_id or "unknown"
    logger.info("PayPal payment captured: %s (%s)", capture.id, amount)

    context.audit.record("paypal.capture.completed", customer_key, amount)
    return {"action": "captured", "capture_id": capture.id, "amount": amount}


async def handle_subscription_created(
    context: WebhookContext, event: WebhookEvent
) -> dict[str, Any]:
    resource = decode_payload(BillingSubscription, event, "billing subscription")
    subscriber = resource.subscriber or Subscriber()
    if not subscriber.email_address:
        raise HandlerError("Billing subscription has no subscriber email")

    plan_code = resource.custom_id or resource.plan_id
    subscription = await context.subscriptions.activate(
        subscriber.email_address, subscriber.payer_id, resource.id, plan_code
    )
    context.audit.record("paypal.subscription.created", subscriber.email_address)
    return {
        "action": "activated",
        "customer_key": subscriber.email_address,
        "subscription_id": subscription.subscription_id,
        "plan": subscription.plan.code,
        "status": subscription.status.value,
    }


async def handle_subscription_cancelled(
    context: WebhookContext, event: WebhookEvent
) -> dict[str, Any]:
    resource = decode_payload(BillingSubscription, event, "billing subscription")
    subscriber = resource.subscriber or Subscriber()
    customer_key = await resolve_customer_key(
        context, subscriber.email_address, provider_subscription_id=resource.id
    )
    if not customer_key:
        logger.info("PayPal subscription %s cancelled for unknown customer", resource.id)
        return {"action": "canceled", "customer_key": None, "canceled": False}

    canceled = await context.subscriptions.cancel(customer_key)
    context.audit.record("paypal.subscription.cancelled", customer_key)
    return {"action": "canceled", "customer_key": customer_key, "canceled": canceled}


PAYPAL_HANDLERS: dict[str, EventHandler] = {
    "PAYMENT.CAPTURE.COMPLETED": handle_capture_completed,
    "BILLING.SUBSCRIPTION.CREATED": handle_subscription_created,
    "BILLING.SUBSCRIPTION.CANCELLED": handle_subscription_cancelled,
}


class PayPalProvider(WebhookProvider):
    name = "paypal"
    ledger_namespace = "paypal"
    handlers = PAYPAL_HANDLERS

    def __init__(self, client: PayPalClient, webhook_id: str) -> None:
        self._client = client
        self._webhook_id = webhook_id

    async def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        request: dict[str, Any] = {}
        for header, field_name in TRANSMISSION_HEADERS.items():
            value = headers.get(header)
            if not value:
                raise MissingSignatureError(f"Missing {header} header")
            request[field_name] = value

        if not self._webhook_id:
            logger.warning("PAYPAL_WEBHOOK_ID not set — rejecting webhook")
            raise SignatureMismatchError()

        request["webhook_id"] = self._webhook_id
        request["webhook_event"] = load_json_object(body)

        status = await self._client.verify_webhook_signature(request)
        if status != "SUCCESS":
            raise SignatureMismatchError(f"Verification status {status or 'missing'}")

    def parse(self, body: bytes) -> WebhookEvent:
        envelope = validate_envelope(PayPalEventEnvelope, load_json_object(body))
        try:
            created_at = datetime.fromisoformat(envelope.create_time.replace("Z", "+00:00"))
        except ValueError:
            raise ParseError("Invalid event: create_time") from None
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return WebhookEvent(
            provider=self.name,
            id=envelope.id,
            type=envelope.event_type,
            created_at=created_at,
            payload=envelope.resource,
        )
