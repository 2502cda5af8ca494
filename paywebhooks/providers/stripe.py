"""Stripe webhooks: v1 signature scheme and subscription lifecycle handlers.

Handled event types:
- checkout.session.completed: activate (or replace) the customer's subscription
- invoice.paid: audit + record the paid period end (status unchanged)
- invoice.payment_failed: audit only
- customer.subscription.deleted: cancel
Anything else completes as a no-op.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping

from pydantic import BaseModel, Field

from paywebhooks.events import WebhookEvent, decode_payload, load_json_object, validate_envelope
from paywebhooks.exceptions import HandlerError, ParseError
from paywebhooks.providers.base import EventHandler, WebhookProvider, resolve_customer_key
from paywebhooks.verification import SIGNATURE_HEADER, verify_signature

if TYPE_CHECKING:
    from paywebhooks.context import WebhookContext

logger = logging.getLogger(__name__)

# Plan assumed when checkout metadata carries no "plan" entry
DEFAULT_PLAN_CODE = "pro_monthly"


# ── Wire models ────────────────────────────────────────────────────────────


class StripeEventData(BaseModel):
    object: dict[str, Any]


class StripeEventEnvelope(BaseModel):
    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    created: int
    livemode: bool = False
    data: StripeEventData


class CustomerDetails(BaseModel):
    email: str | None = None


class CheckoutSession(BaseModel):
    id: str
    status: str
    customer: str | None = None
    customer_email: str | None = None
    customer_details: CustomerDetails | None = None
    subscription: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    metadata: dict[str, str] | None = None

    @property
    def email(self) -> str | None:
        if self.customer_email:
            return self.customer_email
        if self.customer_details is not None:
            return self.customer_details.email
        return None


class Invoice(BaseModel):
    id: str | None = None
    customer: str | None = None
    customer_email: str | None = None
    subscription: str | None = None
    amount_paid: int | None = None
    amount_due: int | None = None
    period_end: int | None = None


class StripeSubscription(BaseModel):
    id: str
    customer: str | None = None
    customer_email: str | None = None
    status: str | None = None


# ── Handlers ───────────────────────────────────────────────────────────────


async def handle_checkout_completed(
    context: WebhookContext, event: WebhookEvent
) -> dict[str, Any]:
    session = decode_payload(CheckoutSession, event, "checkout session")
    customer_key = session.email or session.customer
    if not customer_key:
        raise HandlerError("Checkout session has no customer identity")

    plan_code = (session.metadata or {}).get("plan", DEFAULT_PLAN_CODE)
    logger.info("Checkout session completed for: %s (plan: %s)", customer_key, plan_code)

    subscription = await context.subscriptions.activate(
        customer_key, session.customer, session.subscription, plan_code
    )
    context.audit.record("checkout.completed", customer_key, session.amount_total)

    return {
        "action": "activated",
        "customer_key": customer_key,
        "subscription_id": subscription.subscription_id,
        "plan": subscription.plan.code,
        "status": subscription.status.value,
    }


async def handle_invoice_paid(context: WebhookContext, event: WebhookEvent) -> dict[str, Any]:
    invoice = decode_payload(Invoice, event, "invoice")
    customer_key = await resolve_customer_key(
        context, invoice.customer_email, invoice.customer, invoice.subscription
    )
    amount = invoice.amount_paid or 0
    logger.info("Invoice paid: %s (%.2f)", customer_key or "unknown", amount / 100)

    period_end = None
    if customer_key and invoice.period_end:
        updated = await context.subscriptions.record_period_end(
            customer_key, datetime.fromtimestamp(invoice.period_end, tz=timezone.utc)
        )
        if updated is not None and updated.current_period_end is not None:
            period_end = updated.current_period_end.isoformat()

    context.audit.record("invoice.paid", customer_key or "unknown", amount)
    return {
        "action": "invoice_paid",
        "customer_key": customer_key,
        "amount_paid": amount,
        "current_period_end": period_end,
    }


async def handle_payment_failed(context: WebhookContext, event: WebhookEvent) -> dict[str, Any]:
    invoice = decode_payload(Invoice, event, "invoice")
    customer_key = await resolve_customer_key(
        context, invoice.customer_email, invoice.customer, invoice.subscription
    )
    logger.warning("Payment failed for: %s", customer_key or "unknown")

    context.audit.record("payment.failed", customer_key or "unknown", invoice.amount_due)
    return {"action": "payment_failed", "customer_key": customer_key}


async def handle_subscription_deleted(
    context: WebhookContext, event: WebhookEvent
) -> dict[str, Any]:
    stripe_sub = decode_payload(StripeSubscription, event, "subscription")
    customer_key = await resolve_customer_key(
        context, stripe_sub.customer_email, stripe_sub.customer, stripe_sub.id
    )
    if not customer_key:
        logger.info("Subscription %s deleted for unknown customer", stripe_sub.id)
        return {"action": "canceled", "customer_key": None, "canceled": False}

    canceled = await context.subscriptions.cancel(customer_key)
    context.audit.record("subscription.deleted", customer_key)
    return {"action": "canceled", "customer_key": customer_key, "canceled": canceled}


STRIPE_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_completed,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_failed": handle_payment_failed,
    "customer.subscription.deleted": handle_subscription_deleted,
}


class StripeProvider(WebhookProvider):
    name = "stripe"
    handlers = STRIPE_HANDLERS

    def __init__(self, webhook_secret: str) -> None:
        self._webhook_secret = webhook_secret

    async def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        verify_signature(body, headers.get(SIGNATURE_HEADER), self._webhook_secret)

    def parse(self, body: bytes) -> WebhookEvent:
        envelope = validate_envelope(StripeEventEnvelope, load_json_object(body))
        try:
            created_at = datetime.fromtimestamp(envelope.created, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ParseError("Invalid event: created out of range") from None
        return WebhookEvent(
            provider=self.name,
            id=envelope.id,
            type=envelope.type,
            created_at=created_at,
            payload=envelope.data.object,
            livemode=envelope.livemode,
        )
