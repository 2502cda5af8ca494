"""Provider seam: verification, envelope parsing and event-type routing."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from paywebhooks.events import WebhookEvent

if TYPE_CHECKING:
    from paywebhooks.context import WebhookContext

logger = logging.getLogger(__name__)

EventHandler = Callable[["WebhookContext", WebhookEvent], Awaitable[dict[str, Any]]]


async def ignore_event(context: WebhookContext, event: WebhookEvent) -> dict[str, Any]:
    """No-op for event types outside the handled set."""
    logger.info("Unhandled event type: %s/%s", event.provider, event.type)
    return {"handled": False}


class WebhookProvider:
    """One payment provider's webhook surface.

    Subclasses set ``name`` and ``handlers`` and implement ``verify`` and
    ``parse``. ``ledger_namespace`` keeps event IDs from different
    providers apart in the shared store.
    """

    name: str = ""
    ledger_namespace: str = ""
    handlers: Mapping[str, EventHandler] = {}

    async def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        raise NotImplementedError

    def parse(self, body: bytes) -> WebhookEvent:
        raise NotImplementedError

    def ledger_id(self, event_id: str) -> str:
        return f"{self.ledger_namespace}:{event_id}" if self.ledger_namespace else event_id

    def route(self, event_type: str) -> EventHandler:
        return self.handlers.get(event_type, ignore_event)


async def resolve_customer_key(
    context: WebhookContext,
    email: str | None,
    provider_customer_id: str | None = None,
    provider_subscription_id: str | None = None,
) -> str | None:
    """Customer key from an email, else from a registry correlation lookup."""
    if email:
        return email
    if provider_subscription_id:
        sub = await context.subscriptions.find_by_provider_subscription(provider_subscription_id)
        if sub is not None:
            return sub.customer_key
    if provider_customer_id:
        sub = await context.subscriptions.find_by_provider_customer(provider_customer_id)
        if sub is not None:
            return sub.customer_key
    return None
