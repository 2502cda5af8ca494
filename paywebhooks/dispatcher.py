"""Webhook event dispatcher — verify, deduplicate, route, record.

Per-event states:
    received -> verified -> (duplicate | routed) -> completed
    received -> rejected  (authentication or parse failure)

Security contract:
- Nothing past verification runs for an unauthenticated body
- claim() on the idempotency ledger is the only dedup gate; a duplicate
  completes with 200 without running a handler or writing the ledger
- Every routed event gets exactly one mark_processed(), success or failure,
  so failed events are still deduplicated on redelivery
- Responses carry short messages only, never handler internals
- No retries here: redelivery is the provider's job
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from paywebhooks.context import WebhookContext
from paywebhooks.events import WebhookEvent
from paywebhooks.exceptions import (
    AuthenticationError,
    HandlerError,
    MissingSignatureError,
    ParseError,
    WebhookError,
)
from paywebhooks.ledger import EventOutcome
from paywebhooks.providers.base import WebhookProvider

logger = logging.getLogger(__name__)


class DispatchState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    DUPLICATE = "duplicate"
    ROUTED = "routed"
    COMPLETED = "completed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class DispatchResult:
    """Terminal state of one delivery plus the HTTP response it maps to."""

    state: DispatchState
    status_code: int
    message: str
    event_id: str = ""
    event_type: str = ""
    duplicate: bool = False
    outcome: EventOutcome | None = None


def _rejection_message(error: WebhookError) -> str:
    if isinstance(error, MissingSignatureError):
        return "Missing signature"
    if isinstance(error, AuthenticationError):
        return "Invalid signature"
    if isinstance(error, ParseError):
        return "Invalid event"
    return "Verification unavailable"


class EventDispatcher:
    """Runs one delivery through the per-event state machine."""

    def __init__(self, context: WebhookContext, providers: Mapping[str, WebhookProvider]) -> None:
        self.context = context
        self._providers = dict(providers)
        self.counts: dict[str, int] = {}

    @property
    def providers(self) -> list[str]:
        return sorted(self._providers)

    async def dispatch(
        self, provider_name: str, body: bytes, headers: Mapping[str, str]
    ) -> DispatchResult:
        """Process one webhook delivery.

        Args:
            provider_name: Registered provider key ("stripe", "paypal")
            body: Raw request body, unmodified
            headers: Request headers (any case)
        """
        provider = self._providers.get(provider_name)
        if provider is None:
            raise KeyError(f"Unknown webhook provider: {provider_name}")

        start = time.monotonic()
        lowered = {k.lower(): v for k, v in headers.items()}

        # received -> verified | rejected
        try:
            await provider.verify(body, lowered)
            event = provider.parse(body)
        except WebhookError as e:
            logger.warning("Webhook rejected (%s): %s", type(e).__name__, e.message)
            return self._finish(
                provider_name,
                DispatchResult(DispatchState.REJECTED, e.status_code, _rejection_message(e)),
            )

        logger.info("Received: %s (%s)", event.type, event.id)

        # verified -> duplicate
        ledger_id = provider.ledger_id(event.id)
        if not await self.context.ledger.claim(ledger_id):
            logger.info("Event %s already processed (idempotent)", event.id)
            return self._finish(
                provider_name,
                DispatchResult(
                    DispatchState.COMPLETED,
                    200,
                    "Already processed",
                    event_id=event.id,
                    event_type=event.type,
                    duplicate=True,
                ),
            )

        # verified -> routed -> completed
        try:
            outcome = await self._apply(provider, event)
        except BaseException:
            # Cancelled mid-handler: the claim must not be left pending
            logger.error("Processing interrupted for %s (%s)", event.id, event.type)
            await self.context.ledger.mark_processed(
                ledger_id, EventOutcome.failed("Processing interrupted")
            )
            raise
        await self.context.ledger.mark_processed(ledger_id, outcome)

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.debug("Webhook processed in %.1fms: %s/%s", elapsed_ms, provider_name, event.type)

        if outcome.ok:
            result = DispatchResult(
                DispatchState.COMPLETED, 200, "Success", event.id, event.type, outcome=outcome
            )
        else:
            result = DispatchResult(
                DispatchState.COMPLETED,
                500,
                outcome.error or "Processing error",
                event.id,
                event.type,
                outcome=outcome,
            )
        return self._finish(provider_name, result)

    async def _apply(self, provider: WebhookProvider, event: WebhookEvent) -> EventOutcome:
        handler = provider.route(event.type)
        try:
            result = await handler(self.context, event)
        except HandlerError as e:
            logger.error("Processing error for %s (%s): %s", event.id, event.type, e.message)
            return EventOutcome.failed(e.message)
        except Exception:
            logger.exception("Handler crashed for %s (%s)", event.id, event.type)
            return EventOutcome.failed("Internal processing error")
        return EventOutcome.success(result)

    def _finish(self, provider_name: str, result: DispatchResult) -> DispatchResult:
        """Audit log for every terminal state."""
        self.counts[provider_name] = self.counts.get(provider_name, 0) + 1
        state = "duplicate" if result.duplicate else result.state.value
        logger.info(
            "WEBHOOK_AUDIT provider=%s event=%s id=%s state=%s status=%d count=%d",
            provider_name,
            result.event_type or "unknown",
            result.event_id or "unknown",
            state,
            result.status_code,
            self.counts[provider_name],
        )
        return result
