"""Webhook HTTP handlers — FastAPI routes for inbound provider webhooks.

Each webhook route:
1. Reads the raw body (needed for signature verification)
2. Hands body + headers to the EventDispatcher
3. Maps the terminal dispatch state to a response

Response codes:
- 200: processed, or already processed (duplicate)
- 400: missing signature header, malformed body
- 401: signature verification failure
- 500: handler failure (short message only)
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from paywebhooks.dispatcher import EventDispatcher
from paywebhooks.events import load_json_object
from paywebhooks.exceptions import ParseError

logger = logging.getLogger(__name__)


async def _handle_webhook(
    request: Request, dispatcher: EventDispatcher, provider: str
) -> JSONResponse:
    body = await request.body()
    result = await dispatcher.dispatch(provider, body, dict(request.headers))
    return JSONResponse(
        {"status": result.state.value, "detail": result.message},
        status_code=result.status_code,
    )


def register_webhook_routes(app: FastAPI, dispatcher: EventDispatcher) -> None:
    """Register webhook and portal routes on the FastAPI app."""

    @app.post("/webhook")
    async def webhook(request: Request):
        """Receive Stripe webhooks (signature-verified)."""
        return await _handle_webhook(request, dispatcher, "stripe")

    @app.post("/stripe/webhook")
    async def stripe_webhook(request: Request):
        """Receive Stripe webhooks (signature-verified)."""
        return await _handle_webhook(request, dispatcher, "stripe")

    @app.post("/paypal/webhook")
    async def paypal_webhook(request: Request):
        """Receive PayPal webhooks (postback-verified)."""
        return await _handle_webhook(request, dispatcher, "paypal")

    @app.post("/stripe/portal")
    async def stripe_portal(request: Request):
        """Create a customer portal session."""
        try:
            payload = load_json_object(await request.body())
        except ParseError:
            return JSONResponse({"detail": "Invalid JSON body"}, status_code=400)
        customer_id = payload.get("customer_id")
        if not isinstance(customer_id, str) or not customer_id:
            return JSONResponse({"detail": "customer_id required"}, status_code=400)

        session = await dispatcher.context.stripe.create_portal_session(customer_id)
        return {"url": session.url}

    logger.info("Webhook routes registered: /webhook, /stripe/{webhook,portal}, /paypal/webhook")
