"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from paywebhooks.config import Settings, get_settings
from paywebhooks.context import WebhookContext
from paywebhooks.dispatcher import EventDispatcher
from paywebhooks.handlers import register_webhook_routes
from paywebhooks.providers import build_providers

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=_LOG_FORMAT)


def create_app(
    settings: Settings | None = None, context: WebhookContext | None = None
) -> FastAPI:
    """Build the app with its own ledger, registry and provider clients."""
    settings = settings or get_settings()
    context = context or WebhookContext.from_settings(settings)
    dispatcher = EventDispatcher(context, build_providers(context))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Webhook receiver starting (ledger=%s, paypal=%s)",
            context.ledger.backend,
            settings.paypal_mode,
        )
        yield
        await context.aclose()

    app = FastAPI(title="paywebhooks", lifespan=lifespan)
    app.state.context = context
    app.state.dispatcher = dispatcher

    register_webhook_routes(app, dispatcher)

    @app.get("/health")
    async def health():
        """Liveness plus ledger storage state (alert on storage_degraded)."""
        return {
            "status": "ok",
            "storage": context.ledger.backend,
            "storage_degraded": context.ledger.storage_degraded,
            "counts": dict(dispatcher.counts),
        }

    return app
