"""Payment provider webhook surfaces."""

from __future__ import annotations

from typing import TYPE_CHECKING

from paywebhooks.providers.base import WebhookProvider
from paywebhooks.providers.paypal import PayPalProvider
from paywebhooks.providers.stripe import StripeProvider

if TYPE_CHECKING:
    from paywebhooks.context import WebhookContext


def build_providers(context: WebhookContext) -> dict[str, WebhookProvider]:
    """Provider name -> configured provider."""
    settings = context.settings
    return {
        "stripe": StripeProvider(settings.stripe_webhook_secret),
        "paypal": PayPalProvider(context.paypal, settings.paypal_webhook_id),
    }


__all__ = ["PayPalProvider", "StripeProvider", "WebhookProvider", "build_providers"]
