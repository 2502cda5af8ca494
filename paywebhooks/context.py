"""Runtime context owning the ledger, registry and collaborators."""

from __future__ import annotations

from dataclasses import dataclass

from paywebhooks.audit import AuditLog
from paywebhooks.config import Settings
from paywebhooks.ledger import IdempotencyLedger
from paywebhooks.provider_client import PayPalClient, StripeClient
from paywebhooks.subscriptions import SubscriptionRegistry


@dataclass
class WebhookContext:
    settings: Settings
    ledger: IdempotencyLedger
    subscriptions: SubscriptionRegistry
    audit: AuditLog
    paypal: PayPalClient
    stripe: StripeClient

    @classmethod
    def from_settings(cls, settings: Settings) -> WebhookContext:
        return cls(
            settings=settings,
            ledger=IdempotencyLedger(settings.redis_url),
            subscriptions=SubscriptionRegistry(),
            audit=AuditLog(settings.effective_audit_key),
            paypal=PayPalClient(
                settings.paypal_client_id,
                settings.paypal_client_secret,
                settings.paypal_base_url,
            ),
            stripe=StripeClient(settings.stripe_secret_key),
        )

    async def aclose(self) -> None:
        await self.ledger.close()
        await self.paypal.aclose()
