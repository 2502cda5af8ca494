"""Environment-driven settings for the webhook receiver."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings

_PAYPAL_LIVE_URL = "https://api-m.paypal.com"
_PAYPAL_SANDBOX_URL = "https://api-m.sandbox.paypal.com"


class Settings(BaseSettings):
    """Provider credentials, shared store and process options.

    Field names map to the providers' conventional env var names
    (STRIPE_WEBHOOK_SECRET, REDIS_URL, PAYPAL_MODE, ...).
    """

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_publishable_key: str = ""

    # Absent -> in-process idempotency ledger
    redis_url: str | None = None

    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_mode: str = "sandbox"  # sandbox or live
    paypal_webhook_id: str = ""

    audit_key: str = ""

    port: int = 3000
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def paypal_base_url(self) -> str:
        return _PAYPAL_LIVE_URL if self.paypal_mode == "live" else _PAYPAL_SANDBOX_URL

    @property
    def effective_audit_key(self) -> str:
        return self.audit_key or self.stripe_webhook_secret


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
