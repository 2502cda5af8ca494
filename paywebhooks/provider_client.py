"""Outbound payment provider API clients.

- PayPalClient: client-credentials token exchange (cached until 60s before
  expiry) and the verify-webhook-signature postback
- StripeClient: customer portal session creation (placeholder URL; the
  live API call is not wired)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from paywebhooks.exceptions import ProviderAPIError
from paywebhooks.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Refresh the bearer token this many seconds before the provider expiry
TOKEN_EXPIRY_MARGIN = 60

_DEFAULT_TIMEOUT = 10.0


def _json_object(resp: httpx.Response) -> dict[str, Any]:
    """Decode a response body that must be a JSON object (ValueError otherwise)."""
    body = resp.json()
    if not isinstance(body, dict):
        raise ValueError(f"Expected a JSON object, got {type(body).__name__}")
    return body


class PayPalClient:
    """Async PayPal REST client with a cached bearer token."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        *,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=_DEFAULT_TIMEOUT)
        self._clock = clock
        self._token: tuple[str, float] | None = None  # (token, refresh_at)
        self._token_lock = asyncio.Lock()

    def _cached_token(self) -> str | None:
        if self._token is None:
            return None
        token, refresh_at = self._token
        return token if refresh_at > self._clock() else None

    async def get_access_token(self) -> str:
        """Return a valid access token, exchanging credentials if needed."""
        token = self._cached_token()
        if token:
            return token

        async with self._token_lock:
            token = self._cached_token()
            if token:
                return token
            try:
                body = await self._fetch_token()
            except (httpx.HTTPError, ValueError) as e:
                raise ProviderAPIError(f"Token exchange failed: {type(e).__name__}") from e

            access_token = body.get("access_token")
            if not access_token:
                raise ProviderAPIError("No access_token field")
            try:
                expires_in = int(body.get("expires_in", 3600))
            except (TypeError, ValueError):
                raise ProviderAPIError("Invalid expires_in field") from None
            self._token = (access_token, self._clock() + expires_in - TOKEN_EXPIRY_MARGIN)
            logger.info("PayPal access token refreshed (expires in %ds)", expires_in)
            return access_token

    @retry_with_backoff()
    async def _fetch_token(self) -> dict[str, Any]:
        resp = await self._http.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self._client_id, self._client_secret),
            data={"grant_type": "client_credentials"},
        )
        resp.raise_for_status()
        return _json_object(resp)

    async def verify_webhook_signature(self, request: dict[str, Any]) -> str:
        """Post transmission headers + event back to PayPal.

        Returns:
            The reported verification_status ("SUCCESS" or "FAILURE")
        """
        token = await self.get_access_token()
        try:
            body = await self._post_verification(token, request)
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderAPIError(f"Signature verification failed: {type(e).__name__}") from e
        return str(body.get("verification_status", ""))

    @retry_with_backoff()
    async def _post_verification(self, token: str, request: dict[str, Any]) -> dict[str, Any]:
        resp = await self._http.post(
            f"{self.base_url}/v1/notifications/verify-webhook-signature",
            headers={"Authorization": f"Bearer {token}"},
            json=request,
        )
        resp.raise_for_status()
        return _json_object(resp)

    async def aclose(self) -> None:
        await self._http.aclose()


@dataclass(frozen=True)
class PortalSession:
    customer_id: str
    url: str


class StripeClient:
    """Stripe REST surface used by the receiver."""

    PORTAL_BASE_URL = "https://billing.stripe.com/p/session"

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key

    async def create_portal_session(self, customer_id: str) -> PortalSession:
        """Create a customer portal session.

        TODO: call POST /v1/billing_portal/sessions with the secret key once
        live portal access is enabled; this returns the test-mode URL shape.
        """
        url = f"{self.PORTAL_BASE_URL}/test_portal_{customer_id}"
        logger.info("Created portal session for: %s", customer_id)
        return PortalSession(customer_id=customer_id, url=url)
