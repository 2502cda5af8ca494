"""Webhook error taxonomy.

Every error is request-scoped and carries the HTTP status it maps to.
Storage degradation is deliberately absent: the ledger logs and counts it
instead of raising.
"""

from __future__ import annotations


class WebhookError(Exception):
    """Base exception for webhook pipeline errors."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(WebhookError):
    """Inbound event could not be authenticated."""

    status_code = 401


class MissingSignatureError(AuthenticationError):
    """Signature header absent or empty."""

    status_code = 400

    def __init__(self, message: str = "Missing signature") -> None:
        super().__init__(message)


class MalformedSignatureError(AuthenticationError):
    """Signature header present but missing or garbling its fields."""


class TimestampOutOfToleranceError(AuthenticationError):
    """Signed timestamp outside the replay window."""

    def __init__(self, timestamp: int, tolerance: int) -> None:
        super().__init__(f"Webhook timestamp {timestamp} outside {tolerance}s tolerance")
        self.timestamp = timestamp
        self.tolerance = tolerance


class SignatureMismatchError(AuthenticationError):
    """Computed signature does not match any supplied signature."""

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message)


class ParseError(WebhookError):
    """Body is not a well-formed event envelope."""

    status_code = 400


class HandlerError(WebhookError):
    """Domain failure while applying a verified event."""

    status_code = 500


class ProviderAPIError(WebhookError):
    """Outbound call to the payment provider failed."""

    status_code = 502
