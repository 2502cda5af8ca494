"""Webhook signature verification — Stripe v1 scheme.

Security contract:
- Comparisons use hmac.compare_digest() (constant-time, no timing attacks)
- Each failure raises a distinct AuthenticationError subclass
- Empty secret -> verification always fails (fail-closed)
- Timestamp tolerance: 300s (5 min) to prevent replay
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field

from paywebhooks.exceptions import (
    MalformedSignatureError,
    MissingSignatureError,
    SignatureMismatchError,
    TimestampOutOfToleranceError,
)

logger = logging.getLogger(__name__)

# Replay window (seconds)
TIMESTAMP_TOLERANCE = 300

SIGNATURE_HEADER = "stripe-signature"


@dataclass(frozen=True)
class SignatureHeader:
    """Decomposed signature header: t=<timestamp>,v1=<sig>[,v1=<sig>...]"""

    timestamp: int
    signatures: tuple[str, ...] = field(default_factory=tuple)


def parse_signature_header(header: str | None) -> SignatureHeader:
    """Split a signature header into its timestamp and v1 signatures.

    Unknown keys (e.g. the deprecated v0 scheme) are ignored.

    Raises:
        MissingSignatureError: header is None or blank
        MalformedSignatureError: no t, non-integer t, or no v1
    """
    if not header or not header.strip():
        raise MissingSignatureError()

    timestamp_str = None
    signatures: list[str] = []
    for item in header.split(","):
        kv = item.strip().split("=", 1)
        if len(kv) != 2:
            continue
        key, value = kv
        if key == "t":
            timestamp_str = value
        elif key == "v1" and value:
            signatures.append(value)

    if not timestamp_str:
        raise MalformedSignatureError("Missing timestamp")
    try:
        timestamp = int(timestamp_str)
    except ValueError:
        raise MalformedSignatureError("Invalid timestamp") from None
    if not signatures:
        raise MalformedSignatureError("Missing signature")

    return SignatureHeader(timestamp=timestamp, signatures=tuple(signatures))


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    """HMAC-SHA256 hex digest over ``b"{timestamp}." + payload``."""
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Produce a header value the verifier accepts (local testing, CLI)."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={compute_signature(payload, secret, ts)}"


def verify_signature(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance: int = TIMESTAMP_TOLERANCE,
    now: float | None = None,
) -> None:
    """Verify a signed webhook body.

    Args:
        payload: Raw request body bytes, exactly as received
        signature_header: Value of the Stripe-Signature header
        secret: Webhook signing secret
        tolerance: Maximum allowed |now - t| in seconds
        now: Current unix time (defaults to time.time())

    Raises:
        MissingSignatureError, MalformedSignatureError,
        TimestampOutOfToleranceError, SignatureMismatchError
    """
    parsed = parse_signature_header(signature_header)

    current = time.time() if now is None else now
    try:
        skew = abs(current - parsed.timestamp)
    except OverflowError:
        # t= too large for float arithmetic
        skew = float("inf")
    if skew > tolerance:
        logger.warning("Webhook timestamp too old/future: %s", parsed.timestamp)
        raise TimestampOutOfToleranceError(parsed.timestamp, tolerance)

    if not secret:
        logger.warning("Webhook signing secret not set — rejecting webhook")
        raise SignatureMismatchError()

    expected = compute_signature(payload, secret, parsed.timestamp)
    if not any(hmac.compare_digest(expected, sig) for sig in parsed.signatures):
        raise SignatureMismatchError()
