"""Tests for Stripe v1 signature verification.

Tests:
- Header decomposition (t / v1 fields, malformed variants)
- Authenticity (tampered body, wrong secret, key rotation)
- Freshness window (300s boundary, past and future)
- Sign/verify properties over arbitrary payloads
"""

from __future__ import annotations

import hashlib
import hmac

import pytest
from freezegun import freeze_time
from hypothesis import given
from hypothesis import strategies as st

from paywebhooks.exceptions import (
    AuthenticationError,
    MalformedSignatureError,
    MissingSignatureError,
    SignatureMismatchError,
    TimestampOutOfToleranceError,
)
from paywebhooks.verification import (
    TIMESTAMP_TOLERANCE,
    build_signature_header,
    compute_signature,
    parse_signature_header,
    verify_signature,
)

SECRET = "whsec_verification"
NOW = 1_700_000_000  # 2023-11-14 22:13:20 UTC
BODY = b'{"id": "evt_1", "type": "invoice.paid"}'


def _sign(body: bytes, timestamp: int = NOW, secret: str = SECRET) -> str:
    signed_payload = f"{timestamp}.".encode() + body
    sig = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={sig}"


# ── Header parsing ─────────────────────────────────────────────────────────


class TestParseSignatureHeader:
    def test_parses_timestamp_and_signature(self):
        parsed = parse_signature_header("t=123,v1=abc")
        assert parsed.timestamp == 123
        assert parsed.signatures == ("abc",)

    def test_keeps_every_v1(self):
        parsed = parse_signature_header("t=1,v1=first,v1=second")
        assert parsed.signatures == ("first", "second")

    def test_ignores_v0_and_unknown_keys(self):
        parsed = parse_signature_header("t=1, v0=legacy, x=y, v1=sig")
        assert parsed.signatures == ("sig",)

    @pytest.mark.parametrize("header", [None, "", "   "])
    def test_missing_header(self, header):
        with pytest.raises(MissingSignatureError):
            parse_signature_header(header)

    def test_missing_timestamp(self):
        with pytest.raises(MalformedSignatureError, match="Missing timestamp"):
            parse_signature_header("v1=sig")

    def test_non_integer_timestamp(self):
        with pytest.raises(MalformedSignatureError, match="Invalid timestamp"):
            parse_signature_header("t=yesterday,v1=sig")

    def test_missing_v1(self):
        with pytest.raises(MalformedSignatureError, match="Missing signature"):
            parse_signature_header(f"t={NOW}")

    def test_garbage_fields_are_malformed(self):
        with pytest.raises(MalformedSignatureError):
            parse_signature_header("garbage")


# ── Verification ───────────────────────────────────────────────────────────


class TestVerifySignature:
    def test_valid_signature(self):
        assert verify_signature(BODY, _sign(BODY), SECRET, now=NOW) is None

    def test_tampered_body(self):
        header = _sign(BODY)
        with pytest.raises(SignatureMismatchError):
            verify_signature(BODY.replace(b"evt_1", b"evt_2"), header, SECRET, now=NOW)

    def test_wrong_secret(self):
        header = _sign(BODY, secret="whsec_other")
        with pytest.raises(SignatureMismatchError):
            verify_signature(BODY, header, SECRET, now=NOW)

    def test_multiple_v1_signatures(self):
        """Key rotation: any matching v1 is accepted."""
        valid = compute_signature(BODY, SECRET, NOW)
        header = f"t={NOW},v1=invalid_first,v1={valid}"
        verify_signature(BODY, header, SECRET, now=NOW)

    def test_empty_secret_rejects(self):
        """No secret configured -> always reject (fail-closed)."""
        with pytest.raises(SignatureMismatchError):
            verify_signature(BODY, _sign(BODY, secret=""), "", now=NOW)

    def test_missing_header(self):
        with pytest.raises(MissingSignatureError):
            verify_signature(BODY, None, SECRET, now=NOW)

    def test_exactly_at_tolerance_passes(self):
        header = _sign(BODY, timestamp=NOW - TIMESTAMP_TOLERANCE)
        verify_signature(BODY, header, SECRET, now=NOW)

    @pytest.mark.parametrize("skew", [-301, 301, -600, 600])
    def test_outside_tolerance_rejects_even_with_correct_hash(self, skew):
        header = _sign(BODY, timestamp=NOW + skew)
        with pytest.raises(TimestampOutOfToleranceError):
            verify_signature(BODY, header, SECRET, now=NOW)

    def test_oversized_timestamp_rejected(self):
        header = "t=1" + "0" * 400 + ",v1=abc"
        with pytest.raises(TimestampOutOfToleranceError) as exc:
            verify_signature(BODY, header, SECRET, now=NOW)
        assert exc.value.status_code == 401

    def test_failures_share_authentication_base(self):
        for header in (None, "v1=x", _sign(BODY, timestamp=NOW - 301), _sign(b"other")):
            with pytest.raises(AuthenticationError):
                verify_signature(BODY, header, SECRET, now=NOW)

    def test_missing_header_maps_to_400_others_to_401(self):
        assert MissingSignatureError().status_code == 400
        assert SignatureMismatchError().status_code == 401
        assert MalformedSignatureError("x").status_code == 401
        assert TimestampOutOfToleranceError(1, 300).status_code == 401

    @freeze_time("2023-11-14 22:13:20")
    def test_defaults_to_wall_clock(self):
        verify_signature(BODY, _sign(BODY), SECRET)

    @freeze_time("2023-11-14 22:18:21")
    def test_wall_clock_replay_rejected(self):
        """Same header replayed 301s later is rejected."""
        with pytest.raises(TimestampOutOfToleranceError):
            verify_signature(BODY, _sign(BODY), SECRET)


class TestBuildSignatureHeader:
    def test_round_trips_through_verifier(self):
        header = build_signature_header(BODY, SECRET, NOW)
        assert header.startswith(f"t={NOW},v1=")
        verify_signature(BODY, header, SECRET, now=NOW)


# ── Properties ─────────────────────────────────────────────────────────────


class TestSignatureProperties:
    @given(
        payload=st.binary(max_size=512),
        secret=st.text(min_size=1, max_size=64),
        skew=st.integers(min_value=-TIMESTAMP_TOLERANCE, max_value=TIMESTAMP_TOLERANCE),
    )
    def test_signed_payload_within_window_verifies(self, payload, secret, skew):
        header = build_signature_header(payload, secret, NOW + skew)
        verify_signature(payload, header, secret, now=NOW)

    @given(
        payload=st.binary(min_size=1, max_size=512),
        secret=st.text(min_size=1, max_size=64),
        index=st.integers(min_value=0, max_value=10_000),
    )
    def test_flipping_any_byte_fails(self, payload, secret, index):
        header = build_signature_header(payload, secret, NOW)
        i = index % len(payload)
        flipped = payload[:i] + bytes([payload[i] ^ 0xFF]) + payload[i + 1 :]
        with pytest.raises(SignatureMismatchError):
            verify_signature(flipped, header, secret, now=NOW)
