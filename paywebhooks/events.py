"""Provider-neutral event envelope and lazy per-type payload decoding.

The envelope (id, type, created_at, raw data object) is parsed once by the
provider. Typed payload models are decoded only inside the handler that
matches the event type, so an unknown or malformed nested object never
blocks deduplication of the envelope.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from paywebhooks.exceptions import HandlerError, ParseError

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class WebhookEvent:
    """Normalized, verified event ready for routing."""

    provider: str
    id: str
    type: str
    created_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    livemode: bool = False


def load_json_object(body: bytes) -> dict[str, Any]:
    """Decode a request body that must be a JSON object."""
    try:
        document = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ParseError("Invalid JSON body") from None
    if not isinstance(document, dict):
        raise ParseError("Event body must be a JSON object")
    return document


def validate_envelope(model: type[M], document: dict[str, Any]) -> M:
    try:
        return model.model_validate(document)
    except ValidationError as e:
        raise ParseError(f"Invalid event: {e.error_count()} field error(s)") from None


def decode_payload(model: type[M], event: WebhookEvent, label: str) -> M:
    """Decode the event's data object into *model* or raise HandlerError."""
    try:
        return model.model_validate(event.payload)
    except ValidationError as e:
        raise HandlerError(f"Failed to parse {label}: {e.error_count()} field error(s)") from None
