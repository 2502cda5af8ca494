"""Idempotency ledger — Redis-based event deduplication.

Security contract:
- Tracks processed event IDs in Redis with 24h TTL
- Key pattern: event:{event_id}
- claim() is an atomic SET NX: exactly one concurrent delivery wins
- Duplicates are answered with 200 (provider retries on errors)
- If Redis is down or unconfigured, falls back to an in-process store
  (fail-open for availability; does not survive a restart)
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

DEDUP_TTL_SECONDS = 86400  # 24 hours

_KEY_PREFIX = "event"

# Stored under the key between claim() and mark_processed()
_PENDING_MARKER = json.dumps({"status": "pending"})


class OutcomeStatus(str, Enum):
    """Recorded result of applying an event."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class EventOutcome:
    """Success with domain result data, or Failed with an error description."""

    status: OutcomeStatus
    result: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def success(cls, result: dict[str, Any] | None = None) -> EventOutcome:
        return cls(status=OutcomeStatus.SUCCESS, result=dict(result or {}))

    @classmethod
    def failed(cls, error: str) -> EventOutcome:
        return cls(status=OutcomeStatus.FAILED, error=error)

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable record of a processed event."""

    event_id: str
    processed_at: datetime
    outcome: EventOutcome

    def to_json(self) -> str:
        return json.dumps(
            {
                "event_id": self.event_id,
                "processed_at": self.processed_at.isoformat(),
                "status": self.outcome.status.value,
                "result": self.outcome.result,
                "error": self.outcome.error,
            },
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str) -> LedgerEntry | None:
        """Decode a stored value; None for a pending claim marker."""
        data = json.loads(raw)
        if data.get("status") not in {s.value for s in OutcomeStatus}:
            return None
        return cls(
            event_id=data["event_id"],
            processed_at=datetime.fromisoformat(data["processed_at"]),
            outcome=EventOutcome(
                status=OutcomeStatus(data["status"]),
                result=data.get("result") or {},
                error=data.get("error"),
            ),
        )


@dataclass
class _MemorySlot:
    entry: LedgerEntry | None  # None while only claimed
    expires_at: float


class IdempotencyLedger:
    """Records which event IDs have been applied and their outcome.

    Reads never take the lock; the in-process map is only mutated under
    ``_lock`` and without intervening awaits, so readers always see a
    consistent slot.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        client: Any = None,
        ttl: int = DEDUP_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._redis = client
        if self._redis is None and redis_url:
            self._redis = aioredis.from_url(redis_url, decode_responses=True)
        self._ttl = ttl
        self._clock = clock
        self._fallback: dict[str, _MemorySlot] = {}
        self._lock = asyncio.Lock()
        self.degraded_count = 0
        self.storage_degraded = False

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    @staticmethod
    def key(event_id: str) -> str:
        return f"{_KEY_PREFIX}:{event_id}"

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def is_processed(self, event_id: str) -> bool:
        """True if the event was claimed or recorded (redis or fallback)."""
        if self._redis is not None:
            try:
                exists = await self._redis.exists(self.key(event_id))
                self.storage_degraded = False
                if exists:
                    return True
            except Exception:
                self._degrade("exists", event_id)
        return self._memory_slot(event_id) is not None

    async def claim(self, event_id: str) -> bool:
        """Atomically claim an event ID. True only for the first caller."""
        if self._memory_slot(event_id) is not None:
            logger.info("Duplicate event rejected: %s", event_id)
            return False

        if self._redis is not None:
            try:
                was_set = await self._redis.set(
                    self.key(event_id), _PENDING_MARKER, nx=True, ex=self._ttl
                )
                self.storage_degraded = False
                if not was_set:
                    logger.info("Duplicate event rejected: %s", event_id)
                    return False
                return True
            except Exception:
                self._degrade("claim", event_id)

        async with self._lock:
            if self._memory_slot(event_id) is not None:
                logger.info("Duplicate event rejected: %s", event_id)
                return False
            self._fallback[event_id] = _MemorySlot(
                entry=None, expires_at=self._clock() + self._ttl
            )
        return True

    async def mark_processed(self, event_id: str, outcome: EventOutcome) -> LedgerEntry:
        """Record the outcome for an event with the retention TTL."""
        entry = LedgerEntry(
            event_id=event_id,
            processed_at=datetime.now(timezone.utc),
            outcome=outcome,
        )

        if self._redis is not None:
            try:
                await self._redis.set(self.key(event_id), entry.to_json(), ex=self._ttl)
                self.storage_degraded = False
                logger.debug("Ledger entry written: %s (%s)", event_id, outcome.status.value)
                return entry
            except Exception:
                self._degrade("mark_processed", event_id)

        async with self._lock:
            slot = self._memory_slot(event_id)
            if slot is not None and slot.entry is not None:
                logger.warning("Ledger entry for %s already written — keeping original", event_id)
                return slot.entry
            self._fallback[event_id] = _MemorySlot(
                entry=entry, expires_at=self._clock() + self._ttl
            )
        return entry

    async def get_entry(self, event_id: str) -> LedgerEntry | None:
        """Read back a finished entry (None if unknown or only claimed)."""
        if self._redis is not None:
            try:
                raw = await self._redis.get(self.key(event_id))
                self.storage_degraded = False
                if raw is not None:
                    return LedgerEntry.from_json(raw)
            except Exception:
                self._degrade("get", event_id)
        slot = self._memory_slot(event_id)
        return slot.entry if slot is not None else None

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _memory_slot(self, event_id: str) -> _MemorySlot | None:
        slot = self._fallback.get(event_id)
        if slot is None:
            return None
        if slot.expires_at <= self._clock():
            self._fallback.pop(event_id, None)
            return None
        return slot

    def _degrade(self, operation: str, event_id: str) -> None:
        self.degraded_count += 1
        self.storage_degraded = True
        logger.warning(
            "Redis unavailable for ledger %s — using in-process store for %s",
            operation,
            event_id,
            exc_info=True,
        )
