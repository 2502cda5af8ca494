"""Payment audit trail.

One structured record per applied payment event. Each record carries an
integrity tag: HMAC-SHA256 over the canonical JSON of the other fields,
so a record lifted from the log can be re-verified against the audit key.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

_MAX_RECORDS = 1000


@dataclass(frozen=True)
class AuditRecord:
    timestamp: str
    event: str
    customer_key: str
    amount_cents: int | None = None
    integrity_tag: str = ""

    def canonical(self) -> bytes:
        fields = asdict(self)
        fields.pop("integrity_tag")
        return json.dumps(fields, sort_keys=True, separators=(",", ":")).encode("utf-8")


class AuditLog:
    """Emits tagged audit records and keeps the most recent in memory."""

    def __init__(self, key: str, max_records: int = _MAX_RECORDS) -> None:
        if not key:
            logger.warning("Audit key not set — integrity tags are unkeyed")
        self._key = key.encode("utf-8")
        self._records: deque[AuditRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def _tag(self, record: AuditRecord) -> str:
        return hmac.new(self._key, record.canonical(), hashlib.sha256).hexdigest()

    def record(
        self, event_type: str, customer_key: str, amount: int | None = None
    ) -> AuditRecord:
        """Build, tag, emit and retain one audit record."""
        untagged = AuditRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event_type,
            customer_key=customer_key,
            amount_cents=amount,
        )
        record = replace(untagged, integrity_tag=self._tag(untagged))
        with self._lock:
            self._records.append(record)
        logger.info("AUDIT %s", json.dumps(asdict(record), sort_keys=True))
        return record

    def verify(self, record: AuditRecord) -> bool:
        """True if the record's integrity tag matches its content."""
        return hmac.compare_digest(self._tag(record), record.integrity_tag)

    @property
    def records(self) -> list[AuditRecord]:
        with self._lock:
            return list(self._records)
