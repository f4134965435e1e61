"""
Idempotency guard for write endpoints.

A client-supplied key maps to the hash of the request it was first used
with and the response that request produced. The record is added in the
same database transaction as the write it protects, so a key is only
"used" once that write has committed.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from bankswift.core.config import settings
from bankswift.core.errors import IdempotencyConflictError
from bankswift.core.utils import utcnow
from bankswift.models.idempotency import IdempotencyRecord

logger = logging.getLogger(__name__)


@dataclass
class IdempotencyDecision:
    """Either replay a stored response or let the request proceed."""
    proceed: bool
    status_code: Optional[int] = None
    body: Optional[Any] = None

    @property
    def replay(self) -> bool:
        return not self.proceed


def request_hash(payload: dict) -> str:
    """SHA-256 over canonical JSON, so key order and whitespace do not matter."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _retention_cutoff(now: datetime) -> Optional[datetime]:
    if settings.IDEMPOTENCY_RETENTION_HOURS is None:
        return None
    return now - timedelta(hours=settings.IDEMPOTENCY_RETENTION_HOURS)


def check_and_reserve(db: Session, key: str, req_hash: str) -> IdempotencyDecision:
    """
    Look the key up.

    Returns a replay decision when the key already completed with the same
    request hash, a proceed decision when the key is unknown (or past the
    retention window).

    Raises:
        IdempotencyConflictError: key was used with a different request.
    """
    record = db.get(IdempotencyRecord, key)
    if record is not None:
        cutoff = _retention_cutoff(utcnow())
        if cutoff is not None and record.created_at < cutoff:
            db.delete(record)
            db.flush()
            record = None

    if record is None:
        return IdempotencyDecision(proceed=True)

    if record.request_hash != req_hash:
        logger.warning("Idempotency-Key %s reused with a different payload", key)
        raise IdempotencyConflictError(key)

    logger.info("Replaying stored response for Idempotency-Key %s", key)
    return IdempotencyDecision(proceed=False, status_code=record.status_code, body=record.response_body)


def complete(db: Session, key: str, req_hash: str, status_code: int, body: Any) -> IdempotencyRecord:
    """Add the record to the open transaction; it commits with the write."""
    record = IdempotencyRecord(
        key=key,
        request_hash=req_hash,
        status_code=status_code,
        response_body=body,
    )
    db.add(record)
    return record


def purge_expired(db: Session, now: Optional[datetime] = None) -> int:
    """Delete records older than the retention window. Returns the count removed."""
    cutoff = _retention_cutoff(now or utcnow())
    if cutoff is None:
        return 0
    result = db.execute(delete(IdempotencyRecord).where(IdempotencyRecord.created_at < cutoff))
    db.commit()
    if result.rowcount:
        logger.info("Purged %d idempotency keys older than %s", result.rowcount, cutoff)
    return result.rowcount or 0
