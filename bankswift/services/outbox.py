"""
Transactional outbox and its background dispatcher.

``enqueue_*`` add rows to the caller's open transaction, so a side effect
exists exactly when the change that caused it committed. The dispatcher
delivers due rows with exponential backoff and a shared rate limit. It never
touches account rows; the only locks it holds during network I/O are the
row locks on the outbox batch it claimed.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from bankswift.core.config import settings
from bankswift.core.utils import utcnow
from bankswift.models.outbox import OutboxKind, OutboxMessage, OutboxStatus
from bankswift.services.notifications import DeliveryError, Notifier, TokenBucket, render_email

logger = logging.getLogger(__name__)


def enqueue_email(db: Session, to: str, subject: str, title: str, body_html: str) -> Optional[OutboxMessage]:
    if not to:
        return None
    message = OutboxMessage(
        kind=OutboxKind.EMAIL,
        payload={"to": to, "subject": subject, "html": render_email(title, body_html)},
    )
    db.add(message)
    return message


def enqueue_webhook(db: Session, url: Optional[str], event: str, data: Any) -> Optional[OutboxMessage]:
    if not url:
        return None
    message = OutboxMessage(
        kind=OutboxKind.WEBHOOK,
        payload={"url": url, "event": event, "data": data},
    )
    db.add(message)
    return message


def backoff_delay(attempts: int) -> timedelta:
    """Delay before retry number ``attempts`` (1-based)."""
    seconds = settings.OUTBOX_BACKOFF_BASE_SECONDS * (2 ** max(attempts - 1, 0))
    return timedelta(seconds=min(seconds, settings.OUTBOX_BACKOFF_MAX_SECONDS))


class OutboxDispatcher:
    def __init__(
        self,
        session_factory: sessionmaker,
        notifier: Optional[Notifier] = None,
        limiter: Optional[TokenBucket] = None,
        periodic=None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or Notifier()
        self.limiter = limiter or TokenBucket(settings.OUTBOX_RATE_PER_SECOND)
        # Extra housekeeping run on every poll, e.g. expiring claims
        self.periodic = list(periodic or [])
        self._stopping: Optional[asyncio.Event] = None

    def _deliver(self, message: OutboxMessage) -> Optional[str]:
        payload = message.payload
        if message.kind == OutboxKind.EMAIL:
            sent = self.notifier.send_email(payload["to"], payload["subject"], payload["html"])
            return None if sent else "smtp not configured"
        if message.kind == OutboxKind.WEBHOOK:
            self.notifier.post_webhook(payload["url"], payload["event"], payload["data"])
            return None
        raise DeliveryError(f"unknown outbox kind {message.kind}")

    def _record_failure(self, message: OutboxMessage, now: datetime, error: str) -> None:
        message.attempts += 1
        message.last_error = error
        if message.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
            message.status = OutboxStatus.DEAD
            logger.error("Outbox message %s gave up after %d attempts: %s", message.id, message.attempts, error)
        else:
            message.next_attempt_at = now + backoff_delay(message.attempts)
            logger.warning("Outbox message %s failed (attempt %d): %s", message.id, message.attempts, error)

    def run_once(self, now: Optional[datetime] = None) -> int:
        """Deliver due messages. Returns how many were marked sent."""
        now = now or utcnow()
        sent = 0
        with self.session_factory() as db:
            due = db.execute(
                select(OutboxMessage)
                .where(
                    OutboxMessage.status == OutboxStatus.PENDING,
                    OutboxMessage.next_attempt_at <= now,
                )
                .order_by(OutboxMessage.id)
                .limit(settings.OUTBOX_BATCH_SIZE)
                .with_for_update(skip_locked=True)
            ).scalars().all()

            for message in due:
                self.limiter.acquire()
                try:
                    note = self._deliver(message)
                except (DeliveryError, KeyError) as e:
                    self._record_failure(message, now, str(e))
                    continue
                except Exception as e:
                    # Anything else counts as a failed attempt too
                    logger.exception("Outbox message %s raised while delivering", message.id)
                    self._record_failure(message, now, f"{type(e).__name__}: {e}")
                    continue

                message.attempts += 1
                message.status = OutboxStatus.SENT
                message.sent_at = utcnow()
                message.last_error = note
                sent += 1

            db.commit()
        return sent

    def _tick(self) -> None:
        try:
            self.run_once()
        except Exception:
            logger.exception("Outbox dispatch pass failed")
        for job in self.periodic:
            try:
                with self.session_factory() as db:
                    job(db)
            except Exception:
                logger.exception("Periodic job %s failed", getattr(job, "__name__", job))

    async def run_forever(self, poll_seconds: Optional[float] = None) -> None:
        """Poll until ``stop`` is called. Blocking work runs in a thread."""
        poll_seconds = poll_seconds or settings.OUTBOX_POLL_SECONDS
        self._stopping = asyncio.Event()
        logger.info("Outbox dispatcher started (every %.1fs)", poll_seconds)
        while not self._stopping.is_set():
            await asyncio.to_thread(self._tick)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=poll_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Outbox dispatcher stopped")

    def stop(self) -> None:
        if self._stopping is not None:
            self._stopping.set()
