"""
Outbox message model.
Side effects (email, webhooks) written in the same database transaction as
the change that caused them, delivered later by the dispatcher.
"""

from sqlalchemy import Column, String, DateTime, Integer, Text, JSON, Enum as SQLEnum
from bankswift.core.utils import utcnow
from bankswift.database import Base
import enum


class OutboxKind(enum.Enum):
    EMAIL = "email"
    WEBHOOK = "webhook"


class OutboxStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    DEAD = "dead"


class OutboxMessage(Base):
    """
    Outbox table - pending and delivered side effects.
    """
    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(SQLEnum(OutboxKind, values_callable=lambda e: [m.value for m in e]), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(
        SQLEnum(OutboxStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OutboxStatus.PENDING,
        index=True
    )
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    sent_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<OutboxMessage(id={self.id}, kind={self.kind.value}, status={self.status.value}, attempts={self.attempts})>"
