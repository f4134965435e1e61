"""
Idempotency record model.
Stores the response of a completed request under its client-supplied key.
"""

from sqlalchemy import Column, String, DateTime, Integer, JSON
from bankswift.core.utils import utcnow
from bankswift.database import Base


class IdempotencyRecord(Base):
    """
    Idempotency keys table. The primary key doubles as the reservation:
    two concurrent requests with one key cannot both commit.
    """
    __tablename__ = "idempotency_keys"

    key = Column(String(255), primary_key=True)
    request_hash = Column(String(64), nullable=False)
    status_code = Column(Integer, nullable=False)
    response_body = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<IdempotencyRecord(key={self.key}, status={self.status_code})>"
