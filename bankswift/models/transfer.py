"""
Transfer database model.
Represents a money movement from one account to an internal account or
an external recipient.
"""

from sqlalchemy import Column, String, Numeric, DateTime, Integer, ForeignKey, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from bankswift.core.utils import utcnow
from bankswift.database import Base
import enum


class TransferStatus(enum.Enum):
    """Transfer status states."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Transfer(Base):
    """
    Transfers table - one row per accepted transfer request.

    Internal transfers set ``recipient_account_id`` and complete at once.
    External transfers set ``recipient_external_ref`` and stay pending
    until the claim token is redeemed or expires.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(100), unique=True, index=True, nullable=False)
    sender_account_id = Column(String(50), ForeignKey("accounts.account_id"), nullable=False, index=True)
    recipient_account_id = Column(String(50), ForeignKey("accounts.account_id"), nullable=True, index=True)
    recipient_external_ref = Column(String(255), nullable=True)
    recipient_email = Column(String(255), nullable=True)
    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    method = Column(String(30), nullable=False)
    description = Column(String(500), nullable=True)
    status = Column(
        SQLEnum(TransferStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TransferStatus.PENDING
    )
    claim_token = Column(String(100), unique=True, nullable=True)
    claim_expires_at = Column(DateTime, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    sender_account = relationship("Account", foreign_keys=[sender_account_id])
    recipient_account = relationship("Account", foreign_keys=[recipient_account_id])
    entries = relationship("Transaction", back_populates="transfer", order_by="Transaction.id")

    def __repr__(self):
        return f"<Transfer(ref={self.reference}, from={self.sender_account_id}, amount={self.amount}, status={self.status.value})>"
