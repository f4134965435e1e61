"""
Transaction database model.
One debit or credit leg against a single account. Rows are never updated.
"""

from sqlalchemy import Column, String, Numeric, DateTime, Integer, ForeignKey, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from bankswift.core.utils import utcnow
from bankswift.database import Base
import enum


class Direction(enum.Enum):
    """Which way money moved on the account."""
    DEBIT = "debit"
    CREDIT = "credit"


class Transaction(Base):
    """
    Transactions table - append-only ledger entries.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(100), unique=True, index=True, nullable=False)
    account_id = Column(String(50), ForeignKey("accounts.account_id"), nullable=False, index=True)
    transfer_id = Column(Integer, ForeignKey("transfers.id"), nullable=True, index=True)
    direction = Column(
        SQLEnum(Direction, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    account = relationship("Account", back_populates="entries")
    transfer = relationship("Transfer", back_populates="entries")

    def __repr__(self):
        return f"<Transaction(id={self.transaction_id}, account={self.account_id}, {self.direction.value} {self.amount})>"
