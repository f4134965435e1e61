"""
Account database model.
Represents bank accounts in the system.
"""

from sqlalchemy import Column, String, Numeric, DateTime, Integer, ForeignKey, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from bankswift.core.utils import utcnow
from bankswift.database import Base
import enum


class AccountType(enum.Enum):
    """Account types every user gets at registration."""
    CHECKING = "checking"
    SAVINGS = "savings"


class Account(Base):
    """
    Account table - stores balances per account type.

    ``available`` is the spendable part of ``balance``; both only change
    through committed transfers.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        CheckConstraint("available >= 0", name="ck_accounts_available_non_negative"),
        CheckConstraint("available <= balance", name="ck_accounts_available_le_balance"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(50), unique=True, index=True, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(
        SQLEnum(AccountType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccountType.CHECKING
    )
    balance = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    available = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    owner = relationship("User", back_populates="accounts")
    entries = relationship("Transaction", back_populates="account")

    def __repr__(self):
        return f"<Account(account_id={self.account_id}, type={self.type}, balance={self.balance})>"
