"""
User database model.
A registered customer; owns a checking and a savings account.
"""

from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.orm import relationship
from bankswift.core.utils import utcnow
from bankswift.database import Base


class User(Base):
    """
    Users table - stores registration details.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    fullname = Column(String(100), nullable=False, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(30), nullable=True)
    password_hash = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    accounts = relationship("Account", back_populates="owner", order_by="Account.id")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"
