"""
Pydantic schemas for Account API responses.
"""

from pydantic import BaseModel, ConfigDict
from decimal import Decimal
from datetime import datetime
from bankswift.models.account import AccountType


class AccountResponse(BaseModel):
    """Schema for account response."""
    id: int
    account_id: str
    owner_id: int
    type: AccountType
    balance: Decimal
    available: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccountBalance(BaseModel):
    """Schema for account balance response."""
    account_id: str
    balance: Decimal
    available: Decimal

    model_config = ConfigDict(from_attributes=True)
