"""
Pydantic schemas for ledger entries.
"""

from pydantic import BaseModel, ConfigDict
from decimal import Decimal
from datetime import datetime
from typing import Optional
from bankswift.models.transaction import Direction


class TransactionResponse(BaseModel):
    """Schema for a single debit/credit entry."""
    id: int
    transaction_id: str
    account_id: str
    direction: Direction
    amount: Decimal
    description: Optional[str]
    created_at: datetime
    balance_after: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)
