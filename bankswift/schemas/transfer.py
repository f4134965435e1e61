"""
Pydantic schemas for Transfer API requests and responses.
"""

from pydantic import BaseModel, Field, ConfigDict
from decimal import Decimal
from datetime import datetime
from typing import Optional, Union
from bankswift.models.account import AccountType
from bankswift.models.transfer import TransferStatus


class ExternalBankDetails(BaseModel):
    """Bank account of a recipient outside Bank Swift."""
    account_number: str = Field(..., min_length=1, max_length=34)
    routing_number: str = Field(..., min_length=1, max_length=20)


class TransferRequest(BaseModel):
    """
    Schema for initiating a transfer.

    The sender is one of the caller's own accounts, named by account id or
    by the caller's email plus account type. The recipient is the first of
    ``recipient_account_id``, ``recipient_email``, ``recipient_name`` that
    resolves internally; otherwise ``external``, ``btc_address`` or the raw
    ``recipient_email`` routes the money out as a pending transfer.
    """
    sender_account_id: Optional[str] = Field(None, max_length=50)
    sender_email: Optional[str] = Field(None, max_length=255)
    sender_account_type: AccountType = AccountType.CHECKING

    recipient_account_id: Optional[str] = Field(None, max_length=50)
    recipient_email: Optional[str] = Field(None, max_length=255)
    recipient_name: Optional[str] = Field(None, max_length=100)
    recipient_account_type: AccountType = AccountType.CHECKING
    external: Optional[ExternalBankDetails] = None
    btc_address: Optional[str] = Field(None, min_length=14, max_length=90)

    # Strings that are not finite decimals ("NaN", "abc") pass through as str;
    # the transfer service rejects them with InvalidAmount
    amount: Union[Decimal, str] = Field(..., description="Transfer amount (must be positive)")
    method: Optional[str] = Field(None, max_length=30, description="Defaults from the recipient routing")
    description: Optional[str] = Field(None, max_length=500, description="Optional transfer description")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "sender_account_id": "BS0000000001",
                "recipient_email": "bob@example.com",
                "amount": "40.00",
                "description": "Dinner"
            }
        }
    )


class ClaimRequest(BaseModel):
    """Redeem a pending external transfer into one of the caller's accounts."""
    claim_token: str = Field(..., min_length=1, max_length=100)
    account_id: Optional[str] = Field(None, max_length=50)


class TransferResponse(BaseModel):
    """Schema for transfer response. The claim token is never echoed here."""
    id: int
    reference: str
    sender_account_id: str
    recipient_account_id: Optional[str]
    recipient_external_ref: Optional[str]
    amount: Decimal
    method: str
    description: Optional[str]
    status: TransferStatus
    claim_expires_at: Optional[datetime]
    claimed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransferCreatedResponse(TransferResponse):
    """Returned to the sender once; carries the claim token for external transfers."""
    claim_token: Optional[str] = None
