"""
Pydantic schemas package.
"""

from bankswift.schemas.account import AccountResponse, AccountBalance
from bankswift.schemas.user import UserCreate, LoginRequest, TokenResponse, UserResponse
from bankswift.schemas.transaction import TransactionResponse
from bankswift.schemas.transfer import (
    ExternalBankDetails,
    TransferRequest,
    ClaimRequest,
    TransferResponse,
    TransferCreatedResponse,
)

__all__ = [
    "AccountResponse",
    "AccountBalance",
    "UserCreate",
    "LoginRequest",
    "TokenResponse",
    "UserResponse",
    "TransactionResponse",
    "ExternalBankDetails",
    "TransferRequest",
    "ClaimRequest",
    "TransferResponse",
    "TransferCreatedResponse",
]
