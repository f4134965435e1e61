"""
Pydantic schemas for registration and login.
"""

from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import List, Optional
from bankswift.schemas.account import AccountResponse


class UserCreate(BaseModel):
    """Schema for registering a new user."""
    fullname: str = Field(..., min_length=1, max_length=100, description="Full name, also used as display name")
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: Optional[str] = Field(None, max_length=30)
    password: str = Field(..., min_length=8, max_length=72)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "fullname": "Ada Lovelace",
                "email": "ada@example.com",
                "phone": "+44 20 7946 0000",
                "password": "correct horse battery"
            }
        }
    )


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    """Schema for user response. Never includes the password hash."""
    id: int
    fullname: str
    email: str
    phone: Optional[str]
    created_at: datetime
    accounts: List[AccountResponse] = []

    model_config = ConfigDict(from_attributes=True)
