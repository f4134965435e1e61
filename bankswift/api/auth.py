"""
User API endpoints.
Handles registration, login and the current user's profile.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from bankswift.api.deps import get_current_user
from bankswift.core.security import create_access_token
from bankswift.database import get_db
from bankswift.models.user import User
from bankswift.schemas.user import LoginRequest, TokenResponse, UserCreate, UserResponse
from bankswift.services import users

router = APIRouter(tags=["Users"])


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(
    user_data: UserCreate,
    db: Session = Depends(get_db)
):
    """
    Register a new user.

    Opens a checking and a savings account, both with a zero balance.
    """
    return users.register_user(
        db,
        fullname=user_data.fullname,
        email=user_data.email,
        phone=user_data.phone,
        password=user_data.password,
    )


@router.post("/auth/login", response_model=TokenResponse)
def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db)
):
    """
    Exchange email and password for a bearer token.
    """
    user = users.authenticate(db, credentials.email, credentials.password)
    return TokenResponse(access_token=create_access_token(user.id))


@router.get("/users/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user
