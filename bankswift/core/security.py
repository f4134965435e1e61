"""
Password hashing and JWT access tokens.

Passwords use the ``bcrypt`` library directly. Tokens are HS256 JWTs signed
with SECRET_KEY; there is no refresh token or revocation list.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from bankswift.core.config import settings
from bankswift.core.errors import InvalidCredentialsError


def hash_password(plain: str) -> str:
    """Hash a plain-text password with bcrypt. Returns a utf-8 hash string."""
    hashed_bytes: bytes = bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS))
    return hashed_bytes.decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plain-text password against a bcrypt hash."""
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {
        "sub": str(user_id),
        "type": "access",
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> int:
    """
    Validate a token and return the user id it was issued for.

    Raises:
        InvalidCredentialsError: token is malformed, expired or not an access token.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise InvalidCredentialsError() from None

    if payload.get("type") != "access" or not payload.get("sub"):
        raise InvalidCredentialsError()
    try:
        return int(payload["sub"])
    except ValueError:
        raise InvalidCredentialsError() from None
