"""
Shared API dependencies: the authenticated user and the live-update registry.
"""

from typing import Optional

from fastapi import Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from bankswift.core.errors import InvalidCredentialsError
from bankswift.core.security import decode_access_token
from bankswift.database import get_db
from bankswift.models.user import User
from bankswift.services.events import ConnectionManager

bearer_scheme = HTTPBearer(auto_error=False)


def _user_for_token(db: Session, raw: Optional[str]) -> User:
    if not raw:
        raise InvalidCredentialsError()

    user = db.get(User, decode_access_token(raw))
    if user is None:
        raise InvalidCredentialsError()
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the caller from ``Authorization: Bearer <jwt>``.

    Raises InvalidCredentialsError (401) when missing, invalid or for an
    unknown user.
    """
    return _user_for_token(db, credentials.credentials if credentials is not None else None)


def get_stream_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    token: Optional[str] = Query(None, description="Bearer token for EventSource clients that cannot set headers"),
    db: Session = Depends(get_db),
) -> User:
    """
    Like ``get_current_user`` but also accepts ``?token=``.

    Only for the event stream: browsers' EventSource cannot send headers.
    A query-string token ends up in proxy and access logs, so keep access
    tokens short-lived.
    """
    return _user_for_token(db, credentials.credentials if credentials is not None else token)


def get_connections(request: Request) -> ConnectionManager:
    return request.app.state.connections
