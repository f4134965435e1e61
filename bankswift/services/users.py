"""
Registration and login.
"""

import html
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bankswift.core.errors import EmailExistsError, InvalidCredentialsError
from bankswift.core.security import hash_password, verify_password
from bankswift.models.account import AccountType
from bankswift.models.user import User
from bankswift.services import ledger, outbox

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user_by_email(db: Session, email: str):
    return db.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalar_one_or_none()


def find_users_by_name(db: Session, name: str):
    """Exact, case-insensitive full name match. May return several users."""
    return db.execute(
        select(User).where(func.lower(User.fullname) == name.strip().lower()).order_by(User.id)
    ).scalars().all()


def register_user(db: Session, fullname: str, email: str, phone: str, password: str) -> User:
    """
    Create a user with a zero-balance checking and savings account.

    Raises:
        EmailExistsError: the email is already registered.
    """
    email = normalize_email(email)
    if get_user_by_email(db, email) is not None:
        raise EmailExistsError(email)

    user = User(
        fullname=fullname.strip(),
        email=email,
        phone=phone,
        password_hash=hash_password(password),
    )
    db.add(user)
    ledger.open_account(db, user, AccountType.CHECKING)
    ledger.open_account(db, user, AccountType.SAVINGS)
    outbox.enqueue_email(
        db,
        email,
        "Welcome to Bank Swift",
        "Welcome aboard",
        f"<p>Hi {html.escape(user.fullname)}, your checking and savings accounts are ready.</p>",
    )

    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration of the same email
        db.rollback()
        raise EmailExistsError(email) from None

    db.refresh(user)
    logger.info("Registered user %s (%s)", user.id, email)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    user = get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email)
        raise InvalidCredentialsError()
    return user
