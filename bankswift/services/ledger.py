"""
Account ledger store.

Reads accounts and applies balance deltas. Mutations only happen on rows the
current database transaction has locked with ``lock_accounts``.
"""

import logging
import secrets
from decimal import Decimal
from typing import Dict, Iterable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from bankswift.core.errors import AccountNotFoundError, InsufficientFundsError
from bankswift.core.utils import to_money
from bankswift.models.account import Account, AccountType
from bankswift.models.user import User

logger = logging.getLogger(__name__)


def new_account_id() -> str:
    """Public account identifier: ``BS`` followed by 10 digits."""
    return "BS" + "".join(secrets.choice("0123456789") for _ in range(10))


def open_account(db: Session, owner: User, account_type: AccountType) -> Account:
    """Add a zero-balance account for ``owner``. The caller commits."""
    account_id = new_account_id()
    while find_account(db, account_id) is not None:
        account_id = new_account_id()

    account = Account(
        account_id=account_id,
        owner=owner,
        type=account_type,
        balance=Decimal("0.00"),
        available=Decimal("0.00"),
    )
    db.add(account)
    return account


def get_account(db: Session, account_id: str) -> Account:
    """
    Fetch an account by its public id.

    Raises:
        AccountNotFoundError: no such account.
    """
    account = find_account(db, account_id)
    if account is None:
        raise AccountNotFoundError(account_id)
    return account


def find_account(db: Session, account_id: str):
    return db.execute(
        select(Account).where(Account.account_id == account_id)
    ).scalar_one_or_none()


def default_account_for(db: Session, user: User, account_type: AccountType = AccountType.CHECKING):
    """The user's account of the given type, or None."""
    return db.execute(
        select(Account)
        .where(Account.owner_id == user.id, Account.type == account_type)
        .order_by(Account.id)
    ).scalars().first()


def accounts_for_owner(db: Session, owner_id: int):
    return db.execute(
        select(Account).where(Account.owner_id == owner_id).order_by(Account.id)
    ).scalars().all()


def lock_accounts(db: Session, accounts: Iterable[Account]) -> Dict[str, Account]:
    """
    Take row locks (SELECT ... FOR UPDATE) on the given accounts.

    Rows are locked in primary-key order so two transfers touching the same
    pair of accounts in opposite directions cannot deadlock. Returns the
    refreshed rows keyed by public account id.
    """
    # Pending changes must reach the database before populate_existing reloads rows
    db.flush()
    locked = {}
    for pk in sorted({account.id for account in accounts}):
        row = db.execute(
            select(Account)
            .where(Account.id == pk)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        locked[row.account_id] = row
    return locked


def adjust_balance(db: Session, account: Account, delta: Decimal) -> Account:
    """
    Apply ``delta`` to balance and available in one guarded UPDATE.

    Call only on a row locked by the current transaction. The WHERE clause
    re-checks the floor inside the statement, so a store without row locks
    (SQLite) still cannot drive the account negative.

    Raises:
        InsufficientFundsError: the result would leave available or balance negative.
    """
    delta = to_money(delta)
    result = db.execute(
        update(Account)
        .where(
            Account.id == account.id,
            func.round(Account.available + delta, 2) >= 0,
            func.round(Account.balance + delta, 2) >= 0,
        )
        .values(
            balance=func.round(Account.balance + delta, 2),
            available=func.round(Account.available + delta, 2),
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(account)
    if result.rowcount != 1:
        raise InsufficientFundsError(available=to_money(account.available), required=-delta)

    logger.debug("Adjusted %s by %s -> %s", account.account_id, delta, account.balance)
    return account
