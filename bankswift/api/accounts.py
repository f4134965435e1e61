"""
Account API endpoints.
Read-only: accounts are opened at registration and only change through transfers.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from bankswift.api.deps import get_current_user
from bankswift.core.errors import AccountNotFoundError
from bankswift.database import get_db
from bankswift.models.account import Account
from bankswift.models.user import User
from bankswift.schemas.account import AccountResponse, AccountBalance
from bankswift.services import ledger

router = APIRouter(prefix="/accounts", tags=["Accounts"])


def get_owned_account(db: Session, account_id: str, user: User) -> Account:
    """Another user's account answers 404, same as a missing one."""
    account = ledger.get_account(db, account_id)
    if account.owner_id != user.id:
        raise AccountNotFoundError(account_id)
    return account


@router.get("", response_model=List[AccountResponse])
def list_accounts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    List the caller's accounts.
    """
    return ledger.accounts_for_owner(db, current_user.id)


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Get account details by account ID.
    """
    return get_owned_account(db, account_id, current_user)


@router.get("/{account_id}/balance", response_model=AccountBalance)
def get_account_balance(
    account_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Get account balance.
    """
    account = get_owned_account(db, account_id, current_user)
    return AccountBalance(
        account_id=account.account_id,
        balance=account.balance,
        available=account.available
    )
