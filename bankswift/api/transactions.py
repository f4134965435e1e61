"""
Transaction history endpoint.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from bankswift.api.accounts import get_owned_account
from bankswift.api.deps import get_current_user
from bankswift.database import get_db
from bankswift.models.user import User
from bankswift.schemas.transaction import TransactionResponse
from bankswift.services import transaction_log

router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.get("", response_model=List[TransactionResponse])
def list_transactions(
    account_id: str,
    limit: int = Query(50, ge=1, le=1000),
    with_balance: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Ledger entries for one of the caller's accounts, most recent first.

    - **with_balance**: annotate each entry with the balance right after it
    """
    account = get_owned_account(db, account_id, current_user)
    entries = transaction_log.list_for_account(db, account.account_id, limit=limit)

    if not with_balance:
        return entries

    return [
        TransactionResponse.model_validate(entry).model_copy(update={"balance_after": balance})
        for entry, balance in transaction_log.with_running_balance(entries, account.balance)
    ]
