"""
Transaction log: append-only debit/credit entries per account.

The table stores deltas, not a running balance. Historical balances are
rebuilt from the current balance by walking entries newest first.
"""

import uuid
from decimal import Decimal
from typing import Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from bankswift.core.errors import InvalidAmountError
from bankswift.core.utils import to_money
from bankswift.models.account import Account
from bankswift.models.transaction import Direction, Transaction
from bankswift.models.transfer import Transfer


def append(
    db: Session,
    account: Account,
    direction: Direction,
    amount: Decimal,
    description: Optional[str] = None,
    transfer: Optional[Transfer] = None,
) -> Transaction:
    """Add one entry to the current database transaction."""
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidAmountError(amount)

    entry = Transaction(
        transaction_id=str(uuid.uuid4()),
        account_id=account.account_id,
        direction=direction,
        amount=amount,
        description=description,
        transfer=transfer,
    )
    db.add(entry)
    return entry


def list_for_account(
    db: Session,
    account_id: str,
    limit: int = 50,
    order: str = "desc",
    skip: int = 0,
) -> List[Transaction]:
    if order not in ("asc", "desc"):
        raise ValueError(f"order must be 'asc' or 'desc', got {order!r}")

    if order == "desc":
        ordering = (Transaction.created_at.desc(), Transaction.id.desc())
    else:
        ordering = (Transaction.created_at.asc(), Transaction.id.asc())

    stmt = (
        select(Transaction)
        .where(Transaction.account_id == account_id)
        .order_by(*ordering)
        .offset(skip)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def with_running_balance(
    entries: Iterable[Transaction],
    current_balance: Decimal,
) -> Iterator[Tuple[Transaction, Decimal]]:
    """
    Pair each entry with the account balance right after it was applied.

    ``entries`` must be newest first and start at the most recent entry,
    so that ``current_balance`` is the balance after the first one.
    """
    balance = to_money(current_balance)
    for entry in entries:
        yield entry, balance
        if entry.direction == Direction.CREDIT:
            balance -= to_money(entry.amount)
        else:
            balance += to_money(entry.amount)
