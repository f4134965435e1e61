"""
Database models package.
"""

from bankswift.models.user import User
from bankswift.models.account import Account, AccountType
from bankswift.models.transaction import Transaction, Direction
from bankswift.models.transfer import Transfer, TransferStatus
from bankswift.models.idempotency import IdempotencyRecord
from bankswift.models.outbox import OutboxMessage, OutboxKind, OutboxStatus

__all__ = [
    "User",
    "Account",
    "AccountType",
    "Transaction",
    "Direction",
    "Transfer",
    "TransferStatus",
    "IdempotencyRecord",
    "OutboxMessage",
    "OutboxKind",
    "OutboxStatus",
]
