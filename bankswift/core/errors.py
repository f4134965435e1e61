"""
Application errors.

Every error carries a numeric code, a message and the HTTP status the API
layer answers with. One exception handler in main.py renders them.

Code ranges:
  1xxx: Auth/User
  2xxx: Account
  3xxx: Transfer
  4xxx: Idempotency
  9xxx: System
"""

from decimal import Decimal


class AppError(Exception):
    """Base application error."""

    def __init__(self, code: int, message: str, http_status: int = 500) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


class ValidationError(AppError):
    """Bad input the client must fix; never retried automatically."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(code, message, 400)


class NotFoundError(AppError):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(code, message, 404)


class ConflictError(AppError):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(code, message, 409)


# --- 1xxx: Auth/User ---

class EmailExistsError(ConflictError):
    def __init__(self, email: str) -> None:
        super().__init__(1001, f"Email {email} is already registered")


class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1002, "Invalid email or password", 401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Not allowed") -> None:
        super().__init__(1003, message, 403)


# --- 2xxx: Account ---

class AccountNotFoundError(NotFoundError):
    def __init__(self, account_id: str) -> None:
        super().__init__(2001, f"Account {account_id} not found")


class InsufficientFundsError(AppError):
    def __init__(self, available: Decimal, required: Decimal) -> None:
        self.available = available
        self.required = required
        super().__init__(
            2002,
            f"Insufficient funds. Available: {available}, Required: {required}",
            400,
        )


# --- 3xxx: Transfer ---

class InvalidAmountError(ValidationError):
    def __init__(self, amount) -> None:
        super().__init__(3001, f"Invalid amount: {amount}. Must be a positive number with at most 2 decimals")


class SenderNotFoundError(NotFoundError):
    def __init__(self, ref: str) -> None:
        super().__init__(3002, f"Sender account {ref} not found")


class RecipientNotFoundError(NotFoundError):
    def __init__(self, ref: str) -> None:
        super().__init__(3003, f"Recipient account {ref} not found")


class RecipientUnresolvedError(ValidationError):
    def __init__(self, message: str = "Recipient could not be resolved") -> None:
        super().__init__(3004, message)


class SelfTransferError(ValidationError):
    def __init__(self) -> None:
        super().__init__(3005, "Cannot transfer to the same account")


class TransferNotFoundError(NotFoundError):
    def __init__(self, ref: str) -> None:
        super().__init__(3006, f"Transfer {ref} not found")


class ClaimError(ValidationError):
    def __init__(self, message: str) -> None:
        super().__init__(3007, message)


# --- 4xxx: Idempotency ---

class IdempotencyConflictError(ConflictError):
    def __init__(self, key: str) -> None:
        super().__init__(4001, f"Idempotency-Key {key} was already used with a different request")


# --- 9xxx: System ---

class ConcurrencyBusyError(AppError):
    """Lock wait timed out or the store reported contention; safe to retry."""

    def __init__(self) -> None:
        super().__init__(9001, "Account is busy, retry shortly", 503)


class PersistenceError(AppError):
    def __init__(self, detail: str = "Unexpected storage failure") -> None:
        super().__init__(9002, detail, 500)
