"""
Transfer orchestration.

Implements:
- Validation in a fixed order, before anything is written
- Atomicity: debit, credit, ledger entries, the transfer row, outbox rows
  and the idempotency record commit together or not at all
- Concurrency: row-level locks on the accounts involved, taken in a
  consistent order, with a bounded lock wait
- Idempotency: a replayed Idempotency-Key returns the stored response
- External transfers: pending until redeemed with a claim token, refunded
  to the sender when the token expires

Live-update broadcasts run after commit and never fail the request.
"""

import html
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional

from sqlalchemy import or_, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from bankswift.core.config import settings
from bankswift.core.errors import (
    AppError,
    ClaimError,
    ConcurrencyBusyError,
    ForbiddenError,
    InsufficientFundsError,
    InvalidAmountError,
    PersistenceError,
    RecipientNotFoundError,
    RecipientUnresolvedError,
    SelfTransferError,
    SenderNotFoundError,
    TransferNotFoundError,
)
from bankswift.core.utils import CENT, to_money, utcnow
from bankswift.models.account import Account, AccountType
from bankswift.models.transaction import Direction
from bankswift.models.transfer import Transfer, TransferStatus
from bankswift.models.user import User
from bankswift.schemas.transfer import TransferCreatedResponse, TransferRequest, TransferResponse
from bankswift.services import idempotency, ledger, outbox, transaction_log, users
from bankswift.services.events import TRANSFER_CREATED, TRANSFER_UPDATED, ConnectionManager

logger = logging.getLogger(__name__)

MAX_AMOUNT = Decimal("9999999999999.99")  # Numeric(15, 2)

# SQLSTATEs meaning "try again": lock_not_available, serialization_failure, deadlock_detected
_RETRYABLE_PGCODES = {"55P03", "40001", "40P01"}


@dataclass
class TransferOutcome:
    """What the API answers with: a fresh transfer or a replayed response."""
    status_code: int
    body: Any
    transfer: Optional[Transfer] = None
    replayed: bool = False


@dataclass
class RecipientResolution:
    account: Optional[Account] = None
    external_ref: Optional[str] = None
    email: Optional[str] = None
    method: str = "internal"
    error: Optional[AppError] = None

    @property
    def is_internal(self) -> bool:
        return self.account is not None


# ==================== VALIDATION ====================

def validate_amount(value) -> Decimal:
    """
    Positive, finite, at most 2 decimal places, fits Numeric(15, 2).

    Raises:
        InvalidAmountError
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(value) from None

    if not amount.is_finite() or amount <= 0 or amount > MAX_AMOUNT:
        raise InvalidAmountError(value)
    if amount != amount.quantize(CENT):
        raise InvalidAmountError(value)
    return amount.quantize(CENT)


def resolve_sender(db: Session, caller: User, request: TransferRequest) -> Account:
    if request.sender_account_id:
        account = ledger.find_account(db, request.sender_account_id)
        if account is None:
            raise SenderNotFoundError(request.sender_account_id)
        if account.owner_id != caller.id:
            raise ForbiddenError(f"Account {request.sender_account_id} does not belong to you")
        return account

    owner = caller
    if request.sender_email:
        owner = users.get_user_by_email(db, request.sender_email)
        if owner is None:
            raise SenderNotFoundError(request.sender_email)
        if owner.id != caller.id:
            raise ForbiddenError("You can only send from your own accounts")

    account = ledger.default_account_for(db, owner, request.sender_account_type)
    if account is None:
        raise SenderNotFoundError(f"{owner.email} ({request.sender_account_type.value})")
    return account


def resolve_recipient(db: Session, request: TransferRequest) -> RecipientResolution:
    """
    Internal match first: explicit account id, then registered email, then a
    unique full name. Without one, fall back to an external descriptor.

    Errors are returned rather than raised so the caller can report them in
    validation order (after the funds check).
    """
    if request.recipient_account_id:
        account = ledger.find_account(db, request.recipient_account_id)
        if account is None:
            return RecipientResolution(error=RecipientNotFoundError(request.recipient_account_id))
        return RecipientResolution(account=account)

    if request.recipient_email:
        user = users.get_user_by_email(db, request.recipient_email)
        if user is not None:
            account = ledger.default_account_for(db, user, request.recipient_account_type)
            if account is not None:
                return RecipientResolution(account=account)

    if request.recipient_name:
        matches = users.find_users_by_name(db, request.recipient_name)
        if len(matches) > 1:
            return RecipientResolution(error=RecipientUnresolvedError(
                f"Recipient name '{request.recipient_name}' matches {len(matches)} users; use an account id or email"
            ))
        if matches:
            account = ledger.default_account_for(db, matches[0], request.recipient_account_type)
            if account is not None:
                return RecipientResolution(account=account)

    email = users.normalize_email(request.recipient_email) if request.recipient_email else None
    if request.external is not None:
        ref = f"bank:{request.external.routing_number}:{request.external.account_number}"
        return RecipientResolution(external_ref=ref, email=email, method="bank")
    if request.btc_address:
        return RecipientResolution(external_ref=f"btc:{request.btc_address}", email=email, method="crypto")
    if email:
        return RecipientResolution(external_ref=f"email:{email}", email=email, method="email")

    return RecipientResolution(error=RecipientUnresolvedError(
        "No internal recipient matched and no external bank details, crypto address or email were given"
    ))


# ==================== HELPERS ====================

def _set_lock_timeout(db: Session) -> None:
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL lock_timeout = '{int(settings.LOCK_TIMEOUT_MS)}ms'"))


def _is_retryable(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in _RETRYABLE_PGCODES:
        return True
    return "database is locked" in str(orig).lower()


def _fail(db: Session, exc: SQLAlchemyError, action: str) -> AppError:
    """Roll back and translate a store error."""
    db.rollback()
    if isinstance(exc, OperationalError) and _is_retryable(exc):
        logger.warning("%s hit lock contention: %s", action, exc.orig)
        return ConcurrencyBusyError()
    logger.exception("%s failed", action)
    return PersistenceError(f"{action} failed")


def _settle_pending(db: Session, transfer: Transfer, **values) -> bool:
    """
    Move a pending transfer out of ``pending`` in one guarded UPDATE.

    Returns False when another transaction claimed or expired it first. The
    WHERE clause re-checks the state inside the statement, so a store
    without row locks (SQLite) still settles each transfer once.
    """
    result = db.execute(
        update(Transfer)
        .where(
            Transfer.id == transfer.id,
            Transfer.status == TransferStatus.PENDING,
            Transfer.claimed_at.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(transfer)
    return result.rowcount == 1


def _owner_ids(*accounts: Optional[Account]) -> List[int]:
    return [account.owner_id for account in accounts if account is not None]


def publish(connections: Optional[ConnectionManager], event_type: str, transfer: Transfer, user_ids: Iterable[int]) -> None:
    """Best-effort live update. Never raises."""
    if connections is None:
        return
    try:
        data = TransferResponse.model_validate(transfer).model_dump(mode="json")
        connections.broadcast(event_type, data, user_ids)
    except Exception:
        logger.exception("Broadcasting %s for %s failed", event_type, transfer.reference)


def _enqueue_created_notifications(db: Session, transfer: Transfer, sender: Account, recipient: Optional[Account]) -> None:
    amount = f"{transfer.amount:.2f}"
    target = recipient.account_id if recipient is not None else transfer.recipient_external_ref
    outbox.enqueue_email(
        db,
        sender.owner.email,
        "Transfer sent",
        "Transfer sent",
        f"<p>You sent <strong>{amount}</strong> to {html.escape(target)}.</p>"
        f"<p>Reference: {transfer.reference}</p>",
    )
    if recipient is not None:
        outbox.enqueue_email(
            db,
            recipient.owner.email,
            "You received money",
            "Money received",
            f"<p>{html.escape(sender.owner.fullname)} sent you <strong>{amount}</strong>.</p>"
            f"<p>Reference: {transfer.reference}</p>",
        )
    elif transfer.recipient_email:
        outbox.enqueue_email(
            db,
            transfer.recipient_email,
            "You have money waiting",
            "Claim your transfer",
            f"<p>{html.escape(sender.owner.fullname)} sent you <strong>{amount}</strong>.</p>"
            f"<p>Your claim code is <code>{transfer.claim_token}</code>. "
            f"It expires on {transfer.claim_expires_at:%Y-%m-%d %H:%M} UTC.</p>",
        )
    outbox.enqueue_webhook(
        db,
        settings.TRANSFER_WEBHOOK_URL,
        TRANSFER_CREATED,
        TransferResponse.model_validate(transfer).model_dump(mode="json"),
    )


# ==================== CREATE ====================

def _execute_transfer(db: Session, caller: User, request: TransferRequest, amount: Decimal) -> Transfer:
    """Runs inside the open transaction; the caller commits or rolls back."""
    sender = resolve_sender(db, caller, request)
    resolution = resolve_recipient(db, request)

    _set_lock_timeout(db)
    locked = ledger.lock_accounts(db, [sender] + ([resolution.account] if resolution.is_internal else []))
    sender = locked[sender.account_id]
    recipient = locked[resolution.account.account_id] if resolution.is_internal else None

    if to_money(sender.available) < amount:
        raise InsufficientFundsError(available=to_money(sender.available), required=amount)
    if resolution.error is not None:
        raise resolution.error
    if recipient is not None and recipient.account_id == sender.account_id:
        raise SelfTransferError()

    now = utcnow()
    transfer = Transfer(
        reference=str(uuid.uuid4()),
        sender_account_id=sender.account_id,
        amount=amount,
        method=request.method or resolution.method,
        description=request.description,
        created_at=now,
        updated_at=now,
    )

    ledger.adjust_balance(db, sender, -amount)
    if recipient is not None:
        ledger.adjust_balance(db, recipient, amount)
        transfer.recipient_account_id = recipient.account_id
        transfer.status = TransferStatus.COMPLETED
        target = recipient.account_id
    else:
        transfer.recipient_external_ref = resolution.external_ref
        transfer.recipient_email = resolution.email
        transfer.status = TransferStatus.PENDING
        transfer.claim_token = secrets.token_urlsafe(32)
        transfer.claim_expires_at = now + timedelta(days=settings.CLAIM_TOKEN_TTL_DAYS)
        target = resolution.external_ref
    db.add(transfer)

    transaction_log.append(
        db, sender, Direction.DEBIT, amount,
        request.description or f"Transfer to {target}", transfer,
    )
    if recipient is not None:
        transaction_log.append(
            db, recipient, Direction.CREDIT, amount,
            request.description or f"Transfer from {sender.account_id}", transfer,
        )

    db.flush()
    _enqueue_created_notifications(db, transfer, sender, recipient)
    return transfer


def create_transfer(
    db: Session,
    caller: User,
    request: TransferRequest,
    idempotency_key: Optional[str] = None,
    connections: Optional[ConnectionManager] = None,
) -> TransferOutcome:
    """
    Validate and execute a transfer.

    Raises:
        InvalidAmountError, SenderNotFoundError, ForbiddenError,
        InsufficientFundsError, RecipientNotFoundError,
        RecipientUnresolvedError, SelfTransferError,
        IdempotencyConflictError, ConcurrencyBusyError, PersistenceError
    """
    amount = validate_amount(request.amount)

    req_hash = None
    if idempotency_key:
        payload = request.model_dump(mode="json")
        payload["amount"] = str(amount)
        payload["caller"] = caller.id
        req_hash = idempotency.request_hash(payload)
        decision = idempotency.check_and_reserve(db, idempotency_key, req_hash)
        if decision.replay:
            db.rollback()
            return TransferOutcome(status_code=decision.status_code, body=decision.body, replayed=True)

    try:
        transfer = _execute_transfer(db, caller, request, amount)
        body = TransferCreatedResponse.model_validate(transfer).model_dump(mode="json")
        if idempotency_key:
            idempotency.complete(db, idempotency_key, req_hash, 201, body)
        db.commit()
    except AppError:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        if idempotency_key:
            # A concurrent request with the same key committed first
            decision = idempotency.check_and_reserve(db, idempotency_key, req_hash)
            if decision.replay:
                db.rollback()
                return TransferOutcome(status_code=decision.status_code, body=decision.body, replayed=True)
        raise _fail(db, e, "Transfer")
    except SQLAlchemyError as e:
        raise _fail(db, e, "Transfer")

    logger.info(
        "Transfer %s: %s -> %s amount=%s status=%s",
        transfer.reference,
        transfer.sender_account_id,
        transfer.recipient_account_id or transfer.recipient_external_ref,
        transfer.amount,
        transfer.status.value,
    )
    publish(connections, TRANSFER_CREATED, transfer, _owner_ids(transfer.sender_account, transfer.recipient_account))
    return TransferOutcome(status_code=201, body=body, transfer=transfer)


# ==================== CLAIM / EXPIRE ====================

def claim_transfer(
    db: Session,
    caller: User,
    claim_token: str,
    account_id: Optional[str] = None,
    connections: Optional[ConnectionManager] = None,
) -> Transfer:
    """Credit a pending external transfer to one of the caller's accounts."""
    try:
        transfer = db.execute(
            select(Transfer).where(Transfer.claim_token == claim_token).with_for_update()
        ).scalar_one_or_none()
        if transfer is None:
            raise TransferNotFoundError("for this claim token")
        if transfer.status != TransferStatus.PENDING or transfer.claimed_at is not None:
            raise ClaimError(f"Transfer {transfer.reference} is {transfer.status.value} and cannot be claimed")
        now = utcnow()
        if transfer.claim_expires_at is not None and transfer.claim_expires_at <= now:
            raise ClaimError(f"Claim token for transfer {transfer.reference} has expired")

        if account_id:
            target = ledger.get_account(db, account_id)
            if target.owner_id != caller.id:
                raise ForbiddenError(f"Account {account_id} does not belong to you")
        else:
            target = ledger.default_account_for(db, caller, AccountType.CHECKING)
            if target is None:
                raise ClaimError("You have no checking account to receive the transfer")
        if target.account_id == transfer.sender_account_id:
            raise SelfTransferError()

        _set_lock_timeout(db)
        if not _settle_pending(
            db, transfer,
            status=TransferStatus.COMPLETED,
            recipient_account_id=target.account_id,
            claimed_at=now,
            updated_at=now,
        ):
            raise ClaimError(f"Transfer {transfer.reference} was already settled")

        target = ledger.lock_accounts(db, [target])[target.account_id]
        ledger.adjust_balance(db, target, transfer.amount)
        transaction_log.append(
            db, target, Direction.CREDIT, transfer.amount,
            transfer.description or f"Claimed transfer from {transfer.sender_account_id}", transfer,
        )
        db.flush()
        outbox.enqueue_webhook(
            db, settings.TRANSFER_WEBHOOK_URL, TRANSFER_UPDATED,
            TransferResponse.model_validate(transfer).model_dump(mode="json"),
        )
        db.commit()
    except AppError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        raise _fail(db, e, "Claim")

    logger.info("Transfer %s claimed into %s", transfer.reference, transfer.recipient_account_id)
    publish(connections, TRANSFER_UPDATED, transfer, _owner_ids(transfer.sender_account, transfer.recipient_account))
    return transfer


def expire_pending_transfers(
    db: Session,
    now: Optional[datetime] = None,
    connections: Optional[ConnectionManager] = None,
) -> int:
    """Fail unclaimed external transfers past their expiry and refund the sender."""
    now = now or utcnow()
    try:
        due = db.execute(
            select(Transfer)
            .where(Transfer.status == TransferStatus.PENDING, Transfer.claim_expires_at <= now)
            .order_by(Transfer.id)
            .with_for_update(skip_locked=True)
        ).scalars().all()
        if not due:
            db.rollback()
            return 0

        _set_lock_timeout(db)
        refunded = []
        for transfer in due:
            if not _settle_pending(db, transfer, status=TransferStatus.FAILED, updated_at=now):
                logger.info("Transfer %s was settled before its expiry sweep", transfer.reference)
                continue
            refunded.append(transfer)
            sender = ledger.lock_accounts(db, [transfer.sender_account])[transfer.sender_account_id]
            ledger.adjust_balance(db, sender, transfer.amount)
            transaction_log.append(
                db, sender, Direction.CREDIT, transfer.amount,
                f"Refund: unclaimed transfer {transfer.reference}", transfer,
            )
            outbox.enqueue_email(
                db,
                sender.owner.email,
                "Transfer returned",
                "Transfer returned",
                f"<p>Your transfer of <strong>{transfer.amount:.2f}</strong> to "
                f"{html.escape(transfer.recipient_external_ref or '')} was not claimed in time and has been refunded.</p>",
            )
        db.commit()
    except SQLAlchemyError as e:
        raise _fail(db, e, "Claim expiry")

    for transfer in refunded:
        logger.info("Transfer %s expired unclaimed; refunded %s", transfer.reference, transfer.sender_account_id)
        publish(connections, TRANSFER_UPDATED, transfer, _owner_ids(transfer.sender_account))
    return len(refunded)


# ==================== QUERIES ====================

def list_transfers(
    db: Session,
    caller: User,
    account_id: Optional[str] = None,
    reference: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Transfer]:
    """Transfers where the caller owns the sending or receiving account, newest first."""
    if account_id:
        account = ledger.get_account(db, account_id)
        if account.owner_id != caller.id:
            raise ForbiddenError(f"Account {account_id} does not belong to you")
        account_ids = [account.account_id]
    else:
        account_ids = [a.account_id for a in ledger.accounts_for_owner(db, caller.id)]

    stmt = select(Transfer).where(
        or_(
            Transfer.sender_account_id.in_(account_ids),
            Transfer.recipient_account_id.in_(account_ids),
        )
    )
    if reference:
        stmt = stmt.where(Transfer.reference == reference)
    stmt = stmt.order_by(Transfer.created_at.desc(), Transfer.id.desc()).offset(skip).limit(limit)
    return list(db.execute(stmt).scalars().all())


def get_transfer(db: Session, caller: User, reference: str) -> Transfer:
    found = list_transfers(db, caller, reference=reference, limit=1)
    if not found:
        raise TransferNotFoundError(reference)
    return found[0]
