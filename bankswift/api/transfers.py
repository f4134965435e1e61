"""
Transfer API endpoints.
Handles money transfers, claims of pending external transfers and queries.
"""

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional

from bankswift.api.deps import get_connections, get_current_user
from bankswift.database import get_db
from bankswift.models.user import User
from bankswift.schemas.transfer import ClaimRequest, TransferCreatedResponse, TransferRequest, TransferResponse
from bankswift.services import transfers
from bankswift.services.events import ConnectionManager

router = APIRouter(prefix="/transfers", tags=["Transfers"])


@router.post("", response_model=TransferCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_transfer(
    transfer_data: TransferRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=255),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    connections: ConnectionManager = Depends(get_connections)
):
    """
    Send money from one of the caller's accounts.

    - **sender_account_id** / **sender_email**: Source account (must be the caller's)
    - **recipient_account_id** / **recipient_email** / **recipient_name**: Internal recipient
    - **external** / **btc_address** / **recipient_email**: External recipient, transfer stays pending
    - **amount**: Transfer amount (must be positive)
    - **Idempotency-Key** header: retries with the same key and body replay the first response
    """
    outcome = transfers.create_transfer(
        db,
        current_user,
        transfer_data,
        idempotency_key=idempotency_key,
        connections=connections,
    )
    headers = {"Idempotent-Replayed": "true"} if outcome.replayed else None
    return JSONResponse(status_code=outcome.status_code, content=outcome.body, headers=headers)


@router.post("/claim", response_model=TransferResponse)
def claim_transfer(
    claim: ClaimRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    connections: ConnectionManager = Depends(get_connections)
):
    """
    Redeem a claim token for a pending external transfer.

    - **claim_token**: Token from the notification email
    - **account_id**: Account to credit (default: the caller's checking account)
    """
    return transfers.claim_transfer(
        db,
        current_user,
        claim.claim_token,
        account_id=claim.account_id,
        connections=connections,
    )


@router.get("", response_model=List[TransferResponse])
def list_transfers(
    account_id: Optional[str] = None,
    reference: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    List transfers sent or received by the caller's accounts, newest first.

    - **account_id**: Only this account (must be the caller's)
    - **reference**: Only the transfer with this reference
    - **skip**: Number of records to skip (default: 0)
    - **limit**: Maximum number of records to return (default: 100)
    """
    return transfers.list_transfers(
        db, current_user, account_id=account_id, reference=reference, skip=skip, limit=limit
    )


@router.get("/{reference}", response_model=TransferResponse)
def get_transfer(
    reference: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Get transfer details by reference.
    """
    return transfers.get_transfer(db, current_user, reference)
