"""
Approver-side push login endpoints.

Used by an already signed-in device of the same account:
- GET /push/requests: Pending login requests for this account
- POST /push/requests/{id}/approve
- POST /push/requests/{id}/deny
- POST /push/tokens: Register this device's push token
- DELETE /push/tokens: Unregister it
"""

import logging
import uuid
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.deps import get_current_user, get_push_channel
from app.core.push_login import PushApprovalChannel
from app.crud import account as account_crud
from app.models.user import User
from app.schemas.push import PendingPushRequestsResponse, PushLoginRequestResponse
from app.schemas.user import PushTokenRequest

router = APIRouter(prefix="/push", tags=["Push Login"])
logger = logging.getLogger(__name__)

PUSH_TOKENS_KEY = "push_tokens"


@router.get("/requests", response_model=PendingPushRequestsResponse)
def list_pending_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    channel: PushApprovalChannel = Depends(get_push_channel)
):
    records = channel.list_pending(db, current_user.email)
    return PendingPushRequestsResponse(
        requests=[PushLoginRequestResponse.model_validate(r) for r in records]
    )


@router.post("/requests/{request_id}/approve", response_model=PushLoginRequestResponse)
def approve_request(
    request_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    channel: PushApprovalChannel = Depends(get_push_channel)
):
    """
    Approve a pending login on another device.

    Returns 410 if the request already timed out and 409 if it was
    resolved some other way.
    """
    record = channel.approve(db, request_id, current_user.email)
    logger.info(f"Push login {request_id} approved by {current_user.email}")
    return record


@router.post("/requests/{request_id}/deny", response_model=PushLoginRequestResponse)
def deny_request(
    request_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    channel: PushApprovalChannel = Depends(get_push_channel)
):
    record = channel.deny(db, request_id, current_user.email)
    logger.info(f"Push login {request_id} denied by {current_user.email}")
    return record


@router.post("/tokens", status_code=status.HTTP_204_NO_CONTENT)
def register_push_token(
    request: PushTokenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = account_crud.get_by_id(db, current_user.id, for_update=True)
    tokens = list(user.meta.get(PUSH_TOKENS_KEY, []))
    if request.push_token not in tokens:
        tokens.append(request.push_token)
        account_crud.update_metadata(user, **{PUSH_TOKENS_KEY: tokens})
    db.commit()


@router.delete("/tokens", status_code=status.HTTP_204_NO_CONTENT)
def unregister_push_token(
    request: PushTokenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = account_crud.get_by_id(db, current_user.id, for_update=True)
    tokens = [t for t in user.meta.get(PUSH_TOKENS_KEY, []) if t != request.push_token]
    account_crud.update_metadata(user, **{PUSH_TOKENS_KEY: tokens})
    db.commit()
