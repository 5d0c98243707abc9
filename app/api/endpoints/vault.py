"""
Vault PIN endpoints.

- GET /vault/status: Whether a PIN is set and this session is unlocked
- PUT /vault/pin: Set or change the PIN (current PIN required to change)
- POST /vault/unlock: Exchange the PIN for a session-bound vault token
- POST /vault/pin/disable: Remove the PIN (current PIN required)
- POST /vault/pin/forgot: Email a PIN reset code to the account
- POST /vault/pin/reset: Set a new PIN with the emailed code

The vault token goes in the X-Vault-Token header of sensitive requests.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core import account_recovery, vault_pin
from app.core.config import settings
from app.core.database import get_db
from app.core.deps import get_current_session, get_email_dispatcher
from app.core.rate_limiter import check_send_code_limit, check_verify_code_limit
from app.models.user_session import UserSession
from app.schemas.vault import PinRequest, ResetPinRequest, SetPinRequest, VaultStatusResponse, VaultUnlockResponse
from app.schemas.verification import SendCodeResponse

router = APIRouter(prefix="/vault", tags=["Vault"])
logger = logging.getLogger(__name__)


@router.get("/status", response_model=VaultStatusResponse)
def vault_status(
    session: UserSession = Depends(get_current_session),
    x_vault_token: Optional[str] = Header(default=None)
):
    user = session.user
    enabled = vault_pin.is_enabled(user)
    return VaultStatusResponse(
        pin_enabled=enabled,
        unlocked=(not enabled) or vault_pin.is_unlocked(x_vault_token, user, session.id)
    )


@router.put("/pin", status_code=status.HTTP_204_NO_CONTENT)
def set_vault_pin(
    request: SetPinRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    """
    Set the vault PIN, or change it when one exists.

    Changing requires `current_pin`; a wrong current PIN counts as a failed
    attempt toward the lockout.
    """
    try:
        vault_pin.set_pin(db, session.user, request.pin, current_pin=request.current_pin)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/unlock", response_model=VaultUnlockResponse)
def unlock_vault(
    request: PinRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    """
    Verify the PIN and return a vault token for this session.

    The token stops working when the session ends; a new sign-in must
    unlock again.
    """
    token = vault_pin.unlock(db, session.user, session.id, request.pin)
    return VaultUnlockResponse(
        vault_token=token,
        expires_in_minutes=settings.VAULT_UNLOCK_EXPIRE_MINUTES
    )


@router.post("/pin/disable", status_code=status.HTTP_204_NO_CONTENT)
def disable_vault_pin(
    request: PinRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    vault_pin.disable_pin(db, session.user, request.pin)


@router.post("/pin/forgot", response_model=SendCodeResponse)
def forgot_vault_pin(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_email_dispatcher)
):
    """Email a PIN reset code to the signed-in account (resend cooldown applies)."""
    user = session.user
    check_send_code_limit(user.email)
    account_recovery.start_pin_reset(db, user, dispatcher=dispatcher)
    return SendCodeResponse(
        success=True,
        message="A PIN reset code has been sent to your email.",
        expires_in_minutes=settings.VERIFICATION_CODE_EXPIRATION_MINUTES,
        resend_after_seconds=settings.VERIFICATION_RESEND_COOLDOWN_SECONDS
    )


@router.post("/pin/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_vault_pin(
    request: ResetPinRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    """
    Set a new PIN with the emailed code. Clears any lockout.

    Existing vault tokens stay valid; they are bound to the session, not
    the PIN.
    """
    check_verify_code_limit(session.user.email)
    try:
        account_recovery.complete_pin_reset(db, session.user, request.code, request.pin)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
