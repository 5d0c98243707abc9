"""
Authenticator (TOTP) entry endpoints.

Every route requires the vault to be unlocked when the account has a PIN.
"""

import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core import totp
from app.core.database import get_db
from app.core.deps import get_totp_service, require_vault_unlocked
from app.core.errors import AuthError
from app.core.totp import TotpService
from app.crud import totp_entry as totp_crud
from app.models.user import User
from app.schemas.totp import TOTPCodeResponse, TOTPEntryCreate, TOTPEntryResponse, TOTPListResponse

router = APIRouter(prefix="/totp", tags=["Authenticator"])
logger = logging.getLogger(__name__)


def _get_entry_or_404(db: Session, user: User, entry_id: uuid.UUID):
    entry = totp_crud.get_for_user(db, user.id, entry_id)
    if not entry:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Authenticator entry not found"
        )
    return entry


def _with_code(entry, service: TotpService) -> TOTPCodeResponse:
    response = TOTPCodeResponse.model_validate(entry)
    try:
        current = service.current_totp(entry)
    except AuthError as e:
        # One unreadable secret must not hide the other entries
        logger.warning(f"Could not render code for TOTP entry {entry.id}: {e.error_code}")
        response.error = e.error_code
        return response
    response.code = current.code
    response.remaining_seconds = current.remaining_seconds
    return response


@router.get("", response_model=TOTPListResponse)
def list_entries(
    current_user: User = Depends(require_vault_unlocked),
    db: Session = Depends(get_db),
    service: TotpService = Depends(get_totp_service)
):
    """List entries with the code each one shows right now."""
    entries = totp_crud.list_for_user(db, current_user.id)
    return TOTPListResponse(entries=[_with_code(e, service) for e in entries])


@router.get("/{entry_id}/code", response_model=TOTPCodeResponse)
def get_entry_code(
    entry_id: uuid.UUID,
    current_user: User = Depends(require_vault_unlocked),
    db: Session = Depends(get_db),
    service: TotpService = Depends(get_totp_service)
):
    """
    Current code for one entry.

    Returns 403 if the secret vault refuses to reveal the secret and 503 if
    it cannot be reached.
    """
    entry = _get_entry_or_404(db, current_user, entry_id)
    current = service.current_totp(entry)
    response = TOTPCodeResponse.model_validate(entry)
    response.code = current.code
    response.remaining_seconds = current.remaining_seconds
    return response


@router.post("", status_code=201, response_model=TOTPEntryResponse)
def create_entry(
    request: TOTPEntryCreate,
    current_user: User = Depends(require_vault_unlocked),
    db: Session = Depends(get_db),
    service: TotpService = Depends(get_totp_service)
):
    """
    Add an entry from an otpauth:// URI or a Base32 secret.

    The raw secret goes to the secret vault; only its reference is stored.
    """
    try:
        if request.otpauth_uri:
            parsed = totp.parse_otpauth_uri(request.otpauth_uri)
            secret = parsed.secret
            service_name = request.service_name or parsed.service_name
            account_label = request.account_label or parsed.account_label
            digits, period, algorithm = parsed.digits, parsed.period, parsed.algorithm
        else:
            secret = totp.validate_secret(request.secret)
            service_name = request.service_name
            account_label = request.account_label or ""
            digits, period = totp.validate_digits_and_period(request.digits, request.period)
            algorithm = totp.validate_algorithm(request.algorithm)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not service_name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="service_name is required")

    secret_ref = service.store_secret(secret)
    entry = totp_crud.create(
        db,
        user_id=current_user.id,
        service_name=service_name,
        account_label=account_label,
        secret_ref=secret_ref,
        digits=digits,
        period=period,
        algorithm=algorithm
    )
    logger.info(f"TOTP entry {entry.id} added for user {current_user.id} ({service_name})")
    return entry


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_entry(
    entry_id: uuid.UUID,
    current_user: User = Depends(require_vault_unlocked),
    db: Session = Depends(get_db),
    service: TotpService = Depends(get_totp_service)
):
    entry = _get_entry_or_404(db, current_user, entry_id)
    service.discard_secret(entry.secret_ref)
    totp_crud.delete(db, entry)
    logger.info(f"TOTP entry {entry_id} deleted for user {current_user.id}")
