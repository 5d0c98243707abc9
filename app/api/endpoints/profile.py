"""
Profile and trusted device endpoints.

- GET /profile, PATCH /profile: Cosmetic metadata (also the login hints)
- GET /profile/devices: Trusted devices, oldest first
- DELETE /profile/devices/{device_id}: Stop trusting a device
"""

import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core import device_trust, vault_pin
from app.core.database import get_db
from app.core.deps import get_current_user
from app.crud import account as account_crud
from app.models.user import User
from app.schemas.user import ProfileResponse, ProfileUpdateRequest, TrustedDevicesResponse

router = APIRouter(prefix="/profile", tags=["Profile"])
logger = logging.getLogger(__name__)


def _profile(user: User) -> ProfileResponse:
    metadata = user.meta
    return ProfileResponse(
        email=user.email,
        display_name=metadata.get("display_name"),
        avatar_url=metadata.get("avatar_url"),
        theme=metadata.get("theme"),
        notification_settings=metadata.get("notification_settings") or {},
        vault_pin_enabled=vault_pin.is_enabled(user)
    )


@router.get("", response_model=ProfileResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    return _profile(current_user)


@router.patch("", response_model=ProfileResponse)
def update_profile(
    request: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update only the fields present in the request body."""
    changes = request.model_dump(exclude_unset=True)
    changes = {k: v for k, v in changes.items() if k in account_crud.PROFILE_FIELDS}
    if changes:
        user = account_crud.get_by_id(db, current_user.id, for_update=True)
        account_crud.update_metadata(user, **changes)
        db.commit()
        db.refresh(user)
        logger.info(f"Profile updated for user {user.id}: {sorted(changes)}")
        return _profile(user)
    return _profile(current_user)


@router.get("/devices", response_model=TrustedDevicesResponse)
def list_trusted_devices(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return TrustedDevicesResponse(devices=device_trust.list_devices(db, current_user.id))


@router.delete("/devices/{device_id}", response_model=TrustedDevicesResponse)
def revoke_trusted_device(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The device will need an emailed code on its next sign-in."""
    devices = device_trust.revoke_device(db, current_user.id, device_id)
    logger.info(f"Trusted device revoked for user {current_user.id}")
    return TrustedDevicesResponse(devices=devices)
