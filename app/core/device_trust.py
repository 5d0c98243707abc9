"""
Device trust registry.

Each account keeps an ordered list of trusted device identifiers in its
profile metadata (`trusted_devices`), capped at TRUSTED_DEVICE_LIMIT with
oldest-first eviction. A trusted device skips the emailed login code.

Lookups fail toward "untrusted": if the account or its list cannot be read,
the caller is sent through verification instead of being let in.
"""

import logging
import uuid
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.crud import account as account_crud

logger = logging.getLogger(__name__)

TRUSTED_DEVICES_KEY = "trusted_devices"


def _read_devices(metadata: dict) -> List[str]:
    devices = metadata.get(TRUSTED_DEVICES_KEY) or []
    if not isinstance(devices, list):
        raise ValueError("trusted_devices is not a list")
    return [d for d in devices if isinstance(d, str)]


def is_trusted(db: Session, user_id: uuid.UUID, device_id: Optional[str]) -> bool:
    """
    Check whether a device is on the account's trusted list.

    Returns False when the device id is missing, the account does not exist,
    or the list cannot be read.
    """
    if not device_id:
        return False

    try:
        user = account_crud.get_by_id(db, user_id)
        if user is None:
            return False
        return device_id in _read_devices(user.meta)
    except (SQLAlchemyError, ValueError) as e:
        logger.warning(f"Trusted device lookup failed for user {user_id}, treating device as untrusted: {e}")
        return False


def register_device(db: Session, user_id: uuid.UUID, device_id: str) -> List[str]:
    """
    Add a device to the account's trusted list.

    Idempotent: a device already present is left where it is. Otherwise it
    is appended and the list is truncated to the most recent
    TRUSTED_DEVICE_LIMIT entries. The read-modify-write runs under a row lock
    so concurrent registrations are not lost.

    Args:
        db: Database session
        user_id: Account id
        device_id: Client device identifier

    Returns:
        List[str]: The updated trusted device list
    """
    if not device_id:
        raise ValueError("device_id is required")

    user = account_crud.get_by_id(db, user_id, for_update=True)
    if user is None:
        raise LookupError(f"Account {user_id} not found")

    try:
        devices = _read_devices(user.meta)
    except ValueError:
        logger.warning(f"Resetting unreadable trusted device list for user {user_id}")
        devices = []

    if device_id in devices:
        db.commit()  # release the row lock
        return devices

    devices.append(device_id)
    evicted = devices[:-settings.TRUSTED_DEVICE_LIMIT]
    devices = devices[-settings.TRUSTED_DEVICE_LIMIT:]

    account_crud.update_metadata(user, **{TRUSTED_DEVICES_KEY: devices})
    db.commit()

    if evicted:
        logger.info(f"Evicted {len(evicted)} oldest trusted device(s) for user {user_id}")
    logger.info(f"Device registered as trusted for user {user_id} ({len(devices)} trusted)")
    return devices


def list_devices(db: Session, user_id: uuid.UUID) -> List[str]:
    user = account_crud.get_by_id(db, user_id)
    if user is None:
        return []
    try:
        return _read_devices(user.meta)
    except ValueError:
        return []


def revoke_device(db: Session, user_id: uuid.UUID, device_id: str) -> List[str]:
    """Remove a device from the trusted list (no-op if absent)."""
    user = account_crud.get_by_id(db, user_id, for_update=True)
    if user is None:
        raise LookupError(f"Account {user_id} not found")
    devices = [d for d in list_devices(db, user_id) if d != device_id]
    account_crud.update_metadata(user, **{TRUSTED_DEVICES_KEY: devices})
    db.commit()
    return devices
