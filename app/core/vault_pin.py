"""
Vault PIN gate.

A secondary 4-6 digit PIN in front of the sensitive views (cards,
credentials, authenticator codes). The PIN is stored only as a bcrypt hash
in the account's profile metadata; candidates are hashed-and-compared, never
compared raw. PIN strings are compared as strings, so "012345" and "12345"
are different PINs.

Unlocking yields a vault token bound to the current session id. It is not
persisted and dies with the session: every new session must re-enter the PIN.
"""

import logging
import re
import uuid
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.config import settings
from app.core.errors import FlowStateError, InvalidCredential, RateLimited
from app.core.security import (
    VAULT_TOKEN_TYPE,
    create_vault_token,
    decode_token,
    hash_pin,
    verify_pin_hash,
)
from app.crud import account as account_crud
from app.models.user import User

logger = logging.getLogger(__name__)

PIN_PATTERN = re.compile(r"^\d{4,6}$")


def is_valid_pin_format(pin: str) -> bool:
    return bool(pin) and PIN_PATTERN.match(pin) is not None


def is_enabled(user: User) -> bool:
    metadata = user.meta
    return bool(metadata.get("pin_enabled")) and bool(metadata.get("pin_hash"))


def _locked_until(user: User) -> Optional[datetime]:
    value = user.meta.get("pin_locked_until")
    return as_utc(datetime.fromisoformat(value)) if value else None


def verify_pin(db: Session, user: User, candidate_pin: str, now: Optional[datetime] = None) -> bool:
    """
    Check a candidate PIN against the stored hash.

    Wrong candidates count toward MAX_PIN_ATTEMPTS; reaching it locks the
    gate for PIN_LOCKOUT_MINUTES. A correct PIN resets the counter.

    Returns:
        bool: True if the PIN matches

    Raises:
        FlowStateError: If no PIN is set
        RateLimited: While the gate is locked out
    """
    now = now or utcnow()
    user = account_crud.get_by_id(db, user.id, for_update=True)
    if not is_enabled(user):
        db.commit()
        raise FlowStateError("Vault PIN is not set")

    locked_until = _locked_until(user)
    if locked_until and now < locked_until:
        db.commit()
        retry_after = max(1, int((locked_until - now).total_seconds()))
        raise RateLimited("Too many incorrect PIN attempts. Try again later.", retry_after=retry_after)

    metadata = user.meta
    matches = is_valid_pin_format(candidate_pin) and verify_pin_hash(candidate_pin, metadata["pin_hash"])

    if matches:
        account_crud.update_metadata(user, pin_failed_attempts=None, pin_locked_until=None)
        db.commit()
        return True

    attempts = int(metadata.get("pin_failed_attempts") or 0) + 1
    if attempts >= settings.MAX_PIN_ATTEMPTS:
        locked = now + timedelta(minutes=settings.PIN_LOCKOUT_MINUTES)
        account_crud.update_metadata(user, pin_failed_attempts=None, pin_locked_until=locked.isoformat())
        logger.warning(f"Vault PIN locked for user {user.id} after {attempts} failed attempts")
    else:
        account_crud.update_metadata(user, pin_failed_attempts=attempts, pin_locked_until=None)
    db.commit()
    return False


def set_pin(db: Session, user: User, pin: str, current_pin: Optional[str] = None) -> None:
    """
    Set or change the vault PIN.

    Changing an existing PIN requires the current one.

    Raises:
        ValueError: If the new PIN is not 4-6 digits
        InvalidCredential: If the current PIN is wrong or missing
    """
    if not is_valid_pin_format(pin):
        raise ValueError("PIN must be 4 to 6 digits")

    if is_enabled(user):
        if current_pin is None or not verify_pin(db, user, current_pin):
            raise InvalidCredential("Incorrect PIN")

    user = account_crud.get_by_id(db, user.id, for_update=True)
    account_crud.update_metadata(
        user,
        pin_hash=hash_pin(pin),
        pin_enabled=True,
        pin_failed_attempts=None,
        pin_locked_until=None
    )
    db.commit()
    logger.info(f"Vault PIN set for user {user.id}")


def disable_pin(db: Session, user: User, current_pin: str) -> None:
    """
    Turn the gate off. Requires re-entering the current PIN so an unlocked
    but hijacked session cannot silently remove the protection.
    """
    if not verify_pin(db, user, current_pin):
        raise InvalidCredential("Incorrect PIN")

    user = account_crud.get_by_id(db, user.id, for_update=True)
    account_crud.update_metadata(user, pin_hash=None, pin_enabled=False)
    db.commit()
    logger.info(f"Vault PIN disabled for user {user.id}")


def reset_pin(db: Session, user: User, pin: str) -> None:
    """
    Replace a forgotten PIN without the current one.

    Only called once the account proved control of its email. Clears any
    lockout.
    """
    if not is_valid_pin_format(pin):
        raise ValueError("PIN must be 4 to 6 digits")

    user = account_crud.get_by_id(db, user.id, for_update=True)
    account_crud.update_metadata(
        user,
        pin_hash=hash_pin(pin),
        pin_enabled=True,
        pin_failed_attempts=None,
        pin_locked_until=None
    )
    db.commit()
    logger.info(f"Vault PIN reset by email for user {user.id}")


def unlock(db: Session, user: User, session_id: uuid.UUID, candidate_pin: str) -> str:
    """
    Verify the PIN and return a vault token for this session only.

    Raises:
        InvalidCredential: Wrong PIN
        RateLimited: Gate locked out
        FlowStateError: No PIN set
    """
    if not verify_pin(db, user, candidate_pin):
        raise InvalidCredential("Incorrect PIN")
    logger.info(f"Vault unlocked for user {user.id}")
    return create_vault_token(str(user.id), str(session_id))


def is_unlocked(vault_token: Optional[str], user: User, session_id: uuid.UUID) -> bool:
    """True if the vault token was issued to this user for this exact session."""
    if not vault_token:
        return False
    try:
        payload = decode_token(vault_token, expected_type=VAULT_TOKEN_TYPE)
    except JWTError:
        return False
    return payload.get("sub") == str(user.id) and payload.get("sid") == str(session_id)
