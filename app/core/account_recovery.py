"""
Account recovery by emailed code.

Two flows share the verification code machinery used by sign-in:

- Password reset: for a signed-out user. The request step answers the same
  whether or not the email has an account; completing it replaces the
  password and ends every session of the account.
- Vault PIN reset: for a signed-in user who forgot the PIN. The code goes to
  the account's own email; completing it sets a new PIN without the old one
  and lifts any lockout.
"""

import logging
from typing import Optional
from sqlalchemy.orm import Session

from app.core import vault_pin, verification
from app.core.errors import Expired, FlowStateError, InvalidCredential, RateLimited, Unavailable
from app.core.verification import VerificationResult
from app.models.user import User
from app.models.verification_code import VerificationPurpose
from app.services.credential_store import CredentialStore, credential_store

logger = logging.getLogger(__name__)


def _check_code(db: Session, email: str, purpose: VerificationPurpose, code: str) -> None:
    result = verification.verify(db, email, purpose, code)
    if result is VerificationResult.EXPIRED:
        raise Expired()
    if result is not VerificationResult.SUCCESS:
        raise InvalidCredential("Invalid verification code")


def start_password_reset(
    db: Session,
    email: str,
    dispatcher=None,
    credentials: Optional[CredentialStore] = None
) -> bool:
    """
    Email a password reset code if the email belongs to an account.

    Cooldown and delivery failures are logged, not raised, so the caller's
    response cannot tell registered emails from unknown ones.

    Returns:
        bool: True if a code was sent
    """
    credentials = credentials or credential_store
    user = credentials.lookup_account(db, email)
    if user is None:
        logger.info(f"Password reset requested for non-existent email: {email}")
        return False

    try:
        verification.resend(
            db,
            user.email,
            VerificationPurpose.PASSWORD_RESET,
            dispatcher=dispatcher,
            user_name=user.display_name
        )
    except RateLimited:
        logger.info(f"Password reset for {user.email} requested within the resend cooldown")
        return False
    except Unavailable:
        logger.error(f"Failed to send password reset code to {user.email}")
        return False

    logger.info(f"Password reset code sent to {user.email}")
    return True


def complete_password_reset(
    db: Session,
    email: str,
    code: str,
    new_password: str,
    credentials: Optional[CredentialStore] = None
) -> None:
    """
    Verify the reset code and replace the password.

    Raises:
        InvalidCredential: Wrong code, or no such account
        Expired: Code expired or burned
    """
    credentials = credentials or credential_store
    _check_code(db, email, VerificationPurpose.PASSWORD_RESET, code)

    user = credentials.lookup_account(db, email)
    if user is None:
        raise InvalidCredential("Invalid verification code")
    credentials.reset_password(db, user, new_password)


def start_pin_reset(db: Session, user: User, dispatcher=None) -> None:
    """
    Email a PIN reset code to the signed-in account.

    Raises:
        FlowStateError: No PIN is set
        RateLimited: Within the resend cooldown
        Unavailable: The code could not be delivered
    """
    if not vault_pin.is_enabled(user):
        raise FlowStateError("Vault PIN is not set")

    verification.resend(
        db,
        user.email,
        VerificationPurpose.PIN_RESET,
        dispatcher=dispatcher,
        user_name=user.display_name
    )
    logger.info(f"Vault PIN reset code sent for user {user.id}")


def complete_pin_reset(db: Session, user: User, code: str, new_pin: str) -> None:
    """
    Verify the PIN reset code and set the new PIN.

    Raises:
        ValueError: New PIN is not 4-6 digits (the code is not consumed)
        InvalidCredential: Wrong code
        Expired: Code expired or burned
    """
    if not vault_pin.is_valid_pin_format(new_pin):
        raise ValueError("PIN must be 4 to 6 digits")

    _check_code(db, user.email, VerificationPurpose.PIN_RESET, code)
    vault_pin.reset_pin(db, user, new_pin)
