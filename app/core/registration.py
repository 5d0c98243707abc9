"""
Account registration with an emailed `registration` code.

The login flow routes unknown emails here. The account is only created
after the code proves the user controls the email; the registering device
becomes the first trusted device.
"""

import logging
from typing import Optional
from sqlalchemy.orm import Session

from app.core import device_trust, verification
from app.core.errors import Expired, FlowStateError, InvalidCredential
from app.core.verification import VerificationResult
from app.models.verification_code import VerificationPurpose
from app.services.credential_store import CredentialStore, SessionTokens, credential_store

logger = logging.getLogger(__name__)


def start_registration(
    db: Session,
    email: str,
    dispatcher=None,
    credentials: Optional[CredentialStore] = None
) -> bool:
    """
    Send a registration code to an email that has no account yet.

    Returns:
        bool: True if a code was sent, False if the email is already registered
    """
    credentials = credentials or credential_store
    if credentials.lookup_account(db, email) is not None:
        logger.info(f"Registration requested for existing account {email}; no code sent")
        return False
    verification.resend(db, email, VerificationPurpose.REGISTRATION, dispatcher=dispatcher)
    return True


def complete_registration(
    db: Session,
    email: str,
    code: str,
    password: str,
    display_name: Optional[str] = None,
    device_id: Optional[str] = None,
    credentials: Optional[CredentialStore] = None
) -> SessionTokens:
    """
    Verify the registration code, create the account and sign it in.

    Raises:
        FlowStateError: Email already registered
        InvalidCredential: Wrong code
        Expired: Code expired or burned
    """
    credentials = credentials or credential_store
    if credentials.lookup_account(db, email) is not None:
        raise FlowStateError("An account with this email already exists")

    result = verification.verify(db, email, VerificationPurpose.REGISTRATION, code)
    if result is VerificationResult.EXPIRED:
        raise Expired()
    if result is not VerificationResult.SUCCESS:
        raise InvalidCredential("Invalid verification code")

    user = credentials.register(db, email, password, display_name=display_name)
    if device_id:
        device_trust.register_device(db, user.id, device_id)
    return credentials.start_session(db, user, device_id=device_id)
