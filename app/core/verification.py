"""
Core email verification logic.

Handles issuing, delivering, expiring and checking 6-digit one-time codes.
Per (email, purpose) the lifecycle is:

    NoCode -> Issued -> Consumed | Expired | Superseded

Only one code per (email, purpose) is live at a time, a code is consumed at
most once, and an issued code is only left live if it was delivered.
"""

import enum
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.codes import generate_numeric_code
from app.core.config import settings
from app.core.errors import RateLimited, Unavailable
from app.core.security import hash_verification_code, verification_code_matches
from app.crud.account import normalize_email
from app.models.verification_code import VerificationCode, VerificationPurpose

logger = logging.getLogger(__name__)


class VerificationResult(str, enum.Enum):
    SUCCESS = "success"
    INVALID = "invalid"
    EXPIRED = "expired"


def _live_codes(db: Session, email: str, purpose: VerificationPurpose):
    return db.query(VerificationCode).filter(
        VerificationCode.email == email,
        VerificationCode.purpose == purpose,
        VerificationCode.is_used == False  # noqa: E712
    )


def get_active_verification(
    db: Session,
    email: str,
    purpose: VerificationPurpose,
    now: Optional[datetime] = None
) -> Optional[VerificationCode]:
    """
    Get the live (unused, non-expired) code for an (email, purpose) pair.

    Returns:
        Optional[VerificationCode]: Active verification or None
    """
    now = now or utcnow()
    record = _live_codes(db, normalize_email(email), purpose).order_by(
        VerificationCode.created_at.desc()
    ).first()
    if record is None or now >= as_utc(record.expires_at):
        return None
    return record


def issue(
    db: Session,
    email: str,
    purpose: VerificationPurpose,
    dispatcher=None,
    user_name: Optional[str] = None,
    now: Optional[datetime] = None
) -> VerificationCode:
    """
    Issue a new code for (email, purpose) and deliver it by email.

    - Supersedes any previous live code for the same pair
    - Stores only the code's digest
    - Withdraws the code again if delivery fails

    Args:
        db: Database session
        email: Recipient email
        purpose: login-2fa or registration
        dispatcher: Out-of-band sender (defaults to the SES email service)
        user_name: Optional display name for the email greeting
        now: Issue time (server clock)

    Returns:
        VerificationCode: The issued record

    Raises:
        Unavailable: If the code could not be delivered
    """
    if dispatcher is None:
        from app.services.email_service import email_service
        dispatcher = email_service

    email = normalize_email(email)
    now = now or utcnow()

    superseded = _live_codes(db, email, purpose).update(
        {"is_used": True}, synchronize_session=False
    )

    code = generate_numeric_code(settings.VERIFICATION_CODE_LENGTH)
    record = VerificationCode(
        id=uuid.uuid4(),
        email=email,
        purpose=purpose,
        code_hash=hash_verification_code(code),
        created_at=now,
        expires_at=now + timedelta(minutes=settings.VERIFICATION_CODE_EXPIRATION_MINUTES),
        attempts=0,
        is_used=False
    )
    db.add(record)
    db.commit()
    db.refresh(record)

    if superseded:
        logger.info(f"Superseded {superseded} previous {purpose.value} code(s) for {email}")

    try:
        delivered = dispatcher.send_verification_email(
            to_email=email,
            verification_code=code,
            purpose=purpose,
            user_name=user_name
        )
    except Exception as e:
        logger.error(f"Verification email dispatch raised for {email}: {e}")
        _withdraw(db, record)
        raise Unavailable("We couldn't send the verification code. Please try again.") from e

    if not delivered:
        logger.error(f"Verification email dispatch failed for {email} ({purpose.value})")
        _withdraw(db, record)
        raise Unavailable("We couldn't send the verification code. Please try again.")

    logger.info(f"Issued {purpose.value} code for {email}")
    return record


def _withdraw(db: Session, record: VerificationCode) -> None:
    record.is_used = True
    db.commit()


def resend(
    db: Session,
    email: str,
    purpose: VerificationPurpose,
    dispatcher=None,
    user_name: Optional[str] = None,
    now: Optional[datetime] = None
) -> VerificationCode:
    """
    Re-issue a code, enforcing the resend cooldown on the server.

    Raises:
        RateLimited: If the current code was issued less than
            VERIFICATION_RESEND_COOLDOWN_SECONDS ago
        Unavailable: If the new code could not be delivered
    """
    now = now or utcnow()
    current = get_active_verification(db, email, purpose, now=now)
    if current is not None:
        ready_at = as_utc(current.created_at) + timedelta(seconds=settings.VERIFICATION_RESEND_COOLDOWN_SECONDS)
        if now < ready_at:
            retry_after = max(1, int((ready_at - now).total_seconds()))
            raise RateLimited(
                f"Please wait {retry_after} seconds before requesting another code.",
                retry_after=retry_after
            )
    return issue(db, email, purpose, dispatcher=dispatcher, user_name=user_name, now=now)


def verify(
    db: Session,
    email: str,
    purpose: VerificationPurpose,
    candidate_code: str,
    now: Optional[datetime] = None
) -> VerificationResult:
    """
    Check a candidate code against the live code for (email, purpose).

    Security checks:
    - Only the newest unused code can match (superseded codes never do)
    - Expired codes report EXPIRED so the caller can offer a resend
    - A wrong guess counts toward MAX_VERIFICATION_ATTEMPTS; once reached the
      code is burned and later checks report EXPIRED
    - Consumption is a conditional update, so a code succeeds at most once

    Returns:
        VerificationResult: SUCCESS, INVALID or EXPIRED
    """
    email = normalize_email(email)
    now = now or utcnow()

    record = _live_codes(db, email, purpose).order_by(VerificationCode.created_at.desc()).first()

    if record is None:
        return _result_without_live_code(db, email, purpose, now)

    if now >= as_utc(record.expires_at):
        _withdraw(db, record)
        logger.info(f"Expired {purpose.value} code submitted for {email}")
        return VerificationResult.EXPIRED

    if not verification_code_matches(candidate_code, record.code_hash):
        db.query(VerificationCode).filter(VerificationCode.id == record.id).update(
            {"attempts": VerificationCode.attempts + 1}, synchronize_session=False
        )
        db.commit()
        db.refresh(record)
        if record.attempts >= settings.MAX_VERIFICATION_ATTEMPTS:
            _withdraw(db, record)
            logger.warning(f"Too many wrong {purpose.value} codes for {email}; code burned")
        return VerificationResult.INVALID

    consumed = db.query(VerificationCode).filter(
        VerificationCode.id == record.id,
        VerificationCode.is_used == False  # noqa: E712
    ).update({"is_used": True}, synchronize_session=False)
    db.commit()

    if consumed != 1:
        # Lost a race with a concurrent verify of the same code
        return VerificationResult.INVALID

    logger.info(f"{purpose.value} code verified for {email}")
    return VerificationResult.SUCCESS


def _result_without_live_code(
    db: Session,
    email: str,
    purpose: VerificationPurpose,
    now: datetime
) -> VerificationResult:
    latest = db.query(VerificationCode).filter(
        VerificationCode.email == email,
        VerificationCode.purpose == purpose
    ).order_by(VerificationCode.created_at.desc()).first()

    if latest is None:
        return VerificationResult.INVALID
    if now >= as_utc(latest.expires_at) or latest.attempts >= settings.MAX_VERIFICATION_ATTEMPTS:
        return VerificationResult.EXPIRED
    # Consumed (or withdrawn after a failed dispatch): replays are simply invalid
    return VerificationResult.INVALID


def cleanup_expired_codes(db: Session, older_than_hours: int = 24) -> int:
    """
    Delete codes created more than `older_than_hours` ago.

    Run periodically via a Celery task to prevent database bloat.

    Returns:
        int: Number of codes deleted
    """
    cutoff_time = utcnow() - timedelta(hours=older_than_hours)

    deleted = db.query(VerificationCode).filter(
        VerificationCode.created_at < cutoff_time
    ).delete(synchronize_session=False)

    db.commit()
    return deleted
