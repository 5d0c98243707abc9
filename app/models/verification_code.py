"""
One-time verification codes sent out-of-band by email.

Each row is one issued code for an (email, purpose) pair. Only the newest
unused row for a pair is live: issuing a new code marks the previous one
used (superseded). Codes are stored as a peppered SHA-256 digest.
"""

import enum
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Enum, Index, Uuid
from app.core.database import Base
from app.core.clock import utcnow


class VerificationPurpose(str, enum.Enum):
    LOGIN_2FA = "login-2fa"
    REGISTRATION = "registration"
    PASSWORD_RESET = "password-reset"
    PIN_RESET = "pin-reset"


class VerificationCode(Base):
    """
    Email verification code.

    Features:
    - 6-digit numeric codes, stored hashed
    - Fixed expiry window (VERIFICATION_CODE_EXPIRATION_MINUTES)
    - Single-use enforcement with an atomic consume
    - Attempt tracking for brute force protection
    """
    __tablename__ = "verification_codes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    email = Column(String, nullable=False)
    purpose = Column(
        Enum(VerificationPurpose, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32),
        nullable=False,
    )

    code_hash = Column(String(64), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    attempts = Column(Integer, nullable=False, default=0)
    is_used = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index('ix_verification_codes_email_purpose', 'email', 'purpose'),
        Index('ix_verification_codes_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<VerificationCode(email={self.email}, purpose={self.purpose}, expires_at={self.expires_at})>"
