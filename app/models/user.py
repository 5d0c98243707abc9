"""
User model: the Account of a LifeVault user.

Passwords are owned by the credential store and kept only as a bcrypt hash.
Everything else about the account lives in `profile_metadata`, a key-value
document with cosmetic fields (display_name, avatar_url, theme,
notification_settings) and the security-relevant lists and flags:
trusted_devices, push_tokens, pin_hash, pin_enabled, pin_failed_attempts,
pin_locked_until.
"""

import uuid
from sqlalchemy import Column, String, Boolean, DateTime, JSON, Uuid, func
from sqlalchemy.orm import relationship
from app.core.database import Base


class User(Base):
    """
    User account.

    Created at registration and never deleted locally. `profile_metadata`
    must be replaced (not mutated in place) so SQLAlchemy tracks the change.
    """
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)

    # Authentication credentials (email is stored lower-cased)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)

    # Account status
    is_active = Column(Boolean, default=True, nullable=False)

    # Profile store
    profile_metadata = Column(JSON, nullable=False, default=dict)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    totp_entries = relationship("TOTPEntry", back_populates="user", cascade="all, delete-orphan")

    @property
    def meta(self) -> dict:
        return dict(self.profile_metadata or {})

    @property
    def display_name(self):
        return self.meta.get("display_name")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"
