"""
Authenticator entries stored by the user.

Only a reference to the secret is persisted; the raw Base32 secret lives in
the external secret vault and is fetched just-in-time to render codes.
"""

import uuid
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Uuid, func
from sqlalchemy.orm import relationship
from app.core.database import Base


class TOTPEntry(Base):
    __tablename__ = "totp_entries"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    service_name = Column(String(255), nullable=False)
    account_label = Column(String(255), nullable=False)
    secret_ref = Column(String(255), nullable=False)

    digits = Column(Integer, nullable=False, default=6)
    period = Column(Integer, nullable=False, default=30)
    algorithm = Column(String(16), nullable=False, default="SHA1")

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="totp_entries")

    def __repr__(self):
        return f"<TOTPEntry(id={self.id}, service_name='{self.service_name}', account_label='{self.account_label}')>"
