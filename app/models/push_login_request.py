"""
Push login requests awaiting approval from another signed-in device.

The row is the authority on a request's status. Every transition out of
PENDING is a conditional update (WHERE status = 'pending'), so a request
resolves to exactly one terminal status and terminal rows never change,
except APPROVED -> COMPLETED when the approval is turned into a session
and APPROVED -> CANCELLED when the requester abandons an unredeemed approval.
"""

import enum
import uuid
from sqlalchemy import Column, String, DateTime, Enum, Index, Uuid
from app.core.database import Base
from app.core.clock import utcnow


class PushLoginStatus(str, enum.Enum):
    """
    Push request lifecycle.

    - PENDING: waiting for the approver
    - APPROVED / DENIED: resolved by the approver
    - EXPIRED: timeout elapsed, or approval arrived too late
    - CANCELLED: the requester abandoned the flow
    - SUPERSEDED: a newer request for the same email replaced it
    - COMPLETED: an approval that has already produced a session
    """
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    SUPERSEDED = "superseded"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self is not PushLoginStatus.PENDING


class PushLoginRequest(Base):
    __tablename__ = "push_login_requests"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    email = Column(String, nullable=False)
    status = Column(
        Enum(PushLoginStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        nullable=False,
        default=PushLoginStatus.PENDING,
    )
    device_id = Column(String(128), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_push_login_requests_email_status', 'email', 'status'),
    )

    def __repr__(self):
        return f"<PushLoginRequest(id={self.id}, email={self.email}, status={self.status})>"
