"""
Pydantic schemas for push login approval.
"""

from pydantic import BaseModel, UUID4
from typing import List, Optional
from datetime import datetime

from app.models.push_login_request import PushLoginStatus


class PushLoginRequestResponse(BaseModel):
    """A login request as shown to the approving device."""
    id: UUID4
    email: str
    status: PushLoginStatus
    device_id: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PendingPushRequestsResponse(BaseModel):
    requests: List[PushLoginRequestResponse]
