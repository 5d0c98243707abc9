"""
Pydantic schemas for the step-by-step login flow.

Every step request carries the flow token returned by the previous step.
"""

from pydantic import BaseModel, EmailStr, Field, UUID4
from typing import Any, Dict, Optional

from app.schemas.user import TokenResponse
from app.schemas.verification import VerifyCodeRequest


class LoginStartRequest(BaseModel):
    device_id: Optional[str] = Field(None, max_length=255, description="Stable identifier of the signing-in device")


class FlowTokenRequest(BaseModel):
    flow_token: str


class LoginEmailRequest(FlowTokenRequest):
    email: EmailStr


class LoginPasswordRequest(FlowTokenRequest):
    password: str = Field(..., min_length=1, max_length=256)


class LoginCodeRequest(FlowTokenRequest, VerifyCodeRequest):
    pass


class LoginFlowResponse(BaseModel):
    """
    State of a sign-in after a step.

    `step` tells the client what to collect next. `tokens` is only present
    once the flow reached `authenticated`.
    """
    flow_token: str
    step: str
    account_exists: Optional[bool] = None
    hints: Dict[str, Any] = Field(default_factory=dict)
    push_request_id: Optional[UUID4] = None
    push_outcome: Optional[str] = None
    failure_reason: Optional[str] = None
    tokens: Optional[TokenResponse] = None
