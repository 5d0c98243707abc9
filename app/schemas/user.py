"""
Pydantic schemas for accounts, sessions and profile metadata.
"""

from pydantic import BaseModel, EmailStr, Field, UUID4, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
import re


def validate_password_strength(v: str) -> str:
    """Validate password contains required character types."""
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters long')
    if len(v) > 72:
        raise ValueError('Password cannot exceed 72 characters (bcrypt limitation)')
    if not re.search(r'[a-z]', v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not re.search(r'[A-Z]', v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not re.search(r'\d', v):
        raise ValueError('Password must contain at least one number')
    return v


class UserResponse(BaseModel):
    """Account as seen by its owner (no secrets, no PIN state)."""
    id: UUID4
    email: str
    display_name: Optional[str] = None
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """JWT token pair for an authenticated session."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    session_id: UUID4
    user: UserResponse


class TokenRefreshRequest(BaseModel):
    refresh_token: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=72)

    @field_validator('new_password')
    @classmethod
    def check_new_password(cls, v: str) -> str:
        return validate_password_strength(v)


class ProfileResponse(BaseModel):
    """Cosmetic profile metadata."""
    email: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    theme: Optional[str] = None
    notification_settings: Dict[str, Any] = Field(default_factory=dict)
    vault_pin_enabled: bool = False


class ProfileUpdateRequest(BaseModel):
    """Partial profile update. Omitted fields are left unchanged."""
    display_name: Optional[str] = Field(None, max_length=100)
    avatar_url: Optional[str] = Field(None, max_length=500)
    theme: Optional[str] = None
    notification_settings: Optional[Dict[str, Any]] = None

    @field_validator('theme')
    @classmethod
    def check_theme(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ("dark", "light", "system"):
            raise ValueError('Theme must be dark, light or system')
        return v


class TrustedDevicesResponse(BaseModel):
    devices: List[str]


class PushTokenRequest(BaseModel):
    """Expo push token of a signed-in device that can approve logins."""
    push_token: str = Field(..., min_length=1, max_length=255)


class RegisterStartRequest(BaseModel):
    email: EmailStr


class RegisterCompleteRequest(BaseModel):
    email: EmailStr
    code: str
    password: str = Field(..., min_length=8, max_length=72)
    display_name: Optional[str] = Field(None, max_length=100)
    device_id: Optional[str] = Field(None, max_length=255)

    @field_validator('code')
    @classmethod
    def check_code(cls, v: str) -> str:
        if not re.match(r'^\d{6}$', v):
            raise ValueError('Code must be exactly 6 digits')
        return v

    @field_validator('password')
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str
    new_password: str = Field(..., min_length=8, max_length=72)

    @field_validator('code')
    @classmethod
    def check_code(cls, v: str) -> str:
        if not re.match(r'^\d{6}$', v):
            raise ValueError('Code must be exactly 6 digits')
        return v

    @field_validator('new_password')
    @classmethod
    def check_new_password(cls, v: str) -> str:
        return validate_password_strength(v)
