"""
Pydantic schemas for authenticator (TOTP) entries.
"""

from pydantic import BaseModel, Field, UUID4, model_validator
from typing import List, Optional
from datetime import datetime


class TOTPEntryCreate(BaseModel):
    """
    Add an authenticator entry, either from a Base32 secret or from the
    otpauth:// URI encoded in a setup QR code. URI fields win over the
    explicit ones.
    """
    otpauth_uri: Optional[str] = None
    secret: Optional[str] = None
    service_name: Optional[str] = Field(None, max_length=255)
    account_label: Optional[str] = Field(None, max_length=255)
    digits: Optional[int] = None
    period: Optional[int] = None
    algorithm: Optional[str] = None

    @model_validator(mode='after')
    def require_secret_or_uri(self):
        if not self.otpauth_uri and not self.secret:
            raise ValueError('Provide either a secret or an otpauth:// URI')
        if not self.otpauth_uri and not self.service_name:
            raise ValueError('service_name is required when adding a secret manually')
        return self


class TOTPEntryResponse(BaseModel):
    id: UUID4
    service_name: str
    account_label: str
    digits: int
    period: int
    algorithm: str
    created_at: datetime

    class Config:
        from_attributes = True


class TOTPCodeResponse(TOTPEntryResponse):
    """Entry plus the code an authenticator app would show right now."""
    code: Optional[str] = None
    remaining_seconds: Optional[int] = None
    error: Optional[str] = None


class TOTPListResponse(BaseModel):
    entries: List[TOTPCodeResponse]
