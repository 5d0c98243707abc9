"""
Pydantic schemas for the vault PIN gate.
"""

from pydantic import BaseModel, Field
from typing import Optional

PIN_REGEX = r'^\d{4,6}$'


class VaultStatusResponse(BaseModel):
    pin_enabled: bool
    unlocked: bool


class SetPinRequest(BaseModel):
    pin: str = Field(..., pattern=PIN_REGEX, description="4-6 digit PIN")
    current_pin: Optional[str] = Field(None, description="Required when changing an existing PIN")


class PinRequest(BaseModel):
    pin: str = Field(..., min_length=1, max_length=6)


class VaultUnlockResponse(BaseModel):
    vault_token: str
    expires_in_minutes: int


class ResetPinRequest(BaseModel):
    code: str = Field(..., pattern=r'^\d{6}$', description="Emailed PIN reset code")
    pin: str = Field(..., pattern=PIN_REGEX, description="New 4-6 digit PIN")
