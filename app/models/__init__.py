"""
Database models package.
"""

from app.models.user import User
from app.models.user_session import UserSession
from app.models.verification_code import VerificationCode, VerificationPurpose
from app.models.push_login_request import PushLoginRequest, PushLoginStatus
from app.models.totp_entry import TOTPEntry

__all__ = [
    "User",
    "UserSession",
    "VerificationCode",
    "VerificationPurpose",
    "PushLoginRequest",
    "PushLoginStatus",
    "TOTPEntry",
]
