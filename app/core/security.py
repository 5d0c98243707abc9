"""
Security utilities for JWT tokens, password/PIN hashing and code digests.

Tokens are signed JWTs (python-jose). Four token types are issued:
- access: bearer token for an authenticated session (sub=user id, sid=session id)
- refresh: long-lived token to rotate the access token of the same session
- login_flow: the login orchestrator's state, passed explicitly between steps
- vault: proof that the vault PIN was entered during session `sid`

Passwords and PINs are hashed using bcrypt via passlib.
"""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from app.core.config import settings

# Password hashing context (bcrypt)
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
LOGIN_FLOW_TOKEN_TYPE = "login_flow"
VAULT_TOKEN_TYPE = "vault"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password."""
    # Bcrypt has a 72-byte limit - truncate if necessary
    password_bytes = plain_password.encode('utf-8')[:72]
    return pwd_context.verify(password_bytes, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Note: Bcrypt has a 72-byte limit. Passwords longer than 72 bytes
    are automatically truncated to comply with this limitation.
    """
    password_bytes = password.encode('utf-8')[:72]
    return pwd_context.hash(password_bytes)


def hash_pin(pin: str) -> str:
    """Hash a vault PIN. The PIN string is hashed as-is, so leading zeros matter."""
    return pwd_context.hash(pin.encode('utf-8'))


def verify_pin_hash(candidate_pin: str, pin_hash: str) -> bool:
    return pwd_context.verify(candidate_pin.encode('utf-8'), pin_hash)


def hash_verification_code(code: str) -> str:
    """Peppered SHA-256 digest of a one-time code; raw codes are never stored."""
    return hashlib.sha256((settings.VERIFICATION_CODE_PEPPER + code).encode("utf-8")).hexdigest()


def verification_code_matches(candidate: str, code_hash: str) -> bool:
    return hmac.compare_digest(hash_verification_code(candidate), code_hash)


def _encode(claims: Dict[str, Any], expires_delta: timedelta) -> str:
    to_encode = claims.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode (typically {"sub": user_id, "sid": session_id})
        expires_delta: Optional expiration time delta (default: ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        Encoded JWT token as a string
    """
    claims = {**data, "type": ACCESS_TOKEN_TYPE}
    return _encode(claims, expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(data: dict) -> str:
    """Create a JWT refresh token with longer expiration."""
    claims = {**data, "type": REFRESH_TOKEN_TYPE}
    return _encode(claims, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))


def create_login_flow_token(state: Dict[str, Any]) -> str:
    """Sign the login orchestrator state so the client cannot skip a step."""
    claims = {"flow": state, "type": LOGIN_FLOW_TOKEN_TYPE}
    return _encode(claims, timedelta(minutes=settings.LOGIN_FLOW_EXPIRE_MINUTES))


def create_vault_token(user_id: str, session_id: str) -> str:
    claims = {"sub": user_id, "sid": session_id, "type": VAULT_TOKEN_TYPE}
    return _encode(claims, timedelta(minutes=settings.VAULT_UNLOCK_EXPIRE_MINUTES))


def decode_token(token: str, expected_type: Optional[str] = None) -> dict:
    """
    Decode and validate a JWT token.

    Args:
        token: The JWT token to decode
        expected_type: If given, the token's "type" claim must match

    Returns:
        Dictionary containing the token payload

    Raises:
        JWTError: If token is invalid, expired, or of the wrong type
    """
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    if expected_type is not None and payload.get("type") != expected_type:
        raise JWTError(f"Expected {expected_type} token")
    return payload
