"""
FastAPI dependencies for authentication, the vault gate and collaborators.

Collaborators (email dispatcher, push channel, credential store, TOTP
service) are provided through dependencies so tests can override them.
"""

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from app.core import vault_pin
from app.core.database import get_db
from app.core.push_login import PushApprovalChannel, push_channel
from app.core.totp import TotpService, totp_service
from app.models.user import User
from app.models.user_session import UserSession
from app.services.credential_store import CredentialStore, credential_store

# HTTP Bearer token scheme (Authorization: Bearer <token>)
security = HTTPBearer()


def get_credential_store() -> CredentialStore:
    return credential_store


def get_email_dispatcher():
    from app.services.email_service import email_service
    return email_service


def get_push_channel() -> PushApprovalChannel:
    return push_channel


def get_totp_service() -> TotpService:
    return totp_service


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store)
) -> UserSession:
    """
    Resolve the bearer token to a live session.

    Raises:
        HTTPException 401: If the token is invalid, expired, or its session ended
    """
    session = store.get_current_session(db, credentials.credentials)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


async def get_current_user(session: UserSession = Depends(get_current_session)) -> User:
    return session.user


async def require_vault_unlocked(
    session: UserSession = Depends(get_current_session),
    x_vault_token: Optional[str] = Header(default=None),
) -> User:
    """
    Gate for sensitive views.

    If the account has a vault PIN, the request must carry a vault token
    issued for this very session (X-Vault-Token header).

    Raises:
        HTTPException 403: Vault locked
    """
    user = session.user
    if vault_pin.is_enabled(user) and not vault_pin.is_unlocked(x_vault_token, user, session.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vault is locked. Enter your PIN to continue."
        )
    return user
