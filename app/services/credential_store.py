"""
Credential store: password verification and session tokens.

Owns password hashes and sessions. The login orchestrator only ever sees an
account after the password was accepted here, and only receives tokens
once the whole login flow has reached Authenticated.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional
from jose import JWTError
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import InvalidCredential, Unavailable
from app.core.security import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from app.crud import account as account_crud
from app.models.user import User
from app.models.user_session import UserSession

logger = logging.getLogger(__name__)


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: str
    session_id: uuid.UUID
    user: User
    token_type: str = "bearer"


class CredentialStore:
    """Password checks and session lifecycle backed by the users table."""

    def __init__(self):
        self._dummy_hash: Optional[str] = None

    def _equalize_timing(self, password: str) -> None:
        # Hash work for unknown emails too, so response time does not reveal which emails exist
        if self._dummy_hash is None:
            self._dummy_hash = get_password_hash("not-a-real-password")
        verify_password(password, self._dummy_hash)

    def lookup_account(self, db: Session, email: str) -> Optional[User]:
        try:
            return account_crud.lookup_account(db, email)
        except OperationalError as e:
            logger.error(f"Credential store unavailable during lookup: {e}")
            raise Unavailable() from e

    def verify_password(self, db: Session, email: str, password: str) -> User:
        """
        Authenticate an email/password pair.

        Raises:
            InvalidCredential: Unknown email, wrong password or inactive account.
                The message never says which.
            Unavailable: If the database cannot be reached
        """
        user = self.lookup_account(db, email)
        if user is None:
            self._equalize_timing(password)
            raise InvalidCredential()
        if not verify_password(password, user.hashed_password) or not user.is_active:
            raise InvalidCredential()
        return user

    def register(self, db: Session, email: str, password: str, display_name: Optional[str] = None) -> User:
        """Create an account with default preferences. The caller has verified the email."""
        metadata = {"theme": "dark"}
        if display_name:
            metadata["display_name"] = display_name
        user = account_crud.create(db, email, get_password_hash(password), metadata=metadata)
        db.commit()
        db.refresh(user)
        logger.info(f"New account registered: {user.email}")
        return user

    def start_session(self, db: Session, user: User, device_id: Optional[str] = None) -> SessionTokens:
        """Create a persisted session and its access/refresh tokens."""
        try:
            session = UserSession(id=uuid.uuid4(), user_id=user.id, device_id=device_id, created_at=utcnow())
            db.add(session)
            user.last_login_at = utcnow()
            db.commit()
            db.refresh(session)
        except OperationalError as e:
            db.rollback()
            logger.error(f"Credential store unavailable while starting session: {e}")
            raise Unavailable() from e

        logger.info(f"Session {session.id} started for {user.email}")
        return self._tokens_for(session, user)

    def _tokens_for(self, session: UserSession, user: User) -> SessionTokens:
        claims = {"sub": str(user.id), "sid": str(session.id)}
        return SessionTokens(
            access_token=create_access_token(data=claims),
            refresh_token=create_refresh_token(data=claims),
            session_id=session.id,
            user=user,
        )

    def _active_session(self, db: Session, payload: dict) -> Optional[UserSession]:
        try:
            session_id = uuid.UUID(payload.get("sid", ""))
            user_id = uuid.UUID(payload.get("sub", ""))
        except ValueError:
            return None

        session = db.query(UserSession).filter(UserSession.id == session_id).first()
        if session is None or not session.is_active or session.user_id != user_id:
            return None
        if session.user is None or not session.user.is_active:
            return None
        return session

    def get_current_session(self, db: Session, access_token: str) -> Optional[UserSession]:
        """Resolve an access token to its live session, or None."""
        try:
            payload = decode_token(access_token, expected_type=ACCESS_TOKEN_TYPE)
        except JWTError:
            return None
        return self._active_session(db, payload)

    def refresh(self, db: Session, refresh_token: str) -> SessionTokens:
        """Issue fresh tokens for the same session."""
        try:
            payload = decode_token(refresh_token, expected_type=REFRESH_TOKEN_TYPE)
        except JWTError:
            raise InvalidCredential("Invalid refresh token")
        session = self._active_session(db, payload)
        if session is None:
            raise InvalidCredential("Invalid refresh token")
        return self._tokens_for(session, session.user)

    def end_session(self, db: Session, session: UserSession) -> None:
        if session.ended_at is None:
            session.ended_at = utcnow()
            db.commit()
            logger.info(f"Session {session.id} ended")

    def update_password(self, db: Session, session: UserSession, current_password: str, new_password: str) -> None:
        """
        Change the password of the session's account.

        Every other session of the account is ended.

        Raises:
            InvalidCredential: If the current password is wrong
        """
        user = session.user
        if not verify_password(current_password, user.hashed_password):
            raise InvalidCredential("Current password is incorrect")

        user.hashed_password = get_password_hash(new_password)
        now = utcnow()
        db.query(UserSession).filter(
            UserSession.user_id == user.id,
            UserSession.id != session.id,
            UserSession.ended_at.is_(None)
        ).update({"ended_at": now}, synchronize_session=False)
        db.commit()
        logger.info(f"Password updated for {user.email}; other sessions ended")

    def reset_password(self, db: Session, user: User, new_password: str) -> None:
        """
        Replace the password of an account recovered by email.

        Every session of the account is ended, the caller's included.
        """
        user.hashed_password = get_password_hash(new_password)
        db.query(UserSession).filter(
            UserSession.user_id == user.id,
            UserSession.ended_at.is_(None)
        ).update({"ended_at": utcnow()}, synchronize_session=False)
        db.commit()
        logger.info(f"Password reset for {user.email}; all sessions ended")


# Singleton instance
credential_store = CredentialStore()
