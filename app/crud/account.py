"""
CRUD operations for accounts and their profile metadata.

This module is the profile store: key-value metadata per account, including
the capped trusted_devices list and the cosmetic fields used as login hints.
"""

from typing import Any, Dict, Optional
import uuid
from sqlalchemy.orm import Session
from app.models.user import User

# Metadata keys the profile endpoints may change
PROFILE_FIELDS = ("display_name", "avatar_url", "theme", "notification_settings")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def lookup_account(db: Session, email: str) -> Optional[User]:
    """
    Find an account by email.

    Emails are stored normalized, so a single indexed lookup covers every
    spelling the user might type.
    """
    return db.query(User).filter(User.email == normalize_email(email)).first()


def get_by_id(db: Session, user_id: uuid.UUID, for_update: bool = False) -> Optional[User]:
    """
    Retrieve an account by id.

    Args:
        db: Database session
        user_id: Account id
        for_update: Take a row lock (SELECT ... FOR UPDATE) for read-modify-write

    Returns:
        User instance if found, None otherwise
    """
    query = db.query(User).filter(User.id == user_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def create(
    db: Session,
    email: str,
    hashed_password: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> User:
    """Create a new account. The caller commits."""
    user = User(
        id=uuid.uuid4(),
        email=normalize_email(email),
        hashed_password=hashed_password,
        is_active=True,
        profile_metadata=dict(metadata or {}),
    )
    db.add(user)
    db.flush()
    return user


def update_metadata(user: User, **changes: Any) -> Dict[str, Any]:
    """
    Merge changes into the account's metadata document.

    The dict is replaced rather than mutated so the JSON column is flagged
    dirty. A value of None removes the key. The caller commits.
    """
    metadata = user.meta
    for key, value in changes.items():
        if value is None:
            metadata.pop(key, None)
        else:
            metadata[key] = value
    user.profile_metadata = metadata
    return metadata


def login_hints(user: User) -> Dict[str, Any]:
    """Cosmetic, non-authoritative hints shown once the email is recognized."""
    metadata = user.meta
    return {
        "display_name": metadata.get("display_name"),
        "avatar_url": metadata.get("avatar_url"),
        "theme": metadata.get("theme"),
    }
