"""
CRUD operations for authenticator (TOTP) entries.

Every query is scoped to the owning account.
"""

from typing import List, Optional
import uuid
from sqlalchemy.orm import Session
from app.models.totp_entry import TOTPEntry


def create(
    db: Session,
    user_id: uuid.UUID,
    service_name: str,
    account_label: str,
    secret_ref: str,
    digits: int = 6,
    period: int = 30,
    algorithm: str = "SHA1"
) -> TOTPEntry:
    """
    Create a new entry.

    Args:
        db: Database session
        user_id: Owning account
        service_name: Issuer shown to the user (e.g. "GitHub")
        account_label: Account name at the issuer
        secret_ref: Secret vault reference (never the raw secret)

    Returns:
        Created TOTPEntry instance
    """
    entry = TOTPEntry(
        id=uuid.uuid4(),
        user_id=user_id,
        service_name=service_name,
        account_label=account_label,
        secret_ref=secret_ref,
        digits=digits,
        period=period,
        algorithm=algorithm,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def list_for_user(db: Session, user_id: uuid.UUID) -> List[TOTPEntry]:
    return db.query(TOTPEntry).filter(
        TOTPEntry.user_id == user_id
    ).order_by(TOTPEntry.service_name, TOTPEntry.account_label).all()


def get_for_user(db: Session, user_id: uuid.UUID, entry_id: uuid.UUID) -> Optional[TOTPEntry]:
    return db.query(TOTPEntry).filter(
        TOTPEntry.id == entry_id,
        TOTPEntry.user_id == user_id
    ).first()


def delete(db: Session, entry: TOTPEntry) -> None:
    db.delete(entry)
    db.commit()
