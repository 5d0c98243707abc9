"""
Server clock helpers.

Expiry decisions always use the server's UTC clock, never a timestamp
supplied by the client. SQLite drops tzinfo on round-trip, so values read
back from the database are normalized with as_utc() before comparison.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
