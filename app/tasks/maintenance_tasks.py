"""
Periodic maintenance tasks, scheduled by Celery Beat (see app.core.celery_app).
"""

import logging
from celery import shared_task

from app.core.database import SessionLocal

logger = logging.getLogger(__name__)


@shared_task(name="cleanup_expired_verification_codes")
def cleanup_expired_verification_codes_task(older_than_hours: int = 24):
    """Delete verification codes created more than `older_than_hours` ago."""
    from app.core.verification import cleanup_expired_codes

    db = SessionLocal()
    try:
        deleted_count = cleanup_expired_codes(db, older_than_hours=older_than_hours)
        logger.info(f"Cleaned up {deleted_count} expired verification codes")
        return {"status": "success", "deleted_count": deleted_count}
    except Exception as e:
        logger.error(f"Error cleaning up verification codes: {str(e)}")
        raise
    finally:
        db.close()


@shared_task(name="expire_stale_push_logins")
def expire_stale_push_logins_task():
    """
    Move push login requests past their deadline to EXPIRED.

    Waiters normally expire their own request; this catches requests whose
    waiter never arrived or whose worker died.
    """
    from app.core.push_login import push_channel

    db = SessionLocal()
    try:
        expired_count = push_channel.expire_stale(db)
        if expired_count:
            logger.info(f"Expired {expired_count} stale push login requests")
        return {"status": "success", "expired_count": expired_count}
    except Exception as e:
        logger.error(f"Error expiring push login requests: {str(e)}")
        raise
    finally:
        db.close()
