"""
Push approval channel.

A user signing in on a new device can ask an already signed-in device to
approve the login. The request lifecycle is:

    Pending -> Approved | Denied | Expired | Cancelled | Superseded

The database row is the authority on status; every transition out of
Pending is a conditional update, so concurrent approve/cancel/timeout calls
resolve a request exactly once. Callers waiting for the outcome suspend on
an asyncio future that is woken by the transition (or by the timeout),
never by polling.

Waiters in this process are woken directly. Transitions are also published
on Redis (see push_events), so an approval handled by another worker
process wakes the waiter too; without Redis it is picked up at the
deadline.
"""

import asyncio
import enum
import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set
from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.config import settings
from app.core.errors import Expired, FlowStateError, NotPermitted, Unavailable
from app.core.push_events import PushEventBus
from app.crud import account as account_crud
from app.models.push_login_request import PushLoginRequest, PushLoginStatus

logger = logging.getLogger(__name__)


class PushOutcome(str, enum.Enum):
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    SUPERSEDED = "superseded"


_OUTCOMES = {
    PushLoginStatus.APPROVED: PushOutcome.APPROVED,
    PushLoginStatus.COMPLETED: PushOutcome.APPROVED,
    PushLoginStatus.DENIED: PushOutcome.DENIED,
    PushLoginStatus.EXPIRED: PushOutcome.EXPIRED,
    PushLoginStatus.CANCELLED: PushOutcome.CANCELLED,
    PushLoginStatus.SUPERSEDED: PushOutcome.SUPERSEDED,
}


def _resolve_future(future: asyncio.Future, status: PushLoginStatus) -> None:
    if not future.done():
        future.set_result(status)


class PushApprovalChannel:
    """Issues push login requests and lets callers await their resolution."""

    def __init__(self, notifier=None, timeout_seconds: Optional[float] = None, events: Optional[PushEventBus] = None):
        self._notifier = notifier
        self.events = events
        self._timeout_seconds = timeout_seconds
        self._waiters: Dict[uuid.UUID, Set[asyncio.Future]] = {}
        self._lock = threading.Lock()

    @property
    def timeout_seconds(self) -> float:
        if self._timeout_seconds is not None:
            return self._timeout_seconds
        return settings.PUSH_LOGIN_TIMEOUT_SECONDS

    @property
    def notifier(self):
        if self._notifier is None:
            from app.services.push_notifier import push_notifier
            self._notifier = push_notifier
        return self._notifier

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, db: Session, request_id: uuid.UUID) -> PushLoginRequest:
        record = db.query(PushLoginRequest).filter(PushLoginRequest.id == request_id).first()
        if record is None:
            raise FlowStateError("Login request not found")
        return record

    def list_pending(self, db: Session, email: str, now: Optional[datetime] = None) -> List[PushLoginRequest]:
        now = now or utcnow()
        return db.query(PushLoginRequest).filter(
            PushLoginRequest.email == account_crud.normalize_email(email),
            PushLoginRequest.status == PushLoginStatus.PENDING,
            PushLoginRequest.expires_at > now
        ).order_by(PushLoginRequest.created_at.desc()).all()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        db: Session,
        request_id: uuid.UUID,
        status: PushLoginStatus,
        now: Optional[datetime] = None,
        not_expired_at: Optional[datetime] = None
    ) -> bool:
        """Move a request out of PENDING. Returns False if it was no longer pending."""
        now = now or utcnow()
        query = db.query(PushLoginRequest).filter(
            PushLoginRequest.id == request_id,
            PushLoginRequest.status == PushLoginStatus.PENDING
        )
        if not_expired_at is not None:
            query = query.filter(PushLoginRequest.expires_at > not_expired_at)
        changed = query.update({"status": status, "resolved_at": now}, synchronize_session=False)
        db.commit()

        if changed != 1:
            return False

        logger.info(f"Push login request {request_id} -> {status.value}")
        self._wake(request_id, status)
        if self.events is not None:
            self.events.publish(request_id, status.value)
        return True

    def _wake(self, request_id: uuid.UUID, status: PushLoginStatus) -> None:
        with self._lock:
            futures = list(self._waiters.get(request_id, ()))
        for future in futures:
            try:
                future.get_loop().call_soon_threadsafe(_resolve_future, future, status)
            except RuntimeError:
                # The waiter's event loop has already closed
                pass

    def request(
        self,
        db: Session,
        email: str,
        device_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PushLoginRequest:
        """
        Create a pending push login request and notify the account's devices.

        Any request still pending for the same email is superseded first, so
        its waiters resolve instead of hanging.

        Raises:
            Unavailable: If the push gateway could not be reached
        """
        email = account_crud.normalize_email(email)
        now = now or utcnow()

        pending_ids = [
            row.id for row in db.query(PushLoginRequest.id).filter(
                PushLoginRequest.email == email,
                PushLoginRequest.status == PushLoginStatus.PENDING
            ).all()
        ]
        for pending_id in pending_ids:
            self._transition(db, pending_id, PushLoginStatus.SUPERSEDED, now=now)

        record = PushLoginRequest(
            id=uuid.uuid4(),
            email=email,
            status=PushLoginStatus.PENDING,
            device_id=device_id,
            created_at=now,
            expires_at=now + timedelta(seconds=self.timeout_seconds)
        )
        db.add(record)
        db.commit()
        db.refresh(record)

        user = account_crud.lookup_account(db, email)
        tokens = list(user.meta.get("push_tokens", [])) if user else []
        if not self.notifier.notify_login_request(tokens, record.id, email):
            self._transition(db, record.id, PushLoginStatus.CANCELLED, now=now)
            raise Unavailable("Couldn't reach your other devices. Please use an email code instead.")

        logger.info(f"Push login requested for {email} (request {record.id})")
        return record

    def approve(self, db: Session, request_id: uuid.UUID, approver_email: str, now: Optional[datetime] = None) -> PushLoginRequest:
        return self._resolve_by_approver(db, request_id, approver_email, PushLoginStatus.APPROVED, now)

    def deny(self, db: Session, request_id: uuid.UUID, approver_email: str, now: Optional[datetime] = None) -> PushLoginRequest:
        return self._resolve_by_approver(db, request_id, approver_email, PushLoginStatus.DENIED, now)

    def _resolve_by_approver(
        self,
        db: Session,
        request_id: uuid.UUID,
        approver_email: str,
        status: PushLoginStatus,
        now: Optional[datetime]
    ) -> PushLoginRequest:
        now = now or utcnow()
        record = self.get(db, request_id)

        if record.email != account_crud.normalize_email(approver_email):
            raise NotPermitted("This login request belongs to another account")

        if record.status is PushLoginStatus.PENDING and now >= as_utc(record.expires_at):
            self._transition(db, request_id, PushLoginStatus.EXPIRED, now=now)

        if not self._transition(db, request_id, status, now=now, not_expired_at=now):
            db.refresh(record)
            if record.status is PushLoginStatus.EXPIRED:
                raise Expired("This login request has expired")
            raise FlowStateError(f"This login request is already {record.status.value}")

        db.refresh(record)
        return record

    def cancel(self, db: Session, request_id: uuid.UUID, now: Optional[datetime] = None) -> PushLoginRequest:
        """
        Abandon a request on behalf of the requester.

        Pending waiters resolve to CANCELLED. An approval that has not yet
        been turned into a session is revoked as well, so a stale flow can
        never redeem it. Other resolved requests are left unchanged.
        """
        now = now or utcnow()
        if not self._transition(db, request_id, PushLoginStatus.CANCELLED, now=now):
            db.query(PushLoginRequest).filter(
                PushLoginRequest.id == request_id,
                PushLoginRequest.status == PushLoginStatus.APPROVED
            ).update({"status": PushLoginStatus.CANCELLED, "resolved_at": now}, synchronize_session=False)
            db.commit()
        record = self.get(db, request_id)
        db.refresh(record)
        return record

    def complete(self, db: Session, request_id: uuid.UUID, now: Optional[datetime] = None) -> PushLoginRequest:
        """
        Consume an approval: APPROVED -> COMPLETED, at most once.

        Raises:
            FlowStateError: If the request is not (or no longer) approved
        """
        now = now or utcnow()
        changed = db.query(PushLoginRequest).filter(
            PushLoginRequest.id == request_id,
            PushLoginRequest.status == PushLoginStatus.APPROVED
        ).update({"status": PushLoginStatus.COMPLETED, "resolved_at": now}, synchronize_session=False)
        db.commit()
        if changed != 1:
            raise FlowStateError("Login request is not approved")
        return self.get(db, request_id)

    def expire_stale(self, db: Session, now: Optional[datetime] = None) -> int:
        """Expire every pending request whose deadline has passed."""
        now = now or utcnow()
        stale_ids = [
            row.id for row in db.query(PushLoginRequest.id).filter(
                PushLoginRequest.status == PushLoginStatus.PENDING,
                PushLoginRequest.expires_at <= now
            ).all()
        ]
        return sum(1 for request_id in stale_ids if self._transition(db, request_id, PushLoginStatus.EXPIRED, now=now))

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    async def wait(self, db: Session, request_id: uuid.UUID) -> PushOutcome:
        """
        Suspend until the request reaches a terminal status or times out.

        On timeout the request is expired. The returned outcome is always
        read back from the database, so a request cancelled or superseded
        while waiting can never be reported as approved. The session's
        transaction is committed before suspending, so no pooled connection
        is held for the length of the wait.
        """
        record = self.get(db, request_id)
        if record.status.is_terminal:
            return _OUTCOMES[record.status]

        future = asyncio.get_running_loop().create_future()
        with self._lock:
            self._waiters.setdefault(request_id, set()).add(future)

        subscription = None
        relay = None
        try:
            if self.events is not None:
                subscription = await self.events.subscribe(request_id)
                if subscription is not None:
                    relay = asyncio.ensure_future(self._relay(subscription, future))

            # Re-read after subscribing so a transition that raced the
            # registration is not missed
            db.refresh(record)
            status = record.status
            expires_at = as_utc(record.expires_at)
            db.commit()

            if status is PushLoginStatus.PENDING:
                remaining = (expires_at - utcnow()).total_seconds()
                if remaining > 0:
                    try:
                        await asyncio.wait_for(future, timeout=remaining)
                    except asyncio.TimeoutError:
                        pass
                self._transition(db, request_id, PushLoginStatus.EXPIRED)

            record = self.get(db, request_id)
            db.refresh(record)
            return _OUTCOMES[record.status]
        finally:
            with self._lock:
                waiters = self._waiters.get(request_id)
                if waiters is not None:
                    waiters.discard(future)
                    if not waiters:
                        del self._waiters[request_id]
            if relay is not None:
                relay.cancel()
                await asyncio.gather(relay, return_exceptions=True)
            if subscription is not None:
                await subscription.close()

    @staticmethod
    async def _relay(subscription, future: asyncio.Future) -> None:
        status = await subscription.next_status()
        if status is not None:
            _resolve_future(future, PushLoginStatus(status))


# Singleton instance
push_channel = PushApprovalChannel(events=PushEventBus())
