"""
Tests for external collaborators and maintenance tasks.

Tests:
- SES email dispatcher
- Expo push gateway client
- Secret vault client
- Credential store
- Celery maintenance tasks
- Log masking
- Redis rate limiter
"""

import json
import logging
import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import httpx
import pytest
import redis
from botocore.exceptions import ClientError
from fastapi import HTTPException

from app.core import verification
from app.core.clock import utcnow
from app.core.errors import InvalidCredential, NotPermitted, Unavailable
from app.core.logging_config import CustomJsonFormatter, mask_sensitive_data
from app.core.rate_limiter import RateLimiter
from app.models.push_login_request import PushLoginStatus
from app.models.verification_code import VerificationCode, VerificationPurpose
from app.services.credential_store import credential_store
from app.services.email_service import EmailService
from app.services.push_notifier import PushNotifier
from app.services.secret_reveal import SecretRevealService
from app.tasks import maintenance_tasks


class TestEmailService:
    def _service(self):
        service = EmailService()
        service.ses_client = MagicMock()
        return service

    def test_sends_code_with_purpose_subject(self):
        service = self._service()
        service.ses_client.send_email.return_value = {"MessageId": "m-1"}

        assert service.send_verification_email("a@x.com", "004211", VerificationPurpose.LOGIN_2FA, "Alice")

        kwargs = service.ses_client.send_email.call_args.kwargs
        assert kwargs["Destination"] == {"ToAddresses": ["a@x.com"]}
        assert kwargs["Message"]["Subject"]["Data"] == "Your LifeVault sign-in code"
        assert "004211" in kwargs["Message"]["Body"]["Text"]["Data"]

    def test_rejection_is_reported(self):
        service = self._service()
        service.ses_client.send_email.side_effect = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified"}},
            "SendEmail"
        )
        assert service.send_verification_email("a@x.com", "123456", VerificationPurpose.REGISTRATION) is False

    @pytest.mark.parametrize("purpose", list(VerificationPurpose))
    def test_every_purpose_has_copy(self, purpose):
        service = self._service()
        service.ses_client.send_email.return_value = {"MessageId": "m-1"}
        assert service.send_verification_email("a@x.com", "123456", purpose)


class TestPushNotifier:
    TOKEN = "ExponentPushToken[abc]"

    def _notifier(self, handler):
        return PushNotifier(gateway_url="https://push.test/send", client=httpx.Client(transport=httpx.MockTransport(handler)))

    def test_sends_batch(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        request_id = uuid.uuid4()
        assert self._notifier(handler).notify_login_request([self.TOKEN, "not-a-token"], request_id, "a@x.com")
        assert len(seen) == 1
        assert str(request_id).encode() in seen[0].content

    def test_no_devices_is_not_a_failure(self):
        def handler(request):
            raise AssertionError("gateway must not be called")

        assert self._notifier(handler).notify_login_request([], uuid.uuid4(), "a@x.com") is True

    def test_gateway_error(self):
        notifier = self._notifier(lambda request: httpx.Response(500))
        assert notifier.notify_login_request([self.TOKEN], uuid.uuid4(), "a@x.com") is False


class TestSecretRevealService:
    def _service(self, handler):
        return SecretRevealService(
            base_url="https://vault.test",
            api_key="k",
            client=httpx.Client(transport=httpx.MockTransport(handler))
        )

    def test_store_and_reveal(self):
        def handler(request):
            if request.url.path == "/secrets":
                return httpx.Response(201, json={"id": "ref-1"})
            return httpx.Response(200, json={"value": "RAWSECRET"})

        service = self._service(handler)
        assert service.store("RAWSECRET", "totp:reveal") == "ref-1"
        assert service.reveal("ref-1", "totp:reveal") == "RAWSECRET"

    def test_refusal_is_not_permitted(self):
        service = self._service(lambda request: httpx.Response(403))
        with pytest.raises(NotPermitted):
            service.reveal("ref-1", "totp:reveal")

    def test_server_error_is_unavailable(self):
        service = self._service(lambda request: httpx.Response(502))
        with pytest.raises(Unavailable):
            service.reveal("ref-1", "totp:reveal")

    def test_transport_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(Unavailable):
            self._service(handler).reveal("ref-1", "totp:reveal")


class TestCredentialStore:
    def test_unknown_and_wrong_password_look_the_same(self, db_session, user):
        with pytest.raises(InvalidCredential) as unknown:
            credential_store.verify_password(db_session, "nobody@x.com", "Secret123")
        with pytest.raises(InvalidCredential) as wrong:
            credential_store.verify_password(db_session, "a@x.com", "Wrong123")
        assert unknown.value.message == wrong.value.message

    def test_inactive_account(self, db_session, user):
        user.is_active = False
        db_session.commit()
        with pytest.raises(InvalidCredential):
            credential_store.verify_password(db_session, "a@x.com", "Secret123")

    def test_session_lifecycle(self, db_session, user):
        tokens = credential_store.start_session(db_session, user, device_id="D1")
        session = credential_store.get_current_session(db_session, tokens.access_token)
        assert session.id == tokens.session_id
        assert session.device_id == "D1"

        credential_store.end_session(db_session, session)
        assert credential_store.get_current_session(db_session, tokens.access_token) is None

    def test_email_lookup_is_case_insensitive(self, db_session, user):
        assert credential_store.lookup_account(db_session, "  A@X.COM ").id == user.id


class TestMaintenanceTasks:
    @pytest.fixture(autouse=True)
    def task_db(self, session_factory, monkeypatch):
        monkeypatch.setattr(maintenance_tasks, "SessionLocal", session_factory)

    def test_cleanup_codes(self, db_session, dispatcher):
        verification.issue(db_session, "a@x.com", VerificationPurpose.LOGIN_2FA,
                           dispatcher=dispatcher, now=utcnow() - timedelta(hours=48))
        result = maintenance_tasks.cleanup_expired_verification_codes_task()
        assert result == {"status": "success", "deleted_count": 1}
        assert db_session.query(VerificationCode).count() == 0

    def test_expire_stale_push_logins(self, db_session, user, monkeypatch, push_channel):
        record = push_channel.request(db_session, "a@x.com", now=utcnow() - timedelta(minutes=10))
        monkeypatch.setattr("app.core.push_login.push_channel", push_channel)

        result = maintenance_tasks.expire_stale_push_logins_task()
        assert result == {"status": "success", "expired_count": 1}
        db_session.refresh(record)
        assert record.status is PushLoginStatus.EXPIRED

    def test_beat_schedule_points_at_registered_tasks(self):
        from app.core.celery_app import celery_app

        scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
        assert scheduled == {
            maintenance_tasks.cleanup_expired_verification_codes_task.name,
            maintenance_tasks.expire_stale_push_logins_task.name,
        }


class TestLogMasking:
    def test_credential_fields_are_masked(self):
        formatter = CustomJsonFormatter('%(message)s')
        record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "PIN set", None, None)
        record.pin = "1234"
        record.context = {"email": "a@x.com", "verification_code": "123456"}

        output = json.loads(formatter.format(record))
        assert output["pin"] == "***"
        assert output["context"] == {"email": "a@x.com", "verification_code": "***"}
        assert output["message"] == "PIN set"
        assert output["service"] == "lifevault-auth"

    def test_plain_values_pass_through(self):
        assert mask_sensitive_data({"device_id": "D1", "devices": ["D1", "D2"]}) == {
            "device_id": "D1", "devices": ["D1", "D2"]
        }


class TestRateLimiter:
    def _limiter(self):
        limiter = RateLimiter()
        limiter.redis_client = MagicMock()
        return limiter

    def test_within_limit(self):
        limiter = self._limiter()
        limiter.redis_client.incr.return_value = 1
        limiter.check_rate_limit("send_code:a@x.com", max_requests=3, window_seconds=60)
        limiter.redis_client.expire.assert_called_once_with("send_code:a@x.com", 60)

    def test_over_limit(self):
        limiter = self._limiter()
        limiter.redis_client.incr.return_value = 4
        limiter.redis_client.ttl.return_value = 42
        with pytest.raises(HTTPException) as exc_info:
            limiter.check_rate_limit("send_code:a@x.com", max_requests=3, window_seconds=60)
        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == "42"

    def test_redis_down_fails_open(self):
        limiter = self._limiter()
        limiter.redis_client.incr.side_effect = redis.ConnectionError("down")
        limiter.check_rate_limit("send_code:a@x.com", max_requests=3, window_seconds=60)
