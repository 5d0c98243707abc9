"""
Tests for the emailed verification code channel.

Tests:
- Issue/verify/replay
- Superseding on re-issue
- Expiry and attempt limits
- Resend cooldown
- Dispatch failures
"""

from datetime import timedelta
import pytest

from app.core import verification
from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import RateLimited, Unavailable
from app.core.verification import VerificationResult
from app.models.verification_code import VerificationCode, VerificationPurpose

LOGIN = VerificationPurpose.LOGIN_2FA
EMAIL = "a@x.com"


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestIssueAndVerify:
    """Test the basic code lifecycle"""

    def test_verify_success(self, db_session, dispatcher):
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        code = dispatcher.last_code(EMAIL)
        assert verification.verify(db_session, EMAIL, LOGIN, code) is VerificationResult.SUCCESS

    def test_code_is_not_stored_in_clear(self, db_session, dispatcher):
        record = verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        assert record.code_hash != dispatcher.last_code(EMAIL)
        assert len(record.code_hash) == 64

    def test_no_replay(self, db_session, dispatcher):
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        code = dispatcher.last_code(EMAIL)
        assert verification.verify(db_session, EMAIL, LOGIN, code) is VerificationResult.SUCCESS
        assert verification.verify(db_session, EMAIL, LOGIN, code) is not VerificationResult.SUCCESS

    def test_wrong_code_is_invalid(self, db_session, dispatcher):
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        code = dispatcher.last_code(EMAIL)
        assert verification.verify(db_session, EMAIL, LOGIN, _wrong(code)) is VerificationResult.INVALID
        # The right code still works afterwards
        assert verification.verify(db_session, EMAIL, LOGIN, code) is VerificationResult.SUCCESS

    def test_email_is_case_insensitive(self, db_session, dispatcher):
        verification.issue(db_session, "A@X.com", LOGIN, dispatcher=dispatcher)
        code = dispatcher.last_code(EMAIL)
        assert verification.verify(db_session, " a@x.COM ", LOGIN, code) is VerificationResult.SUCCESS

    def test_purposes_are_separate(self, db_session, dispatcher):
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        code = dispatcher.last_code(EMAIL)
        result = verification.verify(db_session, EMAIL, VerificationPurpose.REGISTRATION, code)
        assert result is VerificationResult.INVALID

    def test_no_code_issued(self, db_session):
        assert verification.verify(db_session, EMAIL, LOGIN, "123456") is VerificationResult.INVALID


class TestSupersede:
    """Only the newest code per (email, purpose) is live"""

    def test_old_code_invalid_after_reissue(self, db_session, dispatcher):
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        old_code = dispatcher.last_code(EMAIL)
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        new_code = dispatcher.last_code(EMAIL)

        if old_code != new_code:
            assert verification.verify(db_session, EMAIL, LOGIN, old_code) is not VerificationResult.SUCCESS
        assert verification.verify(db_session, EMAIL, LOGIN, new_code) is VerificationResult.SUCCESS

    def test_single_live_code(self, db_session, dispatcher):
        for _ in range(3):
            verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        live = db_session.query(VerificationCode).filter(
            VerificationCode.email == EMAIL,
            VerificationCode.is_used == False  # noqa: E712
        ).count()
        assert live == 1


class TestExpiry:
    """Test expiry and attempt limits"""

    def test_expired_code(self, db_session, dispatcher):
        issued_at = utcnow() - timedelta(minutes=settings.VERIFICATION_CODE_EXPIRATION_MINUTES + 1)
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher, now=issued_at)
        code = dispatcher.last_code(EMAIL)
        assert verification.verify(db_session, EMAIL, LOGIN, code) is VerificationResult.EXPIRED
        # Still reported as expired, so the client keeps offering a resend
        assert verification.verify(db_session, EMAIL, LOGIN, code) is VerificationResult.EXPIRED

    def test_code_valid_until_deadline(self, db_session, dispatcher):
        now = utcnow()
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher, now=now)
        code = dispatcher.last_code(EMAIL)
        just_before = now + timedelta(minutes=settings.VERIFICATION_CODE_EXPIRATION_MINUTES) - timedelta(seconds=1)
        assert verification.verify(db_session, EMAIL, LOGIN, code, now=just_before) is VerificationResult.SUCCESS

    def test_too_many_wrong_attempts_burns_code(self, db_session, dispatcher):
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        code = dispatcher.last_code(EMAIL)
        for _ in range(settings.MAX_VERIFICATION_ATTEMPTS):
            assert verification.verify(db_session, EMAIL, LOGIN, _wrong(code)) is VerificationResult.INVALID

        assert verification.verify(db_session, EMAIL, LOGIN, code) is VerificationResult.EXPIRED


class TestResend:
    """Resend cooldown is enforced server-side"""

    def test_resend_within_cooldown(self, db_session, dispatcher):
        now = utcnow()
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher, now=now)
        with pytest.raises(RateLimited) as exc_info:
            verification.resend(db_session, EMAIL, LOGIN, dispatcher=dispatcher, now=now + timedelta(seconds=10))
        assert exc_info.value.retry_after == settings.VERIFICATION_RESEND_COOLDOWN_SECONDS - 10
        assert len(dispatcher.sent) == 1

    def test_resend_after_cooldown(self, db_session, dispatcher):
        now = utcnow()
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher, now=now)
        later = now + timedelta(seconds=settings.VERIFICATION_RESEND_COOLDOWN_SECONDS)
        verification.resend(db_session, EMAIL, LOGIN, dispatcher=dispatcher, now=later)
        assert len(dispatcher.sent) == 2

    def test_first_send_has_no_cooldown(self, db_session, dispatcher):
        verification.resend(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        assert len(dispatcher.sent) == 1


class TestDispatchFailure:
    """An undelivered code must not stay valid"""

    def test_dispatch_returns_false(self, db_session, dispatcher):
        dispatcher.fail = True
        with pytest.raises(Unavailable):
            verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        assert verification.get_active_verification(db_session, EMAIL, LOGIN) is None

    def test_dispatch_raises(self, db_session, dispatcher):
        dispatcher.raise_error = True
        with pytest.raises(Unavailable):
            verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        assert verification.get_active_verification(db_session, EMAIL, LOGIN) is None

    def test_failed_dispatch_does_not_start_cooldown(self, db_session, dispatcher):
        dispatcher.fail = True
        with pytest.raises(Unavailable):
            verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        dispatcher.fail = False
        verification.resend(db_session, EMAIL, LOGIN, dispatcher=dispatcher)
        assert len(dispatcher.sent) == 1


class TestCleanup:
    def test_cleanup_old_codes(self, db_session, dispatcher):
        verification.issue(db_session, EMAIL, LOGIN, dispatcher=dispatcher, now=utcnow() - timedelta(hours=30))
        verification.issue(db_session, "b@x.com", LOGIN, dispatcher=dispatcher)
        assert verification.cleanup_expired_codes(db_session) == 1
        assert db_session.query(VerificationCode).count() == 1
