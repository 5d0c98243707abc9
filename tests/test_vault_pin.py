"""
Tests for the vault PIN gate.
"""

from datetime import timedelta
import pytest

from app.core import vault_pin
from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import FlowStateError, InvalidCredential, RateLimited
from app.services.credential_store import credential_store


class TestSetAndVerify:
    """Test PIN hashing and comparison"""

    def test_pin_is_hashed(self, db_session, user):
        vault_pin.set_pin(db_session, user, "123456")
        db_session.refresh(user)
        assert vault_pin.is_enabled(user)
        assert user.meta["pin_hash"] != "123456"

    @pytest.mark.parametrize("candidate", ["123456", "123457", "012345", "12345", "023456", "1234"])
    def test_only_exact_pin_matches(self, db_session, user, candidate):
        vault_pin.set_pin(db_session, user, "123456")
        assert vault_pin.verify_pin(db_session, user, candidate) is (candidate == "123456")

    def test_leading_zero_is_significant(self, db_session, user):
        vault_pin.set_pin(db_session, user, "012345")
        assert vault_pin.verify_pin(db_session, user, "012345") is True
        assert vault_pin.verify_pin(db_session, user, "12345") is False

    @pytest.mark.parametrize("pin", ["123", "1234567", "12a4", "", "12 34"])
    def test_invalid_format(self, db_session, user, pin):
        with pytest.raises(ValueError):
            vault_pin.set_pin(db_session, user, pin)

    def test_verify_without_pin(self, db_session, user):
        with pytest.raises(FlowStateError):
            vault_pin.verify_pin(db_session, user, "1234")


class TestChangeAndDisable:
    def test_change_requires_current_pin(self, db_session, user):
        vault_pin.set_pin(db_session, user, "1234")
        with pytest.raises(InvalidCredential):
            vault_pin.set_pin(db_session, user, "5678")
        with pytest.raises(InvalidCredential):
            vault_pin.set_pin(db_session, user, "5678", current_pin="0000")

        vault_pin.set_pin(db_session, user, "5678", current_pin="1234")
        assert vault_pin.verify_pin(db_session, user, "5678")

    def test_disable_requires_current_pin(self, db_session, user):
        vault_pin.set_pin(db_session, user, "1234")
        with pytest.raises(InvalidCredential):
            vault_pin.disable_pin(db_session, user, "9999")
        db_session.refresh(user)
        assert vault_pin.is_enabled(user)

        vault_pin.disable_pin(db_session, user, "1234")
        db_session.refresh(user)
        assert not vault_pin.is_enabled(user)
        assert "pin_hash" not in user.meta


class TestLockout:
    def test_lockout_after_max_attempts(self, db_session, user):
        vault_pin.set_pin(db_session, user, "1234")
        for _ in range(settings.MAX_PIN_ATTEMPTS):
            assert vault_pin.verify_pin(db_session, user, "0000") is False

        with pytest.raises(RateLimited) as exc_info:
            vault_pin.verify_pin(db_session, user, "1234")
        assert exc_info.value.retry_after > 0

    def test_lockout_ends(self, db_session, user):
        vault_pin.set_pin(db_session, user, "1234")
        for _ in range(settings.MAX_PIN_ATTEMPTS):
            vault_pin.verify_pin(db_session, user, "0000")

        later = utcnow() + timedelta(minutes=settings.PIN_LOCKOUT_MINUTES, seconds=1)
        assert vault_pin.verify_pin(db_session, user, "1234", now=later) is True

    def test_success_resets_counter(self, db_session, user):
        vault_pin.set_pin(db_session, user, "1234")
        for _ in range(settings.MAX_PIN_ATTEMPTS - 1):
            vault_pin.verify_pin(db_session, user, "0000")
        assert vault_pin.verify_pin(db_session, user, "1234")
        # A fresh budget of attempts
        for _ in range(settings.MAX_PIN_ATTEMPTS - 1):
            vault_pin.verify_pin(db_session, user, "0000")
        assert vault_pin.verify_pin(db_session, user, "1234")


class TestUnlock:
    def test_unlock_is_bound_to_session(self, db_session, user):
        vault_pin.set_pin(db_session, user, "1234")
        first = credential_store.start_session(db_session, user, device_id="D1")
        token = vault_pin.unlock(db_session, user, first.session_id, "1234")
        assert vault_pin.is_unlocked(token, user, first.session_id)

        # A new session must unlock again
        second = credential_store.start_session(db_session, user, device_id="D1")
        assert not vault_pin.is_unlocked(token, user, second.session_id)

    def test_unlock_wrong_pin(self, db_session, user, session_tokens):
        vault_pin.set_pin(db_session, user, "1234")
        with pytest.raises(InvalidCredential):
            vault_pin.unlock(db_session, user, session_tokens.session_id, "4321")

    def test_missing_or_garbage_token(self, user, session_tokens):
        assert not vault_pin.is_unlocked(None, user, session_tokens.session_id)
        assert not vault_pin.is_unlocked("garbage", user, session_tokens.session_id)
