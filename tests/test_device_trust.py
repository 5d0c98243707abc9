"""
Tests for the trusted device registry.
"""

import uuid
import pytest

from app.core import device_trust
from app.crud import account as account_crud


class TestRegisterDevice:
    """Test adding devices to the trusted list"""

    def test_register_and_lookup(self, db_session, user):
        assert not device_trust.is_trusted(db_session, user.id, "D1")
        device_trust.register_device(db_session, user.id, "D1")
        assert device_trust.is_trusted(db_session, user.id, "D1")

    def test_eleven_devices_keep_ten_most_recent(self, db_session, user):
        for i in range(1, 12):
            device_trust.register_device(db_session, user.id, f"D{i}")

        devices = device_trust.list_devices(db_session, user.id)
        assert devices == [f"D{i}" for i in range(2, 12)]
        assert not device_trust.is_trusted(db_session, user.id, "D1")
        assert device_trust.is_trusted(db_session, user.id, "D11")

    def test_duplicate_is_noop(self, db_session, user):
        device_trust.register_device(db_session, user.id, "D1")
        device_trust.register_device(db_session, user.id, "D2")
        devices = device_trust.register_device(db_session, user.id, "D1")
        assert devices == ["D1", "D2"]

    def test_duplicate_does_not_refresh_position(self, db_session, user):
        for i in range(1, 11):
            device_trust.register_device(db_session, user.id, f"D{i}")
        device_trust.register_device(db_session, user.id, "D1")
        device_trust.register_device(db_session, user.id, "D11")
        assert "D1" not in device_trust.list_devices(db_session, user.id)

    def test_other_metadata_is_preserved(self, db_session, user):
        device_trust.register_device(db_session, user.id, "D1")
        db_session.refresh(user)
        assert user.meta["display_name"] == "Alice"
        assert user.meta["theme"] == "dark"

    def test_missing_account(self, db_session):
        with pytest.raises(LookupError):
            device_trust.register_device(db_session, uuid.uuid4(), "D1")

    def test_empty_device_id(self, db_session, user):
        with pytest.raises(ValueError):
            device_trust.register_device(db_session, user.id, "")


class TestIsTrusted:
    """Lookups fail toward untrusted"""

    def test_unknown_account_is_untrusted(self, db_session):
        assert device_trust.is_trusted(db_session, uuid.uuid4(), "D1") is False

    def test_missing_device_id_is_untrusted(self, db_session, user):
        assert device_trust.is_trusted(db_session, user.id, None) is False

    def test_corrupt_list_is_untrusted(self, db_session, user):
        account_crud.update_metadata(user, trusted_devices="D1")
        db_session.commit()
        assert device_trust.is_trusted(db_session, user.id, "D1") is False

    def test_corrupt_list_is_reset_on_register(self, db_session, user):
        account_crud.update_metadata(user, trusted_devices={"bad": True})
        db_session.commit()
        assert device_trust.register_device(db_session, user.id, "D2") == ["D2"]


class TestRevokeDevice:
    def test_revoke(self, db_session, user):
        device_trust.register_device(db_session, user.id, "D1")
        device_trust.register_device(db_session, user.id, "D2")
        assert device_trust.revoke_device(db_session, user.id, "D1") == ["D2"]
        assert not device_trust.is_trusted(db_session, user.id, "D1")
