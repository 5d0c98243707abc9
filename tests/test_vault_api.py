"""
API tests for the vault PIN gate, PIN reset, authenticator entries and profile.
"""

import base64

from app.core import device_trust
from app.services.credential_store import credential_store

API = "/api/v1"
SECRET = base64.b32encode(b"12345678901234567890").decode()


def _set_pin(client, headers, pin="1234", current_pin=None):
    body = {"pin": pin}
    if current_pin:
        body["current_pin"] = current_pin
    return client.put(f"{API}/vault/pin", json=body, headers=headers)


def _unlock(client, headers, pin="1234"):
    response = client.post(f"{API}/vault/unlock", json={"pin": pin}, headers=headers)
    assert response.status_code == 200
    return {**headers, "X-Vault-Token": response.json()["vault_token"]}


class TestVaultPin:
    def test_status_without_pin(self, client, auth_headers):
        data = client.get(f"{API}/vault/status", headers=auth_headers).json()
        assert data == {"pin_enabled": False, "unlocked": True}

    def test_set_and_unlock(self, client, auth_headers):
        assert _set_pin(client, auth_headers).status_code == 204
        assert client.get(f"{API}/vault/status", headers=auth_headers).json()["unlocked"] is False

        unlocked = _unlock(client, auth_headers)
        assert client.get(f"{API}/vault/status", headers=unlocked).json()["unlocked"] is True

    def test_invalid_pin_format(self, client, auth_headers):
        assert _set_pin(client, auth_headers, pin="12ab").status_code == 422
        assert _set_pin(client, auth_headers, pin="1234567").status_code == 422

    def test_change_requires_current(self, client, auth_headers):
        _set_pin(client, auth_headers)
        assert _set_pin(client, auth_headers, pin="5678").status_code == 401
        assert _set_pin(client, auth_headers, pin="5678", current_pin="1234").status_code == 204

    def test_wrong_pin(self, client, auth_headers):
        _set_pin(client, auth_headers)
        response = client.post(f"{API}/vault/unlock", json={"pin": "9999"}, headers=auth_headers)
        assert response.status_code == 401

    def test_lockout(self, client, auth_headers):
        _set_pin(client, auth_headers)
        for _ in range(5):
            client.post(f"{API}/vault/unlock", json={"pin": "9999"}, headers=auth_headers)
        response = client.post(f"{API}/vault/unlock", json={"pin": "1234"}, headers=auth_headers)
        assert response.status_code == 429
        assert "Retry-After" in response.headers

    def test_disable_requires_pin(self, client, auth_headers):
        _set_pin(client, auth_headers)
        response = client.post(f"{API}/vault/pin/disable", json={"pin": "0000"}, headers=auth_headers)
        assert response.status_code == 401
        response = client.post(f"{API}/vault/pin/disable", json={"pin": "1234"}, headers=auth_headers)
        assert response.status_code == 204
        assert client.get(f"{API}/vault/status", headers=auth_headers).json()["pin_enabled"] is False

    def test_new_session_must_unlock_again(self, client, db_session, user, auth_headers):
        _set_pin(client, auth_headers)
        unlocked = _unlock(client, auth_headers)

        second = credential_store.start_session(db_session, user, device_id="D1")
        headers = {
            "Authorization": f"Bearer {second.access_token}",
            "X-Vault-Token": unlocked["X-Vault-Token"],
        }
        assert client.get(f"{API}/totp", headers=headers).status_code == 403


class TestAuthenticatorEntries:
    def test_add_from_uri_and_list(self, client, auth_headers, secret_service):
        uri = f"otpauth://totp/GitHub:alice?secret={SECRET}&issuer=GitHub"
        response = client.post(f"{API}/totp", json={"otpauth_uri": uri}, headers=auth_headers)
        assert response.status_code == 201
        entry = response.json()
        assert entry["service_name"] == "GitHub"
        assert entry["account_label"] == "alice"
        assert "secret" not in entry
        assert SECRET in secret_service.secrets.values()

        entries = client.get(f"{API}/totp", headers=auth_headers).json()["entries"]
        assert len(entries) == 1
        assert len(entries[0]["code"]) == 6
        assert 1 <= entries[0]["remaining_seconds"] <= 30

    def test_add_from_secret(self, client, auth_headers):
        response = client.post(f"{API}/totp", headers=auth_headers, json={
            "secret": SECRET, "service_name": "Bank", "digits": 8, "algorithm": "sha256"
        })
        assert response.status_code == 201
        assert response.json()["digits"] == 8
        assert response.json()["algorithm"] == "SHA256"

    def test_invalid_secret(self, client, auth_headers):
        response = client.post(f"{API}/totp", headers=auth_headers, json={"secret": "0189!", "service_name": "Bank"})
        assert response.status_code == 400

    def test_reveal_denied(self, client, auth_headers, secret_service):
        entry = client.post(f"{API}/totp", headers=auth_headers, json={"secret": SECRET, "service_name": "Bank"}).json()
        secret_service.deny = True

        response = client.get(f"{API}/totp/{entry['id']}/code", headers=auth_headers)
        assert response.status_code == 403
        assert response.json()["error"] == "not_permitted"

        listed = client.get(f"{API}/totp", headers=auth_headers).json()["entries"]
        assert listed[0]["code"] is None
        assert listed[0]["error"] == "not_permitted"

    def test_locked_vault_hides_codes(self, client, auth_headers):
        _set_pin(client, auth_headers)
        assert client.get(f"{API}/totp", headers=auth_headers).status_code == 403

        unlocked = _unlock(client, auth_headers)
        assert client.get(f"{API}/totp", headers=unlocked).status_code == 200

    def test_delete(self, client, auth_headers, secret_service):
        entry = client.post(f"{API}/totp", headers=auth_headers, json={"secret": SECRET, "service_name": "Bank"}).json()
        assert client.delete(f"{API}/totp/{entry['id']}", headers=auth_headers).status_code == 204
        assert secret_service.secrets == {}
        assert client.get(f"{API}/totp/{entry['id']}/code", headers=auth_headers).status_code == 404

    def test_entries_are_per_account(self, client, db_session, make_user, auth_headers):
        entry = client.post(f"{API}/totp", headers=auth_headers, json={"secret": SECRET, "service_name": "Bank"}).json()
        other = credential_store.start_session(db_session, make_user(email="b@x.com"))
        other_headers = {"Authorization": f"Bearer {other.access_token}"}
        assert client.get(f"{API}/totp/{entry['id']}/code", headers=other_headers).status_code == 404


class TestProfile:
    def test_get_profile(self, client, auth_headers):
        data = client.get(f"{API}/profile", headers=auth_headers).json()
        assert data["email"] == "a@x.com"
        assert data["display_name"] == "Alice"
        assert data["theme"] == "dark"

    def test_patch_profile(self, client, auth_headers):
        response = client.patch(f"{API}/profile", headers=auth_headers, json={"theme": "light", "avatar_url": "a.png"})
        assert response.status_code == 200
        data = response.json()
        assert data["theme"] == "light"
        assert data["avatar_url"] == "a.png"
        assert data["display_name"] == "Alice"

    def test_invalid_theme(self, client, auth_headers):
        response = client.patch(f"{API}/profile", headers=auth_headers, json={"theme": "neon"})
        assert response.status_code == 422

    def test_trusted_devices(self, client, auth_headers, db_session, user):
        device_trust.register_device(db_session, user.id, "D1")
        device_trust.register_device(db_session, user.id, "D2")
        assert client.get(f"{API}/profile/devices", headers=auth_headers).json()["devices"] == ["D1", "D2"]

        response = client.delete(f"{API}/profile/devices/D1", headers=auth_headers)
        assert response.json()["devices"] == ["D2"]


class TestPinReset:
    def test_reset_forgotten_pin(self, client, auth_headers, dispatcher, user):
        _set_pin(client, auth_headers)
        for _ in range(5):
            client.post(f"{API}/vault/unlock", json={"pin": "9999"}, headers=auth_headers)

        response = client.post(f"{API}/vault/pin/forgot", headers=auth_headers)
        assert response.status_code == 200
        assert dispatcher.sent[-1]["to"] == user.email

        response = client.post(f"{API}/vault/pin/reset", headers=auth_headers, json={
            "code": dispatcher.last_code(user.email),
            "pin": "4321"
        })
        assert response.status_code == 204
        _unlock(client, auth_headers, pin="4321")

    def test_wrong_code_keeps_old_pin(self, client, auth_headers, dispatcher, user):
        _set_pin(client, auth_headers)
        client.post(f"{API}/vault/pin/forgot", headers=auth_headers)
        code = dispatcher.last_code(user.email)
        response = client.post(f"{API}/vault/pin/reset", headers=auth_headers, json={
            "code": "000000" if code != "000000" else "111111",
            "pin": "4321"
        })
        assert response.status_code == 401
        _unlock(client, auth_headers, pin="1234")

    def test_forgot_without_pin(self, client, auth_headers, dispatcher):
        response = client.post(f"{API}/vault/pin/forgot", headers=auth_headers)
        assert response.status_code == 409
        assert dispatcher.sent == []

    def test_requires_sign_in(self, client):
        headers = {"Authorization": "Bearer invalid"}
        assert client.post(f"{API}/vault/pin/forgot", headers=headers).status_code == 401
