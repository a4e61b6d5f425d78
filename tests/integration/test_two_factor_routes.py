"""Integration tests for the 2FA challenge and lifecycle API routes."""
import pytest
import uuid
from datetime import timezone

import pyotp

from echoshop.models import AuditLog, UserSecuritySettings
from echoshop.utils.clock import utcnow


def wrong_code(secret):
    totp = pyotp.TOTP(secret)
    now = utcnow().replace(tzinfo=timezone.utc)
    valid = {totp.at(now, counter_offset=offset) for offset in (-1, 0, 1)}
    return next(c for c in ("000000", "111111", "222222", "333333") if c not in valid)


def audit_actions(db_session, user):
    return [a for (a,) in db_session.query(AuditLog.action).filter(AuditLog.user_id == user.id).all()]


@pytest.mark.integration
class TestRequireEndpoint:
    """POST /api/auth/2fa/require"""

    def test_shopper_login_not_required(self, client, shopper_user):
        response = client.post("/api/auth/2fa/require", json={"purpose": "login", "userId": str(shopper_user.id)})

        assert response.status_code == 200
        assert response.json() == {"required": False}

    def test_owner_login_challenge_without_authentication(self, client, owner_user, enable_2fa):
        enable_2fa(owner_user)

        response = client.post("/api/auth/2fa/require", json={"purpose": "login", "userId": str(owner_user.id)})

        assert response.status_code == 200
        data = response.json()
        assert data["required"] is True
        assert data["enabled"] is True
        assert len(data["sessionToken"]) >= 40
        assert "expiresAt" in data

    def test_unknown_user(self, client):
        response = client.post("/api/auth/2fa/require", json={"purpose": "login", "userId": str(uuid.uuid4())})

        assert response.status_code == 404

    def test_critical_action_requires_authentication(self, client):
        response = client.post(
            "/api/auth/2fa/require",
            json={"purpose": "critical_action", "actionType": "delete_account"},
        )

        assert response.status_code == 401

    def test_critical_action_without_action_type(self, client, owner_user, auth_headers):
        response = client.post(
            "/api/auth/2fa/require",
            json={"purpose": "critical_action"},
            headers=auth_headers(owner_user),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_action_type(self, client, owner_user, auth_headers):
        response = client.post(
            "/api/auth/2fa/require",
            json={"purpose": "critical_action", "actionType": "launch_rockets"},
            headers=auth_headers(owner_user),
        )

        assert response.status_code == 400

    def test_critical_action_for_another_user(self, client, owner_user, shopper_user, auth_headers):
        response = client.post(
            "/api/auth/2fa/require",
            json={"purpose": "critical_action", "actionType": "delete_account", "userId": str(shopper_user.id)},
            headers=auth_headers(owner_user),
        )

        assert response.status_code == 403

    def test_setup_required_when_not_enabled(self, client, vendor_user, auth_headers):
        response = client.post(
            "/api/auth/2fa/require",
            json={"purpose": "critical_action", "actionType": "delete_product"},
            headers=auth_headers(vendor_user),
        )

        assert response.status_code == 403
        data = response.json()
        assert data["code"] == "2FA_SETUP_REQUIRED"
        assert data["required"] is True
        assert data["enabled"] is False
        assert data["requires2FA"] is True

    def test_action_context_is_stored(self, client, vendor_user, enable_2fa, auth_headers, db_session):
        from echoshop.models import TwoFactorSession

        enable_2fa(vendor_user)
        response = client.post(
            "/api/auth/2fa/require",
            json={"purpose": "critical_action", "actionType": "delete_product", "actionContext": {"productId": "p-1"}},
            headers=auth_headers(vendor_user),
        )

        token = response.json()["sessionToken"]
        session = db_session.query(TwoFactorSession).filter(TwoFactorSession.session_token == token).one()
        assert session.action_type == "delete_product"
        assert session.action_context == {"productId": "p-1"}

    def test_unknown_field_rejected(self, client, shopper_user):
        response = client.post(
            "/api/auth/2fa/require",
            json={"purpose": "login", "userId": str(shopper_user.id), "sneaky": True},
        )

        assert response.status_code == 400


@pytest.mark.integration
class TestCriticalActionFlow:
    """End to end: require, verify, then the protected action"""

    def test_delete_account_with_verified_session(self, client, owner_user, enable_2fa, auth_headers,
                                                  verified_action_token, db_session):
        secret, _ = enable_2fa(owner_user)
        token = verified_action_token(owner_user, secret, "delete_account")

        response = client.post(
            "/api/account/delete",
            json={"reason": "closing shop"},
            headers=auth_headers(owner_user, **{"x-2fa-session-token": token}),
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        db_session.refresh(owner_user)
        assert owner_user.is_active is False
        assert "account_delete" in audit_actions(db_session, owner_user)

    def test_delete_account_without_session(self, client, owner_user, enable_2fa, auth_headers):
        enable_2fa(owner_user)

        response = client.post("/api/account/delete", headers=auth_headers(owner_user))

        assert response.status_code == 403
        data = response.json()
        assert data["requires2FA"] is True
        assert data["code"] == "2FA_REQUIRED"

    def test_delete_account_with_unverified_session(self, client, owner_user, enable_2fa, auth_headers,
                                                    verified_action_token):
        secret, _ = enable_2fa(owner_user)
        verified_action_token(owner_user, secret, "delete_account")
        unverified = client.post(
            "/api/auth/2fa/require",
            json={"purpose": "critical_action", "actionType": "delete_account"},
            headers=auth_headers(owner_user),
        ).json()["sessionToken"]

        response = client.post(
            "/api/account/delete",
            headers=auth_headers(owner_user, **{"x-2fa-session-token": unverified}),
        )

        assert response.status_code == 403
        assert response.json()["requires2FA"] is True

    def test_delete_account_without_2fa_enabled(self, client, shopper_user, auth_headers):
        response = client.post("/api/account/delete", headers=auth_headers(shopper_user))

        assert response.status_code == 403
        assert response.json()["requires2FA"] is True

    def test_alternate_header_accepted(self, client, owner_user, enable_2fa, auth_headers, verified_action_token):
        secret, _ = enable_2fa(owner_user)
        token = verified_action_token(owner_user, secret, "delete_account")

        response = client.post(
            "/api/account/delete",
            headers=auth_headers(owner_user, **{"2fa-session-token": token}),
        )

        assert response.status_code == 200


@pytest.mark.integration
class TestVerifyEndpoint:
    """POST /api/auth/2fa/verify and /verify-login"""

    def _require(self, client, user, auth_headers, action_type="delete_account"):
        return client.post(
            "/api/auth/2fa/require",
            json={"purpose": "critical_action", "actionType": action_type},
            headers=auth_headers(user),
        ).json()["sessionToken"]

    def test_wrong_code_reports_remaining_attempts(self, client, owner_user, enable_2fa, auth_headers):
        secret, _ = enable_2fa(owner_user)
        token = self._require(client, owner_user, auth_headers)

        response = client.post(
            "/api/auth/2fa/verify",
            json={"sessionToken": token, "code": wrong_code(secret)},
            headers=auth_headers(owner_user),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_CODE"
        assert response.json()["remainingAttempts"] == 4

    def test_lockout_after_five_failures(self, client, owner_user, enable_2fa, auth_headers, db_session):
        secret, _ = enable_2fa(owner_user)
        token = self._require(client, owner_user, auth_headers)
        bad = wrong_code(secret)

        statuses = [
            client.post(
                "/api/auth/2fa/verify",
                json={"sessionToken": token, "code": bad},
                headers=auth_headers(owner_user),
            ).status_code
            for _ in range(5)
        ]
        locked = client.post(
            "/api/auth/2fa/verify",
            json={"sessionToken": token, "code": pyotp.TOTP(secret).now()},
            headers=auth_headers(owner_user),
        )

        assert statuses == [400] * 5
        assert locked.status_code == 423
        assert locked.json()["code"] == "LOCKED"
        row = db_session.query(UserSecuritySettings).filter(UserSecuritySettings.user_id == owner_user.id).one()
        db_session.refresh(row)
        assert row.failed_2fa_attempts == 5

    def test_backup_code_verifies(self, client, owner_user, enable_2fa, auth_headers):
        _, backup_codes = enable_2fa(owner_user)
        token = self._require(client, owner_user, auth_headers)

        response = client.post(
            "/api/auth/2fa/verify",
            json={"sessionToken": token, "backupCode": backup_codes[3]},
            headers=auth_headers(owner_user),
        )

        assert response.status_code == 200
        assert response.json()["usedBackupCode"] is True

        status = client.get("/api/security/2fa/status", headers=auth_headers(owner_user)).json()
        assert status["backupCodesRemaining"] == 7

    def test_session_of_another_user(self, client, owner_user, make_user, enable_2fa, auth_headers):
        secret, _ = enable_2fa(owner_user)
        other = make_user("admin")
        token = self._require(client, owner_user, auth_headers)

        response = client.post(
            "/api/auth/2fa/verify",
            json={"sessionToken": token, "code": pyotp.TOTP(secret).now()},
            headers=auth_headers(other),
        )

        assert response.status_code == 403

    def test_malformed_code_rejected(self, client, owner_user, auth_headers):
        response = client.post(
            "/api/auth/2fa/verify",
            json={"sessionToken": "abc", "code": "12ab56"},
            headers=auth_headers(owner_user),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_missing_token(self, client, owner_user, auth_headers):
        response = client.post(
            "/api/auth/2fa/verify",
            json={"code": "123456"},
            headers=auth_headers(owner_user),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "SESSION_TOKEN_REQUIRED"

    def test_login_session_not_accepted_for_critical_action(self, client, owner_user, enable_2fa, auth_headers):
        secret, _ = enable_2fa(owner_user)
        token = client.post(
            "/api/auth/2fa/require", json={"purpose": "login", "userId": str(owner_user.id)}
        ).json()["sessionToken"]

        response = client.post(
            "/api/auth/2fa/verify",
            json={"sessionToken": token, "code": pyotp.TOTP(secret).now()},
            headers=auth_headers(owner_user),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_SESSION_TYPE"

    def test_verify_login(self, client, owner_user, enable_2fa):
        secret, _ = enable_2fa(owner_user)
        token = client.post(
            "/api/auth/2fa/require", json={"purpose": "login", "userId": str(owner_user.id)}
        ).json()["sessionToken"]

        response = client.post(
            "/api/auth/2fa/verify-login",
            json={"sessionToken": token, "code": pyotp.TOTP(secret).now()},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["userId"] == str(owner_user.id)
        assert data["sessionToken"] == token

    def test_verify_twice(self, client, owner_user, enable_2fa, auth_headers, db_session):
        secret, _ = enable_2fa(owner_user)
        token = self._require(client, owner_user, auth_headers)
        body = {"sessionToken": token, "code": pyotp.TOTP(secret).now()}

        first = client.post("/api/auth/2fa/verify", json=body, headers=auth_headers(owner_user))
        second = client.post("/api/auth/2fa/verify", json=body, headers=auth_headers(owner_user))

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["code"] == "SESSION_ALREADY_VERIFIED"
        assert audit_actions(db_session, owner_user).count("2fa_verification_failed") == 1

    def test_cipher_is_injected(self, client, owner_user, enable_2fa, auth_headers, db_session):
        """A secret sealed under another key is reported, not counted as a wrong code"""
        from echoshop.main import app
        from echoshop.services.encryption import SecretCipher, get_secret_cipher

        secret, _ = enable_2fa(owner_user)
        app.dependency_overrides[get_secret_cipher] = lambda: SecretCipher("rotated-key", "echoshop-2fa-salt")
        token = self._require(client, owner_user, auth_headers)

        response = client.post(
            "/api/auth/2fa/verify",
            json={"sessionToken": token, "code": pyotp.TOTP(secret).now()},
            headers=auth_headers(owner_user),
        )

        assert response.status_code == 500
        assert response.json()["code"] == "2FA_SECRET_ERROR"
        row = db_session.query(UserSecuritySettings).filter(UserSecuritySettings.user_id == owner_user.id).one()
        assert row.failed_2fa_attempts == 0


@pytest.mark.integration
class TestLifecycleEndpoints:
    """Setup, enable, status and disable"""

    def test_full_lifecycle(self, client, vendor_user, auth_headers, db_session):
        headers = auth_headers(vendor_user)

        status = client.get("/api/security/2fa/status", headers=headers).json()
        assert status == {"enabled": False, "enabledAt": None, "backupCodesRemaining": 0}

        setup = client.post("/api/security/2fa/setup", headers=headers)
        assert setup.status_code == 200
        data = setup.json()
        assert data["qrCode"].startswith("data:image/png;base64,")
        assert data["provisioningUri"].startswith("otpauth://totp/")
        assert setup.headers["Cache-Control"].startswith("no-store")

        enable = client.post(
            "/api/security/2fa/enable",
            json={"code": pyotp.TOTP(data["secret"]).now()},
            headers=headers,
        )
        assert enable.status_code == 200
        assert len(enable.json()["backupCodes"]) == 8

        status = client.get("/api/security/2fa/status", headers=headers).json()
        assert status["enabled"] is True
        assert status["backupCodesRemaining"] == 8

        again = client.post("/api/security/2fa/setup", headers=headers)
        assert again.status_code == 400
        assert again.json()["code"] == "2FA_ALREADY_ENABLED"

        wrong = client.post("/api/security/2fa/disable", json={"password": "nope"}, headers=headers)
        assert wrong.status_code == 400
        assert wrong.json()["code"] == "INVALID_PASSWORD"

        disable = client.post("/api/security/2fa/disable", json={"password": "CorrectHorse9!"}, headers=headers)
        assert disable.status_code == 200

        status = client.get("/api/security/2fa/status", headers=headers).json()
        assert status["enabled"] is False
        assert {"2fa_setup_initiated", "2fa_enabled", "2fa_disabled"} <= set(audit_actions(db_session, vendor_user))

    def test_enable_without_setup(self, client, vendor_user, auth_headers):
        response = client.post("/api/security/2fa/enable", json={"code": "123456"}, headers=auth_headers(vendor_user))

        assert response.status_code == 400
        assert response.json()["code"] == "SETUP_NOT_STARTED"

    def test_enable_with_wrong_code(self, client, vendor_user, auth_headers):
        headers = auth_headers(vendor_user)
        secret = client.post("/api/security/2fa/setup", headers=headers).json()["secret"]

        response = client.post("/api/security/2fa/enable", json={"code": wrong_code(secret)}, headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_CODE"

    def test_secret_stored_encrypted(self, client, vendor_user, auth_headers, db_session):
        headers = auth_headers(vendor_user)
        secret = client.post("/api/security/2fa/setup", headers=headers).json()["secret"]
        client.post("/api/security/2fa/enable", json={"code": pyotp.TOTP(secret).now()}, headers=headers)

        row = db_session.query(UserSecuritySettings).filter(UserSecuritySettings.user_id == vendor_user.id).one()
        db_session.refresh(row)
        assert secret not in row.two_factor_secret_encrypted
        assert row.two_factor_secret_encrypted.count(":") == 2

    def test_disable_when_not_enabled(self, client, vendor_user, auth_headers):
        response = client.post(
            "/api/security/2fa/disable", json={"password": "CorrectHorse9!"}, headers=auth_headers(vendor_user)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "2FA_NOT_ENABLED"

    def test_status_requires_authentication(self, client):
        response = client.get("/api/security/2fa/status")

        assert response.status_code == 401
        assert response.json()["code"] == "HTTP_ERROR"
