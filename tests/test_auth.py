"""
Authentication tests.

Covers:
    - Password hashing
    - JWT generation / decoding, token types, string subject
    - Login, refresh rotation, logout (single and all sessions)
    - /me with missing, invalid, expired and valid tokens
    - Deactivated accounts
    - Password change revokes sessions
    - Login throttling is off under TestingConfig
    - Own profile read and update
"""

from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest
from flask import current_app

from phasetrack.models import db
from phasetrack.models.audit import AuditLog
from phasetrack.models.auth import User, UserSession
from phasetrack.services.jwt_service import (
    decode_access_token,
    decode_refresh_token,
    generate_access_token,
    generate_token_pair,
    hash_token,
    user_id_from_payload,
)
from phasetrack.utils.crypto import hash_password, verify_password

TEST_PASSWORD = "correct-horse-1"  # matches conftest.make_user


def _login(client, email, password=TEST_PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


# ═════════════════════════════════════════════════════════════════════════════
# BLOCK 1 — Crypto & tokens
# ═════════════════════════════════════════════════════════════════════════════


class TestCrypto:
    def test_hash_and_verify(self):
        hashed = hash_password("s3cret-pass", rounds=4)
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong", hashed)


class TestTokens:
    def test_access_token_round_trip(self, engineer):
        payload = decode_access_token(generate_access_token(engineer.id, engineer.role))
        assert payload["sub"] == str(engineer.id)
        assert payload["role"] == "engineer"
        assert user_id_from_payload(payload) == engineer.id

    def test_refresh_token_is_not_an_access_token(self, engineer):
        pair = generate_token_pair(engineer.id, engineer.role)
        assert decode_refresh_token(pair["refresh_token"])["type"] == "refresh"
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token(pair["refresh_token"])
        assert pair["token_hash"] == hash_token(pair["refresh_token"])

    def test_non_numeric_subject(self):
        with pytest.raises(pyjwt.InvalidTokenError):
            user_id_from_payload({"sub": "abc"})


# ═════════════════════════════════════════════════════════════════════════════
# BLOCK 2 — Login / refresh / logout
# ═════════════════════════════════════════════════════════════════════════════


class TestLogin:
    def test_success(self, client, engineer):
        res = _login(client, "ELI@studio.test")
        assert res.status_code == 200
        body = res.get_json()
        assert body["success"] is True
        assert body["message"] == "Login successful"
        assert body["data"]["token_type"] == "Bearer"
        assert body["data"]["user"]["id"] == engineer.id
        assert UserSession.query.filter_by(user_id=engineer.id, is_active=True).count() == 1

    def test_wrong_password(self, client, engineer):
        res = _login(client, engineer.email, "nope-nope")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_AUTHENTICATION"

    def test_missing_fields(self, client):
        res = client.post("/api/v1/auth/login", json={"email": "eli@studio.test"})
        assert res.status_code == 400

    def test_deactivated_account(self, client, engineer):
        engineer.is_active = False
        db.session.commit()
        res = _login(client, engineer.email)
        assert res.status_code == 401
        assert res.get_json()["error"] == "Account is deactivated"

    def test_not_throttled_in_testing(self, client, engineer):
        codes = {_login(client, engineer.email, "bad-password").status_code for _ in range(15)}
        assert codes == {401}


class TestRefreshLogout:
    def test_refresh_rotates(self, client, engineer):
        tokens = _login(client, engineer.email).get_json()["data"]
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert res.status_code == 200
        new_tokens = res.get_json()["data"]
        assert new_tokens["refresh_token"] != tokens["refresh_token"]

        reuse = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert reuse.status_code == 401

    def test_refresh_rejects_access_token(self, client, engineer):
        tokens = _login(client, engineer.email).get_json()["data"]
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert res.status_code == 401

    def test_logout_revokes_refresh_token(self, client, engineer):
        tokens = _login(client, engineer.email).get_json()["data"]
        res = client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert res.status_code == 200
        again = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert again.status_code == 401

    def test_logout_everywhere(self, client, engineer, auth_headers):
        _login(client, engineer.email)
        _login(client, engineer.email)
        res = client.post("/api/v1/auth/logout", json={"all": True}, headers=auth_headers(engineer))
        assert res.status_code == 200
        assert UserSession.query.filter_by(user_id=engineer.id, is_active=True).count() == 0

    def test_change_password(self, client, engineer, auth_headers):
        _login(client, engineer.email)
        res = client.post("/api/v1/auth/change-password", headers=auth_headers(engineer),
                          json={"current_password": TEST_PASSWORD, "new_password": "brand-new-pass"})
        assert res.status_code == 200
        assert UserSession.query.filter_by(user_id=engineer.id, is_active=True).count() == 0
        assert _login(client, engineer.email, "brand-new-pass").status_code == 200


# ═════════════════════════════════════════════════════════════════════════════
# BLOCK 3 — Bearer middleware
# ═════════════════════════════════════════════════════════════════════════════


class TestMe:
    def test_with_token(self, client, supervisor, auth_headers):
        res = client.get("/api/v1/auth/me", headers=auth_headers(supervisor))
        assert res.status_code == 200
        assert res.get_json()["data"]["email"] == supervisor.email

    def test_without_token(self, client):
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 401
        assert res.get_json()["error"] == "Authentication required"

    def test_garbage_token(self, client):
        res = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid token"

    def test_expired_token(self, client, engineer):
        now = datetime.now(timezone.utc)
        token = pyjwt.encode(
            {"sub": str(engineer.id), "role": engineer.role, "type": "access",
             "iat": now - timedelta(hours=2), "exp": now - timedelta(hours=1)},
            current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"],
            algorithm="HS256",
        )
        res = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Token has expired"

    def test_token_for_deleted_user(self, client):
        token = generate_access_token(987654, "engineer")
        res = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "User not found"


# ═════════════════════════════════════════════════════════════════════════════
# BLOCK 4 — Own profile
# ═════════════════════════════════════════════════════════════════════════════


class TestProfile:
    def test_get(self, client, engineer, auth_headers):
        res = client.get("/api/v1/profile", headers=auth_headers(engineer))
        assert res.status_code == 200
        assert res.get_json()["data"]["email"] == "eli@studio.test"

    def test_requires_token(self, client):
        assert client.get("/api/v1/profile").status_code == 401

    def test_update_name_and_email(self, client, engineer, auth_headers):
        res = client.put("/api/v1/profile", headers=auth_headers(engineer),
                         json={"name": "  Eli Ozturk ", "email": "Eli.O@Studio.test"})
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["name"] == "Eli Ozturk"
        assert data["email"] == "eli.o@studio.test"
        row = AuditLog.query.filter_by(entity_type="user", entity_id=str(engineer.id)).one()
        assert set(row.diff) == {"name", "email"}

    def test_administrator_may_edit_own_profile(self, client, administrator, auth_headers):
        res = client.put("/api/v1/profile", headers=auth_headers(administrator), json={"name": "Ada L."})
        assert res.status_code == 200
        assert res.get_json()["data"]["name"] == "Ada L."

    @pytest.mark.parametrize("body", [{}, {"role": "supervisor"}, {"name": "   "}, {"email": "not-an-email"}])
    def test_rejected_bodies(self, client, engineer, auth_headers, body):
        res = client.put("/api/v1/profile", headers=auth_headers(engineer), json=body)
        assert res.status_code == 400
        assert db.session.get(User, engineer.id).role == "engineer"

    def test_email_taken(self, client, engineer, engineer2, auth_headers):
        res = client.put("/api/v1/profile", headers=auth_headers(engineer),
                         json={"email": "nora@studio.test"})
        assert res.status_code == 409

    def test_unchanged_values_write_nothing(self, client, engineer, auth_headers):
        res = client.put("/api/v1/profile", headers=auth_headers(engineer),
                         json={"email": "eli@studio.test"})
        assert res.status_code == 200
        assert AuditLog.query.filter_by(entity_type="user").count() == 0
