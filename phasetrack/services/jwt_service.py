"""
JWT Service — bearer tokens and refresh sessions.

Two token types are signed with HS256 using JWT_SECRET_KEY (falls back to
SECRET_KEY):

    access   {"sub": "<user id>", "role": ..., "type": "access", iat, exp, jti}
             lifetime JWT_ACCESS_EXPIRES seconds (default 15 min)
    refresh  {"sub": "<user id>", "type": "refresh", iat, exp, jti}
             lifetime JWT_REFRESH_EXPIRES seconds (default 7 days)

``sub`` is always a string; ``user_id_from_payload`` converts it back.

A refresh token is only honoured while its UserSession row is active.  The
row stores the token's SHA-256, never the token.  Refreshing retires the
row and opens a new one, so a replayed refresh token is rejected.
"""

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from phasetrack.models import db
from phasetrack.models.auth import UserSession
from phasetrack.utils.helpers import atomic

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
_DEFAULT_LIFETIMES = {"access": 900, "refresh": 604800}


def _secret() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _lifetime(token_type: str) -> int:
    key = f"JWT_{token_type.upper()}_EXPIRES"
    return int(current_app.config.get(key) or _DEFAULT_LIFETIMES[token_type])


def _encode(user_id: int, token_type: str, **claims) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=_lifetime(token_type))
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "iat": now,
        "exp": expires_at,
        "jti": uuid.uuid4().hex,
        **claims,
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM), expires_at


# ═══════════════════════════════════════════════════════════════
# Issue
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: int, role: str) -> str:
    token, _ = _encode(user_id, "access", role=role)
    return token


def generate_token_pair(user_id: int, role: str) -> dict:
    """Access + refresh tokens, plus what ``open_session`` needs to store."""
    refresh_token, refresh_expires_at = _encode(user_id, "refresh")
    return {
        "access_token": generate_access_token(user_id, role),
        "refresh_token": refresh_token,
        "token_hash": hash_token(refresh_token),
        "expires_at": refresh_expires_at,
        "token_type": "Bearer",
        "expires_in": _lifetime("access"),
    }


# ═══════════════════════════════════════════════════════════════
# Verify
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str) -> dict:
    """
    Verify signature and expiry, then check the ``type`` claim.

    Raises:
        jwt.ExpiredSignatureError: token is past ``exp``.
        jwt.InvalidTokenError: bad signature, malformed, or wrong type.
    """
    payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, "access")


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, "refresh")


def user_id_from_payload(payload: dict) -> int:
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise jwt.InvalidTokenError("Token subject is not a user id") from exc


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ═══════════════════════════════════════════════════════════════
# Refresh sessions
# Every write goes through atomic(); blueprints never touch UserSession.
# ═══════════════════════════════════════════════════════════════

def _new_session(user_id: int, token_hash: str, expires_at: datetime,
                 ip_address: str | None, user_agent: str | None) -> UserSession:
    session = UserSession(
        user_id=user_id,
        token_hash=token_hash,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=expires_at,
    )
    db.session.add(session)
    return session


def open_session(user_id: int, tokens: dict, ip_address: str | None = None,
                 user_agent: str | None = None) -> UserSession:
    """Store the refresh half of a freshly issued token pair."""
    with atomic():
        session = _new_session(user_id, tokens["token_hash"], tokens["expires_at"],
                               ip_address, user_agent)
    return session


def find_session(user_id: int, raw_refresh_token: str) -> UserSession | None:
    """Active, unexpired session matching the presented refresh token."""
    session = UserSession.query.filter_by(
        user_id=user_id, token_hash=hash_token(raw_refresh_token), is_active=True,
    ).first()
    if session is None or session.is_expired:
        return None
    return session


def rotate_session(old_session: UserSession, tokens: dict, ip_address: str | None = None,
                   user_agent: str | None = None) -> UserSession:
    """Retire ``old_session`` and store the new pair in the same transaction."""
    with atomic():
        old_session.is_active = False
        old_session.last_used_at = datetime.now(timezone.utc)
        session = _new_session(old_session.user_id, tokens["token_hash"], tokens["expires_at"],
                               ip_address, user_agent)
    return session


def close_session(raw_refresh_token: str) -> bool:
    """Revoke the session behind a refresh token. False when none was active."""
    with atomic():
        count = (
            UserSession.query
            .filter_by(token_hash=hash_token(raw_refresh_token), is_active=True)
            .update({"is_active": False})
        )
    return bool(count)


def close_all_sessions(user_id: int) -> int:
    """Logout everywhere; returns how many sessions were revoked."""
    with atomic():
        count = (
            UserSession.query
            .filter_by(user_id=user_id, is_active=True)
            .update({"is_active": False})
        )
    logger.info("Revoked %d session(s) for user %s", count, user_id)
    return count
