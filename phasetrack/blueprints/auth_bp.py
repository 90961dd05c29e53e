"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login            — Email + password → JWT pair
  POST /api/v1/auth/refresh          — Refresh token → rotated JWT pair
  POST /api/v1/auth/logout           — Revoke refresh token (or every session)
  GET  /api/v1/auth/me               — Current user profile
  POST /api/v1/auth/change-password  — Change own password, revoke sessions
"""

import logging

import jwt as pyjwt
from flask import Blueprint, current_app, request

from phasetrack import limiter
from phasetrack.blueprints import json_body
from phasetrack.core.exceptions import AuthenticationError, ValidationError
from phasetrack.middleware.jwt_auth import current_actor
from phasetrack.services.jwt_service import (
    close_all_sessions,
    close_session,
    decode_refresh_token,
    find_session,
    generate_token_pair,
    open_session,
    rotate_session,
    user_id_from_payload,
)
from phasetrack.services.user_service import authenticate_user, change_password, get_user
from phasetrack.utils.errors import api_success

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _login_limit():
    return current_app.config.get("LOGIN_RATE_LIMIT", "10 per minute")


def _token_body(tokens: dict, user) -> dict:
    return {
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
        "user": user.to_dict(),
    }


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
@limiter.limit(_login_limit)
def login():
    """
    Authenticate with email + password, return JWT pair.

    Body: { "email": "...", "password": "..." }
    """
    data = json_body()
    email = str(data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password are required",
                              {"email": "required", "password": "required"})

    user = authenticate_user(email, password)
    tokens = generate_token_pair(user.id, user.role)
    open_session(user.id, tokens, request.remote_addr, request.headers.get("User-Agent"))
    logger.info("User %s logged in", user.id)
    return api_success(_token_body(tokens, user), message="Login successful")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """
    Exchange a refresh token for a new pair. The old session is revoked.

    Body: { "refresh_token": "..." }
    """
    raw = json_body().get("refresh_token") or ""
    if not raw:
        raise ValidationError("refresh_token is required", {"refresh_token": "required"})

    try:
        payload = decode_refresh_token(raw)
        user_id = user_id_from_payload(payload)
    except pyjwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Refresh token has expired") from exc
    except pyjwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid refresh token") from exc

    session = find_session(user_id, raw)
    if session is None:
        raise AuthenticationError("Session expired or revoked")

    user = get_user(user_id)
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")

    tokens = generate_token_pair(user.id, user.role)
    rotate_session(session, tokens, request.remote_addr, request.headers.get("User-Agent"))
    return api_success(_token_body(tokens, user))


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    """
    Revoke one session by its refresh token, or every session of the
    caller with ``{"all": true}``.
    """
    data = json_body()
    if data.get("all"):
        actor = current_actor()
        close_all_sessions(actor.id)
        return api_success(message="Logged out of all sessions")

    raw = data.get("refresh_token") or ""
    if not raw:
        raise ValidationError("refresh_token is required", {"refresh_token": "required"})
    if not close_session(raw):
        logger.debug("Logout with unknown or already revoked refresh token")
    return api_success(message="Logged out")


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
def me():
    return api_success(current_actor().to_dict())


@auth_bp.route("/change-password", methods=["POST"])
def change_own_password():
    actor = current_actor()
    data = json_body()
    change_password(actor, data.get("current_password"), data.get("new_password"))
    close_all_sessions(actor.id)
    return api_success(message="Password changed; please log in again")
