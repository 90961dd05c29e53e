"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.current_user.

The hook never rejects a request itself.  It resolves the bearer token to an
active User (or leaves ``g.current_user = None`` and records why in
``g.jwt_error``); service entry points then call ``authorize`` which raises
AuthenticationError for a missing actor.

Blueprints fetch the actor with ``current_actor()``.
"""

import functools
import logging

import jwt as pyjwt
from flask import g, request

from phasetrack.core.exceptions import AuthenticationError
from phasetrack.models import db
from phasetrack.models.auth import User
from phasetrack.services.jwt_service import decode_access_token, user_id_from_payload

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user = None
        g.jwt_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
            user_id = user_id_from_payload(payload)
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "Token has expired"
            return
        except pyjwt.InvalidTokenError:
            g.jwt_error = "Invalid token"
            return

        user = db.session.get(User, user_id)
        if user is None:
            g.jwt_error = "User not found"
            return
        if not user.is_active:
            g.jwt_error = "Account is deactivated"
            return
        g.current_user = user


def current_actor() -> User:
    """Return the authenticated user or raise AuthenticationError."""
    user = getattr(g, "current_user", None)
    if user is None:
        raise AuthenticationError(getattr(g, "jwt_error", None) or "Authentication required")
    return user


def login_required(fn):
    """Route decorator: reject the request unless a valid access token was sent."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        current_actor()
        return fn(*args, **kwargs)

    return wrapper
