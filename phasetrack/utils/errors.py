"""Standardised API responses and app-wide error handlers.

Every response body uses the same envelope::

    {"success": true,  "data": ..., "message": "..."}
    {"success": false, "error": "...", "code": "ERR_...", "details": {...}}

Usage
-----
    from phasetrack.utils.errors import api_success, api_error, E

    return api_success(phase.to_dict(), message="Phase approved")
    return api_error(E.VALIDATION_REQUIRED, "hours is required")
"""

from __future__ import annotations

import logging

from flask import jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from phasetrack.core.exceptions import AppError
from phasetrack.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION = "ERR_VALIDATION"
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    BAD_REQUEST = "ERR_BAD_REQUEST"

    # Auth – HTTP 401 / 403
    AUTHENTICATION = "ERR_AUTHENTICATION"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"

    # Conflict – HTTP 409
    CONFLICT = "ERR_CONFLICT"

    # Content type – HTTP 415
    UNSUPPORTED_MEDIA = "ERR_UNSUPPORTED_MEDIA_TYPE"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION: 400,
    E.VALIDATION_REQUIRED: 400,
    E.BAD_REQUEST: 400,
    E.AUTHENTICATION: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.CONFLICT: 409,
    E.UNSUPPORTED_MEDIA: 415,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}

_HTTP_CODES: dict[int, str] = {
    400: E.BAD_REQUEST,
    401: E.AUTHENTICATION,
    403: E.FORBIDDEN,
    404: E.NOT_FOUND,
    405: E.METHOD_NOT_ALLOWED,
    409: E.CONFLICT,
    415: E.UNSUPPORTED_MEDIA,
    429: E.RATE_LIMITED,
}


def api_success(data=None, *, message: str | None = None, status: int = 200):
    """Return a standard JSON success response."""
    body: dict = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    ``status`` falls back to ``_DEFAULT_STATUS[code]``, then to ``400``.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Map domain exceptions and stray HTTP errors onto the envelope."""

    @app.errorhandler(AppError)
    def handle_app_error(exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.message)
            return api_error(exc.code, "Internal server error", status=exc.status_code)
        logger.info("%s: %s", type(exc).__name__, exc.message)
        return api_error(exc.code, exc.message, status=exc.status_code, details=exc.details)

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(exc: IntegrityError):
        db.session.rollback()
        logger.warning("Integrity error: %s", exc.orig)
        return api_error(E.CONFLICT, "Duplicate or constraint violation", status=409)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        code = _HTTP_CODES.get(exc.code, E.BAD_REQUEST if exc.code < 500 else E.INTERNAL)
        return api_error(code, exc.description or exc.name, status=exc.code)

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        db.session.rollback()
        logger.exception("Unhandled error: %s", exc)
        return api_error(E.INTERNAL, "Internal server error", status=500)
