"""
PhaseTrack
Blueprint registry.
"""

from flask import request

from phasetrack.core.exceptions import ValidationError


def pagination_args(default_limit=50, max_limit=500):
    """Read limit/offset pagination from the query string.

    Query params:
        limit  — max items (default ``default_limit``, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (limit, offset)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return max(limit, 1), offset


def page(items, total, limit, offset) -> dict:
    return {"items": items, "total": total, "limit": limit, "offset": offset}


def json_body() -> dict:
    """Request JSON as a dict; a non-object body is a validation error."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def int_arg(name):
    """Optional integer query parameter."""
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer", {name: "invalid"}) from exc


def bool_arg(name, default=False) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
