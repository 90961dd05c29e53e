"""
User administration endpoints.

    GET  /api/v1/users               — list (role, include_inactive filters)
    POST /api/v1/users               — create an account
    PUT  /api/v1/users/<id>/active   — activate / deactivate
    GET  /api/v1/users/<id>/project-breakdown — hours by project and phase
"""

from flask import Blueprint, request

from phasetrack.blueprints import bool_arg, json_body
from phasetrack.core.exceptions import ValidationError
from phasetrack.middleware.jwt_auth import current_actor
from phasetrack.services.reporting import user_project_breakdown
from phasetrack.services.user_service import list_users, register_user, set_user_active
from phasetrack.utils.errors import api_success

user_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


@user_bp.route("", methods=["GET"])
def list_all():
    users = list_users(
        current_actor(),
        role=request.args.get("role") or None,
        include_inactive=bool_arg("include_inactive"),
    )
    return api_success(users)


@user_bp.route("", methods=["POST"])
def create():
    user = register_user(current_actor(), json_body())
    return api_success(user, message="User created", status=201)


@user_bp.route("/<int:user_id>/active", methods=["PUT"])
def set_active(user_id):
    data = json_body()
    if "is_active" not in data:
        raise ValidationError("is_active is required", {"is_active": "required"})
    return api_success(set_user_active(current_actor(), user_id, bool(data["is_active"])))


@user_bp.route("/<int:user_id>/project-breakdown", methods=["GET"])
def project_breakdown(user_id):
    return api_success(user_project_breakdown(user_id, current_actor()))
