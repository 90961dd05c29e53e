"""
PhaseTrack
Own-account profile.

    GET /api/v1/profile   the caller's account
    PUT /api/v1/profile   change name and/or email
"""

from flask import Blueprint

from phasetrack.blueprints import json_body
from phasetrack.middleware.jwt_auth import current_actor
from phasetrack.services.user_service import get_profile, update_profile
from phasetrack.utils.errors import api_success

profile_bp = Blueprint("profile", __name__, url_prefix="/api/v1/profile")


@profile_bp.route("", methods=["GET"])
def show():
    return api_success(get_profile(current_actor()))


@profile_bp.route("", methods=["PUT"])
def update():
    return api_success(update_profile(current_actor(), json_body()), message="Profile updated")
