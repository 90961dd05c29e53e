"""
PhaseTrack
Engineer activity reports (supervisors and administrators).

Endpoints:
    GET /api/v1/engineer-activity/daily      ?date=YYYY-MM-DD (default today)
    GET /api/v1/engineer-activity/summary    ?start_date&end_date (default last 7 days)
"""

from flask import Blueprint, request

from phasetrack.middleware.jwt_auth import current_actor
from phasetrack.services import reporting
from phasetrack.utils.errors import api_success

activity_bp = Blueprint("engineer_activity", __name__, url_prefix="/api/v1/engineer-activity")


@activity_bp.route("/daily", methods=["GET"])
def daily():
    result = reporting.daily_activity(current_actor(), request.args.get("date"))
    return api_success(result, message=f"Engineer activity report for {result['summary']['date']}")


@activity_bp.route("/summary", methods=["GET"])
def summary():
    return api_success(reporting.activity_summary(
        current_actor(),
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
    ))
