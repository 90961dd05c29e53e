"""
PhaseTrack
Progress blueprint — manual overrides and progress read models.

Endpoints:
    POST /api/v1/progress/work-log/<id>                 per-entry override
    POST /api/v1/progress/phase/<id>                    phase-overall override
    GET  /api/v1/progress/phase/<id>/history            ?engineer_id
    GET  /api/v1/progress/phase/<id>/summary            per-engineer rows
    GET  /api/v1/progress/phase/<id>/detail
    GET  /api/v1/progress/phase/<id>/engineer/<eid>
    POST /api/v1/progress/calculate                     hours → % preview
"""

from flask import Blueprint

from phasetrack.blueprints import int_arg, json_body
from phasetrack.core.exceptions import ValidationError
from phasetrack.middleware.jwt_auth import current_actor, login_required
from phasetrack.services import progress_service
from phasetrack.utils.errors import api_success

progress_bp = Blueprint("progress", __name__, url_prefix="/api/v1/progress")


# ═══════════════════════════════════════════════════════════════════════════
#  ADJUSTMENTS
# ═══════════════════════════════════════════════════════════════════════════

@progress_bp.route("/work-log/<int:work_log_id>", methods=["POST"])
def adjust_work_log(work_log_id):
    data = json_body()
    result = progress_service.adjust_work_log_progress(
        work_log_id, current_actor(),
        data.get("manual_progress_percentage"),
        data.get("adjustment_reason"),
    )
    return api_success(result, message="Progress adjusted", status=201)


@progress_bp.route("/phase/<int:phase_id>", methods=["POST"])
def adjust_phase(phase_id):
    data = json_body()
    engineer_id = data.get("engineer_id")
    if engineer_id is not None and (isinstance(engineer_id, bool) or not isinstance(engineer_id, int)):
        raise ValidationError("engineer_id must be an integer", {"engineer_id": "invalid"})
    result = progress_service.adjust_phase_progress(
        phase_id, current_actor(),
        data.get("manual_progress_percentage"),
        data.get("adjustment_reason"),
        engineer_id=engineer_id,
    )
    return api_success(result, message="Progress adjusted", status=201)


# ═══════════════════════════════════════════════════════════════════════════
#  READS
# ═══════════════════════════════════════════════════════════════════════════

@progress_bp.route("/phase/<int:phase_id>/history", methods=["GET"])
def history(phase_id):
    return api_success(progress_service.progress_history(
        phase_id, current_actor(), engineer_id=int_arg("engineer_id"),
    ))


@progress_bp.route("/phase/<int:phase_id>/summary", methods=["GET"])
def summary(phase_id):
    return api_success(progress_service.phase_progress_summary(phase_id, current_actor()))


@progress_bp.route("/phase/<int:phase_id>/detail", methods=["GET"])
def detail(phase_id):
    return api_success(progress_service.phase_progress_detail(phase_id, current_actor()))


@progress_bp.route("/phase/<int:phase_id>/engineer/<int:engineer_id>", methods=["GET"])
def engineer_breakdown(phase_id, engineer_id):
    return api_success(progress_service.engineer_progress_breakdown(phase_id, engineer_id, current_actor()))


@progress_bp.route("/calculate", methods=["POST"])
@login_required
def calculate():
    data = json_body()
    return api_success(progress_service.calculate_progress_for_hours(
        data.get("hours"), data.get("predicted_hours"),
    ))
