"""
PhaseTrack
Phase blueprint — phase CRUD, lifecycle transitions, delays and early access.

Endpoints:
    GET    /api/v1/phases/predefined
    GET    /api/v1/phases/project/<pid>
    POST   /api/v1/phases/project/<pid>
    PUT    /api/v1/phases/project/<pid>/reorder
    GET    /api/v1/phases/project/<pid>/early-access-overview
    GET    /api/v1/phases/<id>
    PUT    /api/v1/phases/<id>
    PUT    /api/v1/phases/<id>/historical       back-fill actuals and status
    DELETE /api/v1/phases/<id>
    POST   /api/v1/phases/<id>/start|submit|approve|complete
    POST   /api/v1/phases/<id>/warning
    POST   /api/v1/phases/<id>/delay
    POST   /api/v1/phases/<id>/grant-early-access
    POST   /api/v1/phases/<id>/revoke-early-access
"""

from flask import Blueprint

from phasetrack.blueprints import json_body
from phasetrack.core.exceptions import ValidationError
from phasetrack.middleware.jwt_auth import current_actor
from phasetrack.services import phase_lifecycle, project_service
from phasetrack.utils.errors import api_success

phase_bp = Blueprint("phases", __name__, url_prefix="/api/v1/phases")


# ═══════════════════════════════════════════════════════════════════════════
#  CATALOGUE & PROJECT PHASES
# ═══════════════════════════════════════════════════════════════════════════

@phase_bp.route("/predefined", methods=["GET"])
def predefined():
    return api_success(project_service.list_predefined_phases(current_actor()))


@phase_bp.route("/project/<int:project_id>", methods=["GET"])
def list_phases(project_id):
    return api_success(project_service.list_phases(project_id, current_actor()))


@phase_bp.route("/project/<int:project_id>", methods=["POST"])
def create_phase(project_id):
    phase = project_service.create_phase(project_id, current_actor(), json_body())
    return api_success(phase, message="Phase created", status=201)


@phase_bp.route("/project/<int:project_id>/reorder", methods=["PUT"])
def reorder(project_id):
    data = json_body()
    phases = phase_lifecycle.reorder_phases(project_id, current_actor(), data.get("phases"))
    return api_success(phases, message="Phases reordered")


@phase_bp.route("/project/<int:project_id>/early-access-overview", methods=["GET"])
def early_access_overview(project_id):
    return api_success(phase_lifecycle.early_access_overview(project_id, current_actor()))


# ═══════════════════════════════════════════════════════════════════════════
#  SINGLE PHASE
# ═══════════════════════════════════════════════════════════════════════════

@phase_bp.route("/<int:phase_id>", methods=["GET"])
def get_phase(phase_id):
    return api_success(project_service.get_phase(phase_id, current_actor()))


@phase_bp.route("/<int:phase_id>", methods=["PUT"])
def update_phase(phase_id):
    return api_success(project_service.update_phase(phase_id, current_actor(), json_body()),
                       message="Phase updated")


@phase_bp.route("/<int:phase_id>/historical", methods=["PUT"])
def update_phase_historical(phase_id):
    result = project_service.update_phase_historical(phase_id, current_actor(), json_body())
    return api_success(result, message="Historical phase data updated")


@phase_bp.route("/<int:phase_id>", methods=["DELETE"])
def delete_phase(phase_id):
    return api_success(project_service.delete_phase(phase_id, current_actor()),
                       message="Phase deleted")


# ═══════════════════════════════════════════════════════════════════════════
#  LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════

@phase_bp.route("/<int:phase_id>/<any(start, submit, approve, complete):action>", methods=["POST"])
def transition(phase_id, action):
    note = json_body().get("note")
    result = phase_lifecycle.transition_phase(phase_id, action, current_actor(), note=note)
    return api_success(result, message=f"Phase {result['new_status'].replace('_', ' ')}")


@phase_bp.route("/<int:phase_id>/warning", methods=["POST"])
def warning(phase_id):
    data = json_body()
    if "warning_flag" not in data:
        raise ValidationError("warning_flag is required", {"warning_flag": "required"})
    phase = phase_lifecycle.mark_warning(phase_id, current_actor(), data["warning_flag"], data.get("note"))
    return api_success(phase)


@phase_bp.route("/<int:phase_id>/delay", methods=["POST"])
def delay(phase_id):
    data = json_body()
    result = phase_lifecycle.handle_delay(
        phase_id, current_actor(),
        reason=data.get("delay_reason"),
        note=data.get("note"),
        additional_weeks=data.get("additional_weeks"),
        new_end_date=data.get("new_end_date"),
    )
    return api_success(result, message="Delay recorded")


@phase_bp.route("/<int:phase_id>/grant-early-access", methods=["POST"])
def grant_early_access(phase_id):
    note = json_body().get("note")
    phase = phase_lifecycle.grant_early_access(phase_id, current_actor(), note=note)
    return api_success(phase, message="Early access granted")


@phase_bp.route("/<int:phase_id>/revoke-early-access", methods=["POST"])
def revoke_early_access(phase_id):
    note = json_body().get("note")
    phase = phase_lifecycle.revoke_early_access(phase_id, current_actor(), note=note)
    return api_success(phase, message="Early access revoked")
