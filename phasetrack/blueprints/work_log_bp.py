"""
PhaseTrack
Work log blueprint.

Endpoints:
    GET    /api/v1/work-logs/phase/<id>       paginated, newest first
    GET    /api/v1/work-logs/engineer/<id>    ?project_id, start_date, end_date
    GET    /api/v1/work-logs/summary          ?project_id, start_date, end_date
    POST   /api/v1/work-logs                  log own hours
    POST   /api/v1/work-logs/admin            back-fill hours for an engineer
    PUT    /api/v1/work-logs/<id>
    DELETE /api/v1/work-logs/<id>
    PUT    /api/v1/work-logs/<id>/approval
"""

from flask import Blueprint, request

from phasetrack.blueprints import int_arg, json_body, page, pagination_args
from phasetrack.core.exceptions import ValidationError
from phasetrack.middleware.jwt_auth import current_actor
from phasetrack.services import work_log_service
from phasetrack.utils.errors import api_success

work_log_bp = Blueprint("work_logs", __name__, url_prefix="/api/v1/work-logs")


def _required_int(data, field):
    value = data.get(field)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", {field: "required"})
    return value


# ═══════════════════════════════════════════════════════════════════════════
#  READS
# ═══════════════════════════════════════════════════════════════════════════

@work_log_bp.route("/phase/<int:phase_id>", methods=["GET"])
def by_phase(phase_id):
    limit, offset = pagination_args()
    items, total = work_log_service.list_phase_work_logs(
        phase_id, current_actor(), limit=limit, offset=offset,
    )
    return api_success(page(items, total, limit, offset))


@work_log_bp.route("/engineer/<int:engineer_id>", methods=["GET"])
def by_engineer(engineer_id):
    limit, offset = pagination_args()
    items, total = work_log_service.list_engineer_work_logs(
        engineer_id, current_actor(),
        project_id=int_arg("project_id"),
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
        limit=limit, offset=offset,
    )
    return api_success(page(items, total, limit, offset))


@work_log_bp.route("/summary", methods=["GET"])
def summary():
    return api_success(work_log_service.work_log_summary(
        current_actor(),
        project_id=int_arg("project_id"),
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
    ))


# ═══════════════════════════════════════════════════════════════════════════
#  MUTATIONS
# ═══════════════════════════════════════════════════════════════════════════

@work_log_bp.route("", methods=["POST"])
def create():
    data = json_body()
    work_log = work_log_service.create_work_log(
        current_actor(),
        _required_int(data, "phase_id"),
        data.get("hours"),
        description=data.get("description"),
        work_date=data.get("work_date", data.get("date")),
    )
    return api_success(work_log, message="Work log created", status=201)


@work_log_bp.route("/admin", methods=["POST"])
def create_admin():
    data = json_body()
    work_log = work_log_service.create_work_log_admin(
        current_actor(),
        _required_int(data, "engineer_id"),
        _required_int(data, "phase_id"),
        data.get("hours"),
        data.get("work_date", data.get("date")),
        description=data.get("description"),
        supervisor_approved=bool(data.get("supervisor_approved", False)),
    )
    return api_success(work_log, message="Historical work log created", status=201)


@work_log_bp.route("/<int:work_log_id>", methods=["PUT"])
def update(work_log_id):
    return api_success(work_log_service.update_work_log(work_log_id, current_actor(), json_body()),
                       message="Work log updated")


@work_log_bp.route("/<int:work_log_id>", methods=["DELETE"])
def delete(work_log_id):
    note = json_body().get("note")
    return api_success(work_log_service.delete_work_log(work_log_id, current_actor(), note=note),
                       message="Work log deleted")


@work_log_bp.route("/<int:work_log_id>/approval", methods=["PUT"])
def approval(work_log_id):
    data = json_body()
    if "approved" not in data:
        raise ValidationError("approved is required", {"approved": "required"})
    return api_success(work_log_service.set_work_log_approval(
        work_log_id, current_actor(), bool(data["approved"]),
    ))
