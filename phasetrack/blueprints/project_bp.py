"""
PhaseTrack
Project blueprint — project CRUD, archive, warnings, progress statistics
and health reports.

Endpoints:
    GET    /api/v1/projects                     list (?include_archived=true)
    POST   /api/v1/projects                     create with phases
    GET    /api/v1/projects/archived            archived only
    GET    /api/v1/projects/<id>                detail with phases and work logs
    PUT    /api/v1/projects/<id>                update
    DELETE /api/v1/projects/<id>                hard delete
    POST   /api/v1/projects/<id>/archive
    POST   /api/v1/projects/<id>/unarchive
    GET    /api/v1/projects/<id>/warnings       delay / risk heuristics
    GET    /api/v1/projects/<id>/progress-stats
    GET    /api/v1/projects/<id>/health         good | warning | critical verdict
    GET    /api/v1/projects/<id>/metrics        team size, hours, completion
"""

from flask import Blueprint

from phasetrack.blueprints import bool_arg, json_body
from phasetrack.middleware.jwt_auth import current_actor
from phasetrack.services import project_service
from phasetrack.services.progress_service import project_progress_stats
from phasetrack.services.reporting import compute_project_health, compute_project_metrics
from phasetrack.services.warning_service import project_warnings
from phasetrack.utils.errors import api_success

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1/projects")


# ═══════════════════════════════════════════════════════════════════════════
#  PROJECT CRUD
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("", methods=["GET"])
def list_projects():
    actor = current_actor()
    return api_success(project_service.list_projects(actor, include_archived=bool_arg("include_archived")))


@project_bp.route("", methods=["POST"])
def create_project():
    result = project_service.create_project(current_actor(), json_body())
    return api_success(result, message="Project created successfully", status=201)


@project_bp.route("/archived", methods=["GET"])
def list_archived():
    return api_success(project_service.list_archived_projects(current_actor()))


@project_bp.route("/<int:project_id>", methods=["GET"])
def get_project(project_id):
    return api_success(project_service.get_project(project_id, current_actor()))


@project_bp.route("/<int:project_id>", methods=["PUT"])
def update_project(project_id):
    result = project_service.update_project(project_id, current_actor(), json_body())
    return api_success(result, message="Project updated")


@project_bp.route("/<int:project_id>", methods=["DELETE"])
def delete_project(project_id):
    result = project_service.delete_project(project_id, current_actor())
    return api_success(result, message="Project deleted")


@project_bp.route("/<int:project_id>/archive", methods=["POST"])
def archive_project(project_id):
    return api_success(project_service.archive_project(project_id, current_actor()),
                       message="Project archived")


@project_bp.route("/<int:project_id>/unarchive", methods=["POST"])
def unarchive_project(project_id):
    return api_success(project_service.unarchive_project(project_id, current_actor()),
                       message="Project restored")


# ═══════════════════════════════════════════════════════════════════════════
#  ANALYSIS
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("/<int:project_id>/warnings", methods=["GET"])
def warnings(project_id):
    return api_success(project_warnings(project_id, current_actor()))


@project_bp.route("/<int:project_id>/progress-stats", methods=["GET"])
def progress_stats(project_id):
    return api_success(project_progress_stats(project_id, current_actor()))


@project_bp.route("/<int:project_id>/health", methods=["GET"])
def health(project_id):
    return api_success(compute_project_health(project_id, current_actor()))


@project_bp.route("/<int:project_id>/metrics", methods=["GET"])
def metrics(project_id):
    return api_success(compute_project_metrics(project_id, current_actor()))
