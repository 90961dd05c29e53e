"""Project service layer — business logic for projects and their phases.

Transaction policy: public mutating functions run inside ``atomic()``.
Internal helpers use flush() for ID generation within a transaction.

Provides:
- Project CRUD with phase generation and timeline validation
- Archive / unarchive (soft delete) and hard delete
- Phase CRUD that keeps phase_order contiguous (1..N)
- Predefined phase catalogue
"""
import logging
from datetime import datetime, time, timedelta, timezone

from phasetrack.core.exceptions import ConflictError, ValidationError
from phasetrack.models import db
from phasetrack.models.audit import write_audit
from phasetrack.models.phase import PHASE_STATUSES, PredefinedPhase, ProjectPhase
from phasetrack.models.project import PROJECT_STATUSES, Project
from phasetrack.models.work_log import WorkLog
from phasetrack.services import realtime
from phasetrack.services.permission import authorize
from phasetrack.services.phase_lifecycle import REORDER_OFFSET, get_available_actions, open_next_phase
from phasetrack.services.progress_service import recompute_phase
from phasetrack.utils.helpers import atomic, get_or_raise, parse_date_input, parse_number

logger = logging.getLogger(__name__)

# Allowed drift between planned_total_weeks and the sum of phase weeks
TIMELINE_TOLERANCE_WEEKS = 1

_PROJECT_FIELDS = ("name", "description", "client_name", "location", "start_date",
                   "planned_total_weeks", "predicted_hours", "status")
_PHASE_FIELDS = ("phase_name", "planned_weeks", "predicted_hours",
                 "planned_start_date", "planned_end_date")
# Back-filling an imported project may also set actuals and status directly
_HISTORICAL_PHASE_FIELDS = _PHASE_FIELDS + (
    "actual_start_date", "actual_end_date", "submitted_date", "approved_date", "status",
)
_TIMESTAMP_FIELDS = ("actual_start_date", "actual_end_date")

# ── Field length limits (matching DB column definitions) ─────────────────

_FIELD_LIMITS = {
    "name": 200,
    "client_name": 200,
    "location": 200,
    "phase_name": 200,
}


def _required_text(data: dict, field: str) -> str:
    value = (data.get(field) or "").strip() if isinstance(data.get(field), str) else ""
    if not value:
        raise ValidationError(f"{field} is required", {field: "required"})
    return _check_length(value, field)


def _check_length(value, field: str):
    limit = _FIELD_LIMITS.get(field)
    if value and limit and len(value) > limit:
        raise ValidationError(
            f"{field} exceeds maximum length of {limit} characters",
            {field: "too long"},
        )
    return value


def _positive_int(value, field: str) -> int:
    number = parse_number(value, field)
    if number != int(number) or number <= 0:
        raise ValidationError(f"{field} must be a positive whole number", {field: "invalid"})
    return int(number)


def _optional_hours(value, field: str = "predicted_hours") -> float | None:
    hours = parse_number(value, field, allow_none=True)
    if hours is not None and hours < 0:
        raise ValidationError(f"{field} must be >= 0", {field: "negative"})
    return hours


def _queue_project_updated(project_id: int, action: str, actor_id: int) -> None:
    realtime.queue_project_event(db.session, project_id, realtime.PROJECT_UPDATED, {
        "project_id": project_id, "action": action, "updated_by": actor_id,
    })


def _normalise_phase_input(raw, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"phases[{index}] must be an object")
    name = raw.get("phase_name") or raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(f"phases[{index}].phase_name is required",
                              {f"phases[{index}].phase_name": "required"})
    return {
        "phase_name": _check_length(name.strip(), "phase_name"),
        "planned_weeks": _positive_int(raw.get("planned_weeks"), f"phases[{index}].planned_weeks"),
        "predicted_hours": _optional_hours(raw.get("predicted_hours"), f"phases[{index}].predicted_hours"),
        "is_custom": bool(raw.get("is_custom", False)),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════════


def create_project(actor, data: dict) -> dict:
    """
    Create a project and its phases in one transaction.

    ``data["phases"]`` is an ordered list of
    ``{phase_name, planned_weeks, predicted_hours?, is_custom?}``.
    Phases receive orders 1..N and back-to-back planned dates starting at
    the project's start_date; the first phase is ``ready``.

    Raises:
        ValidationError: missing fields, or phase weeks differ from
            planned_total_weeks by more than one week.
    """
    authorize(actor, "project.create")
    data = data or {}
    name = _required_text(data, "name")
    planned_total_weeks = _positive_int(data.get("planned_total_weeks"), "planned_total_weeks")
    start_date = parse_date_input(data.get("start_date"), "start_date")
    if start_date is None:
        raise ValidationError("start_date is required", {"start_date": "required"})

    raw_phases = data.get("phases", data.get("selectedPhases"))
    if not isinstance(raw_phases, list) or not raw_phases:
        raise ValidationError("At least one phase is required", {"phases": "required"})
    phases_in = [_normalise_phase_input(p, i) for i, p in enumerate(raw_phases)]

    total_phase_weeks = sum(p["planned_weeks"] for p in phases_in)
    difference = abs(total_phase_weeks - planned_total_weeks)
    if difference > TIMELINE_TOLERANCE_WEEKS:
        raise ValidationError(
            f"Timeline mismatch: total phase weeks ({total_phase_weeks}) does not match "
            f"planned total weeks ({planned_total_weeks})",
            {"total_phase_weeks": total_phase_weeks,
             "planned_total_weeks": planned_total_weeks,
             "difference": difference},
        )

    predicted = _optional_hours(data.get("predicted_hours"))
    if predicted is None:
        predicted = sum(p["predicted_hours"] or 0 for p in phases_in)

    with atomic():
        project = Project(
            name=name,
            description=data.get("description"),
            client_name=_check_length(data.get("client_name"), "client_name"),
            location=_check_length(data.get("location"), "location"),
            start_date=start_date,
            planned_total_weeks=planned_total_weeks,
            predicted_hours=predicted,
            created_by=actor.id,
        )
        db.session.add(project)
        db.session.flush()

        cursor = start_date
        for order, entry in enumerate(phases_in, start=1):
            end = cursor + timedelta(days=entry["planned_weeks"] * 7)
            db.session.add(ProjectPhase(
                project_id=project.id,
                phase_order=order,
                phase_name=entry["phase_name"],
                is_custom=entry["is_custom"],
                planned_weeks=entry["planned_weeks"],
                planned_start_date=cursor,
                planned_end_date=end,
                predicted_hours=entry["predicted_hours"],
                status="ready" if order == 1 else "not_started",
            ))
            cursor = end
        db.session.flush()

        write_audit(
            entity_type="project", entity_id=project.id, action="create",
            actor_user_id=actor.id, project_id=project.id,
            note=f"Project created with {len(phases_in)} phases",
        )
        _queue_project_updated(project.id, "create", actor.id)

    logger.info("Project %s created with %d phases (user=%s)", project.id, len(phases_in), actor.id)
    return {
        "project": project.to_dict(),
        "phases": [p.to_dict() for p in project.phases.all()],
    }


def update_project(project_id: int, actor, data: dict) -> dict:
    """Update whitelisted project fields. Unknown keys are ignored."""
    authorize(actor, "project.update")
    project = get_or_raise(Project, project_id)
    data = data or {}

    changes = {}
    for field in _PROJECT_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == "name":
            value = _required_text(data, "name")
        elif field == "start_date":
            value = parse_date_input(value, "start_date")
            if value is None:
                raise ValidationError("start_date cannot be empty", {"start_date": "required"})
        elif field == "planned_total_weeks":
            value = _positive_int(value, field)
        elif field == "predicted_hours":
            value = _optional_hours(value) or 0
        elif field == "status":
            if value not in PROJECT_STATUSES:
                raise ValidationError(
                    f"Invalid status: '{value}'. Allowed: {list(PROJECT_STATUSES)}",
                    {"status": "invalid"},
                )
        else:
            value = _check_length(value, field)
        old = getattr(project, field)
        if old != value:
            changes[field] = {"old": old, "new": value}

    if not changes:
        return project.to_dict()

    with atomic():
        for field, change in changes.items():
            setattr(project, field, change["new"])
        write_audit(
            entity_type="project", entity_id=project.id, action="update",
            actor_user_id=actor.id, project_id=project.id, diff=changes,
        )
        _queue_project_updated(project.id, "update", actor.id)

    logger.info("Project %s updated: %s (user=%s)", project.id, ", ".join(changes), actor.id)
    return project.to_dict()


def archive_project(project_id: int, actor) -> dict:
    authorize(actor, "project.archive")
    project = get_or_raise(Project, project_id)
    if project.is_archived:
        raise ConflictError("Project", "archived_at", message="Project is already archived")
    with atomic():
        project.archive(actor.id)
        write_audit(
            entity_type="project", entity_id=project.id, action="project.archive",
            actor_user_id=actor.id, project_id=project.id,
        )
        _queue_project_updated(project.id, "archive", actor.id)
    logger.info("Project %s archived (user=%s)", project.id, actor.id)
    return project.to_dict()


def unarchive_project(project_id: int, actor) -> dict:
    authorize(actor, "project.archive")
    project = get_or_raise(Project, project_id)
    if not project.is_archived:
        raise ConflictError("Project", "archived_at", message="Project is not archived")
    with atomic():
        project.unarchive()
        write_audit(
            entity_type="project", entity_id=project.id, action="project.unarchive",
            actor_user_id=actor.id, project_id=project.id,
        )
        _queue_project_updated(project.id, "unarchive", actor.id)
    logger.info("Project %s unarchived (user=%s)", project.id, actor.id)
    return project.to_dict()


def delete_project(project_id: int, actor) -> dict:
    """Hard delete. Phases, work logs and adjustments cascade."""
    authorize(actor, "project.delete")
    project = get_or_raise(Project, project_id)
    name = project.name
    with atomic():
        write_audit(
            entity_type="project", entity_id=project.id, action="delete",
            actor_user_id=actor.id, note=f"Deleted project '{name}'",
        )
        db.session.delete(project)
        _queue_project_updated(project_id, "delete", actor.id)
    logger.info("Project %s deleted (user=%s)", project_id, actor.id)
    return {"deleted_id": project_id}


def get_project(project_id: int, actor) -> dict:
    """Project with its ordered phases and most recent work logs."""
    authorize(actor, "project.view")
    project = get_or_raise(Project, project_id)
    logs = (
        WorkLog.query.filter_by(project_id=project_id)
        .order_by(WorkLog.work_date.desc(), WorkLog.id.desc())
        .all()
    )
    result = project.to_dict()
    result["phases"] = [p.to_dict() for p in project.phases.all()]
    result["work_logs"] = [w.to_dict() for w in logs]
    return result


def list_projects(actor, include_archived: bool = False) -> list[dict]:
    authorize(actor, "project.view")
    q = Project.query if include_archived else Project.query_active()
    return [p.to_dict() for p in q.order_by(Project.created_at.desc(), Project.id.desc()).all()]


def list_archived_projects(actor) -> list[dict]:
    authorize(actor, "project.view")
    q = Project.query_archived().order_by(Project.archived_at.desc())
    return [p.to_dict() for p in q.all()]


# ═════════════════════════════════════════════════════════════════════════════
# Phases
# ═════════════════════════════════════════════════════════════════════════════


def list_phases(project_id: int, actor) -> list[dict]:
    authorize(actor, "phase.view")
    project = get_or_raise(Project, project_id)
    return [p.to_dict() for p in project.phases.all()]


def get_phase(phase_id: int, actor) -> dict:
    """Phase detail plus the lifecycle actions the actor may take now."""
    authorize(actor, "phase.view")
    phase = get_or_raise(ProjectPhase, phase_id)
    result = phase.to_dict()
    result["available_actions"] = get_available_actions(phase, actor)
    return result


def create_phase(project_id: int, actor, data: dict) -> dict:
    """Append a phase after the current last one."""
    authorize(actor, "phase.create")
    project = get_or_raise(Project, project_id)
    fields = _normalise_phase_input(data or {}, 0)
    fields["is_custom"] = bool((data or {}).get("is_custom", True))

    # Project.phases carries a default ascending order; drop it before sorting
    last = project.phases.order_by(None).order_by(ProjectPhase.phase_order.desc()).first()
    next_order = (last.phase_order if last else 0) + 1
    start = parse_date_input((data or {}).get("planned_start_date"), "planned_start_date")
    if start is None:
        start = last.planned_end_date if last and last.planned_end_date else project.start_date

    with atomic():
        phase = ProjectPhase(
            project_id=project.id,
            phase_order=next_order,
            phase_name=fields["phase_name"],
            is_custom=fields["is_custom"],
            planned_weeks=fields["planned_weeks"],
            predicted_hours=fields["predicted_hours"],
            planned_start_date=start,
            planned_end_date=start + timedelta(days=fields["planned_weeks"] * 7),
            status="ready" if last is None else "not_started",
        )
        db.session.add(phase)
        db.session.flush()
        open_next_phase(project.id, actor.id)
        write_audit(
            entity_type="phase", entity_id=phase.id, action="create",
            actor_user_id=actor.id, project_id=project.id,
            note=f"Added phase #{next_order} {phase.phase_name}",
        )
        _queue_project_updated(project.id, "phase_created", actor.id)

    logger.info("Phase %s added to project %s at order %s (user=%s)",
                phase.id, project.id, next_order, actor.id)
    return phase.to_dict()


def _parse_phase_field(data: dict, field: str):
    value = data[field]
    if field == "phase_name":
        return _required_text(data, "phase_name")
    if field == "planned_weeks":
        return _positive_int(value, field)
    if field == "predicted_hours":
        return _optional_hours(value)
    if field == "status":
        if value not in PHASE_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(PHASE_STATUSES)}",
                                  {"status": "invalid"})
        return value
    parsed = parse_date_input(value, field)
    if parsed is not None and field in _TIMESTAMP_FIELDS:
        return datetime.combine(parsed, time.min, tzinfo=timezone.utc)
    return parsed


def _phase_changes(phase: ProjectPhase, data: dict, fields) -> dict:
    changes = {}
    for field in fields:
        if field not in data:
            continue
        value = _parse_phase_field(data, field)
        old = getattr(phase, field)
        if old != value:
            changes[field] = {"old": old, "new": value}
    return changes


def update_phase(phase_id: int, actor, data: dict) -> dict:
    """
    Update planning fields of a phase.

    Status and early-access fields are not editable here; they move only
    through the lifecycle service.  A predicted_hours change re-derives the
    phase's progress figures.
    """
    authorize(actor, "phase.update")
    phase = get_or_raise(ProjectPhase, phase_id)
    data = data or {}

    changes = _phase_changes(phase, data, _PHASE_FIELDS)

    if not changes:
        return phase.to_dict()

    with atomic():
        for field, change in changes.items():
            setattr(phase, field, change["new"])
        if "predicted_hours" in changes:
            recompute_phase(phase.id)
        write_audit(
            entity_type="phase", entity_id=phase.id, action="update",
            actor_user_id=actor.id, project_id=phase.project_id, diff=changes,
        )
        realtime.queue_project_event(db.session, phase.project_id, realtime.PHASE_UPDATED, {
            "phase_id": phase.id, "action": "update", "status": phase.status,
            "early_access_status": phase.early_access_status, "updated_by": actor.id,
        })

    logger.info("Phase %s updated: %s (user=%s)", phase.id, ", ".join(changes), actor.id)
    return phase.to_dict()


def update_phase_historical(phase_id: int, actor, data: dict) -> dict:
    """
    Back-fill a phase of a project that predates the system.

    Accepts the planning fields plus actual start/end, submitted and approved
    dates and ``status``, written as given without lifecycle gating.  When
    the status changes and the project is left with nothing workable, the
    next eligible phase is opened.

    Raises:
        ValidationError: no editable field supplied, or a value is invalid.
    """
    authorize(actor, "phase.update_historical")
    phase = get_or_raise(ProjectPhase, phase_id)
    data = data or {}
    if not any(field in data for field in _HISTORICAL_PHASE_FIELDS):
        raise ValidationError("No valid fields to update",
                              {"fields": list(_HISTORICAL_PHASE_FIELDS)})

    changes = _phase_changes(phase, data, _HISTORICAL_PHASE_FIELDS)
    if not changes:
        return phase.to_dict()

    with atomic():
        for field, change in changes.items():
            setattr(phase, field, change["new"])
        db.session.flush()
        if "predicted_hours" in changes:
            recompute_phase(phase.id)
        if "status" in changes:
            open_next_phase(phase.project_id, actor.id)
        write_audit(
            entity_type="phase", entity_id=phase.id, action="update",
            actor_user_id=actor.id, project_id=phase.project_id,
            note="historical update", diff=changes,
        )
        realtime.queue_project_event(db.session, phase.project_id, realtime.PHASE_UPDATED, {
            "phase_id": phase.id, "action": "historical_update", "status": phase.status,
            "early_access_status": phase.early_access_status, "updated_by": actor.id,
        })

    logger.info("Phase %s historical update: %s (user=%s)", phase.id, ", ".join(changes), actor.id)
    return phase.to_dict()


def delete_phase(phase_id: int, actor) -> dict:
    """
    Delete a phase that has no logged hours and close the order gap.

    Raises:
        ConflictError: work logs exist on the phase.
    """
    authorize(actor, "phase.delete")
    phase = get_or_raise(ProjectPhase, phase_id)
    log_count = phase.work_logs.count()
    if log_count:
        raise ConflictError(
            "ProjectPhase", "work_logs",
            message=f"Cannot delete phase with {log_count} work log(s)",
        )

    project_id = phase.project_id
    removed_order = phase.phase_order
    later = (
        ProjectPhase.query
        .filter(ProjectPhase.project_id == project_id,
                ProjectPhase.phase_order > removed_order)
        .order_by(ProjectPhase.phase_order)
        .all()
    )

    with atomic():
        write_audit(
            entity_type="phase", entity_id=phase.id, action="delete",
            actor_user_id=actor.id, project_id=project_id,
            note=f"Deleted phase #{removed_order} {phase.phase_name}",
        )
        db.session.delete(phase)
        db.session.flush()
        for p in later:
            p.phase_order = p.phase_order + REORDER_OFFSET
        db.session.flush()
        for p in later:
            p.phase_order = p.phase_order - REORDER_OFFSET - 1
        db.session.flush()
        open_next_phase(project_id, actor.id)
        _queue_project_updated(project_id, "phase_deleted", actor.id)

    logger.info("Phase %s deleted from project %s; %d later phase(s) renumbered (user=%s)",
                phase_id, project_id, len(later), actor.id)
    return {"deleted_id": phase_id, "project_id": project_id}


def list_predefined_phases(actor) -> list[dict]:
    authorize(actor, "phase.view")
    q = PredefinedPhase.query.filter_by(is_active=True).order_by(
        PredefinedPhase.display_order, PredefinedPhase.name,
    )
    return [p.to_dict() for p in q.all()]
