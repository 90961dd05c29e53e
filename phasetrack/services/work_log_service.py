"""
Work Log Service — recording hours against phases.

Rules:
    - Engineers may log on phases whose status is ready, in_progress or
      submitted.  Anything else raises PhaseLocked.  Supervisors bypass the
      lock to make corrections.
    - Hours must be > 0.  There is no upper bound: historical back-fills
      may record hundreds of hours in one row, tagged entry_type=historical.
    - Each entry is its own row; same-day entries are not merged.
    - Logging on a ``ready`` phase starts it.
    - Every create, update and delete recomputes the phase's aggregates in
      the same transaction.  Approval toggles do not.
    - Engineers may only edit, delete or list their own logs.
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func

from phasetrack.core.exceptions import (
    AuthorizationError,
    PhaseLocked,
    ValidationError,
)
from phasetrack.models import db
from phasetrack.models.audit import write_audit
from phasetrack.models.auth import User
from phasetrack.models.phase import WORKABLE_STATUSES, ProjectPhase
from phasetrack.models.project import Project
from phasetrack.models.work_log import WorkLog
from phasetrack.services import realtime
from phasetrack.services.permission import Role, authorize, is_supervisor
from phasetrack.services.phase_lifecycle import start_for_work_log
from phasetrack.services.progress_service import recompute_phase
from phasetrack.utils.helpers import atomic, get_or_raise, parse_date_input, parse_number

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("hours", "description", "work_date")


def _positive_hours(value) -> float:
    hours = parse_number(value, "hours")
    if hours <= 0:
        raise ValidationError("Hours must be greater than 0", {"hours": "must be positive"})
    return hours


def _ensure_owner_or_supervisor(actor, work_log: WorkLog, operation: str) -> None:
    if is_supervisor(actor):
        return
    if actor.role == Role.ENGINEER.value and work_log.engineer_id == actor.id:
        return
    raise AuthorizationError(
        "Engineers can only modify their own work logs",
        operation=operation, role=actor.role,
    )


def _event_payload(work_log: WorkLog, phase: ProjectPhase) -> dict:
    return {
        "work_log_id": work_log.id,
        "phase_id": phase.id,
        "engineer_id": work_log.engineer_id,
        "hours": work_log.hours,
        "phase_actual_hours": phase.actual_hours,
        "calculated_progress": phase.calculated_progress,
    }


def _insert(actor, engineer_id: int, phase: ProjectPhase, hours: float, work_date: date,
            description: str | None, entry_type: str) -> WorkLog:
    work_log = WorkLog(
        engineer_id=engineer_id,
        project_id=phase.project_id,
        phase_id=phase.id,
        work_date=work_date,
        hours=hours,
        description=description,
        entry_type=entry_type,
        created_by=actor.id,
    )
    db.session.add(work_log)
    db.session.flush()
    if phase.status == "ready" or phase.can_start_via_early_access:
        start_for_work_log(phase, actor.id)
    recompute_phase(phase.id)
    write_audit(
        entity_type="work_log", entity_id=work_log.id, action="create",
        actor_user_id=actor.id, project_id=phase.project_id,
        note=f"Logged {hours} hours on {phase.phase_name}",
        diff={"hours": hours, "work_date": work_date, "engineer_id": engineer_id,
              "entry_type": entry_type},
    )
    realtime.queue_project_event(db.session, phase.project_id, realtime.WORK_LOG_CREATED,
                                 _event_payload(work_log, phase))
    return work_log


# ═════════════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════════════


def create_work_log(actor, phase_id: int, hours, description: str | None = None,
                    work_date=None) -> dict:
    """Log the actor's own hours on a phase."""
    authorize(actor, "work_log.create")
    phase = get_or_raise(ProjectPhase, phase_id)
    hours = _positive_hours(hours)
    work_date = parse_date_input(work_date, "date") or date.today()

    if not is_supervisor(actor):
        workable = phase.status in WORKABLE_STATUSES or phase.can_start_via_early_access
        if not workable:
            raise PhaseLocked(phase.id, phase.status)

    with atomic():
        work_log = _insert(actor, actor.id, phase, hours, work_date, description, "daily")

    logger.info("User %s logged %sh on phase %s", actor.id, hours, phase.id)
    return work_log.to_dict()


def create_work_log_admin(actor, engineer_id: int, phase_id: int, hours, work_date,
                          description: str | None = None,
                          supervisor_approved: bool = False) -> dict:
    """Back-fill hours for any engineer on any date (historical import)."""
    authorize(actor, "work_log.create_admin")
    engineer = get_or_raise(User, engineer_id, label="Engineer")
    if engineer.role != Role.ENGINEER.value:
        raise ValidationError("engineer_id must reference an engineer account", {"engineer_id": "invalid"})
    phase = get_or_raise(ProjectPhase, phase_id)
    hours = _positive_hours(hours)
    work_date = parse_date_input(work_date, "date")
    if work_date is None:
        raise ValidationError("date is required", {"date": "required"})

    with atomic():
        work_log = _insert(actor, engineer.id, phase, hours, work_date, description, "historical")
        if supervisor_approved:
            work_log.supervisor_approved = True
            work_log.approved_by = actor.id
            work_log.approved_at = datetime.now(timezone.utc)

    logger.info(
        "User %s back-filled %sh for engineer %s on phase %s (%s)",
        actor.id, hours, engineer.id, phase.id, work_date,
    )
    return work_log.to_dict()


def update_work_log(work_log_id: int, actor, data: dict) -> dict:
    """Change hours, description or date; recomputes the phase."""
    authorize(actor, "work_log.update")
    work_log = get_or_raise(WorkLog, work_log_id)
    _ensure_owner_or_supervisor(actor, work_log, "work_log.update")

    changes = {k: data[k] for k in _UPDATABLE_FIELDS if k in data}
    if "date" in data and "work_date" not in changes:
        changes["work_date"] = data["date"]
    if not changes:
        raise ValidationError("No valid fields to update", {"allowed": list(_UPDATABLE_FIELDS)})

    diff = {}
    with atomic():
        if "hours" in changes:
            new_hours = _positive_hours(changes["hours"])
            diff["hours"] = {"old": work_log.hours, "new": new_hours}
            work_log.hours = new_hours
        if "description" in changes:
            diff["description"] = {"old": work_log.description, "new": changes["description"]}
            work_log.description = changes["description"]
        if "work_date" in changes:
            new_date = parse_date_input(changes["work_date"], "date")
            if new_date is None:
                raise ValidationError("date cannot be empty", {"date": "required"})
            diff["work_date"] = {"old": work_log.work_date, "new": new_date}
            work_log.work_date = new_date
        db.session.flush()
        phase = get_or_raise(ProjectPhase, work_log.phase_id)
        recompute_phase(phase.id)
        write_audit(
            entity_type="work_log", entity_id=work_log.id, action="update",
            actor_user_id=actor.id, project_id=work_log.project_id, diff=diff,
        )
        realtime.queue_project_event(db.session, phase.project_id, realtime.WORK_LOG_UPDATED,
                                     _event_payload(work_log, phase))

    logger.info("Work log %s updated by user=%s: %s", work_log.id, actor.id, sorted(diff))
    return work_log.to_dict()


def delete_work_log(work_log_id: int, actor, note: str | None = None) -> dict:
    """Hard-delete a work log and recompute the phase.

    Returns the phase's new aggregates.
    """
    authorize(actor, "work_log.delete")
    work_log = get_or_raise(WorkLog, work_log_id)
    _ensure_owner_or_supervisor(actor, work_log, "work_log.delete")
    phase = get_or_raise(ProjectPhase, work_log.phase_id)
    snapshot = {"id": work_log.id, "hours": work_log.hours, "work_date": work_log.work_date,
                "engineer_id": work_log.engineer_id}

    with atomic():
        db.session.delete(work_log)
        db.session.flush()
        actual_hours = recompute_phase(phase.id)
        write_audit(
            entity_type="work_log", entity_id=snapshot["id"], action="delete",
            actor_user_id=actor.id, project_id=phase.project_id,
            note=note or "No reason provided", diff=snapshot,
        )
        realtime.queue_project_event(db.session, phase.project_id, realtime.WORK_LOG_DELETED, {
            "work_log_id": snapshot["id"],
            "phase_id": phase.id,
            "engineer_id": snapshot["engineer_id"],
            "hours": snapshot["hours"],
            "phase_actual_hours": actual_hours,
        })

    logger.info("Work log %s deleted by user=%s", snapshot["id"], actor.id)
    return {
        "deleted_id": snapshot["id"],
        "phase_id": phase.id,
        "phase_actual_hours": actual_hours,
        "calculated_progress": phase.calculated_progress,
    }


def set_work_log_approval(work_log_id: int, actor, approved: bool) -> dict:
    """Toggle supervisor approval. Does not touch phase aggregates."""
    authorize(actor, "work_log.approve")
    work_log = get_or_raise(WorkLog, work_log_id)
    approved = bool(approved)

    with atomic():
        work_log.supervisor_approved = approved
        work_log.approved_by = actor.id if approved else None
        work_log.approved_at = datetime.now(timezone.utc) if approved else None
        write_audit(
            entity_type="work_log", entity_id=work_log.id,
            action="work_log.approve" if approved else "work_log.unapprove",
            actor_user_id=actor.id, project_id=work_log.project_id,
        )
        realtime.queue_user_event(db.session, work_log.engineer_id, realtime.WORK_LOG_UPDATED, {
            "work_log_id": work_log.id, "supervisor_approved": approved,
        })

    logger.info("Work log %s approved=%s by user=%s", work_log.id, approved, actor.id)
    return work_log.to_dict()


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def _date_window(q, start_date, end_date):
    start = parse_date_input(start_date, "start_date")
    end = parse_date_input(end_date, "end_date")
    if start is not None:
        q = q.filter(WorkLog.work_date >= start)
    if end is not None:
        q = q.filter(WorkLog.work_date <= end)
    return q


def _ordered(q):
    return q.order_by(WorkLog.work_date.desc(), WorkLog.created_at.desc(), WorkLog.id.desc())


def list_phase_work_logs(phase_id: int, actor, *, limit: int = 50, offset: int = 0) -> tuple[list[dict], int]:
    authorize(actor, "work_log.view")
    get_or_raise(ProjectPhase, phase_id)
    q = WorkLog.query.filter_by(phase_id=phase_id)
    total = q.count()
    items = _ordered(q).limit(limit).offset(offset).all()
    return [w.to_dict() for w in items], total


def list_engineer_work_logs(engineer_id: int, actor, *, project_id: int | None = None,
                            start_date=None, end_date=None,
                            limit: int = 50, offset: int = 0) -> tuple[list[dict], int]:
    """An engineer's logs. Engineers may only list their own."""
    authorize(actor, "work_log.view")
    if actor.role == Role.ENGINEER.value and actor.id != engineer_id:
        raise AuthorizationError(
            "Engineers can only view their own work logs",
            operation="work_log.view", role=actor.role,
        )
    get_or_raise(User, engineer_id, label="Engineer")
    q = WorkLog.query.filter_by(engineer_id=engineer_id)
    if project_id is not None:
        q = q.filter_by(project_id=project_id)
    q = _date_window(q, start_date, end_date)
    total = q.count()
    items = _ordered(q).limit(limit).offset(offset).all()
    return [w.to_dict() for w in items], total


def work_log_summary(actor, project_id: int | None = None, start_date=None, end_date=None) -> dict:
    """
    Hours rolled up three ways: project × engineer, phase, and
    phase × engineer.  Engineers only see their own hours.
    """
    authorize(actor, "work_log.summary")

    def _base(*columns):
        q = (
            db.session.query(*columns)
            .select_from(WorkLog)
            .join(ProjectPhase, WorkLog.phase_id == ProjectPhase.id)
            .join(Project, ProjectPhase.project_id == Project.id)
        )
        if actor.role == Role.ENGINEER.value:
            q = q.filter(WorkLog.engineer_id == actor.id)
        if project_id is not None:
            q = q.filter(ProjectPhase.project_id == project_id)
        return _date_window(q, start_date, end_date)

    project_rows = (
        _base(
            Project.id, Project.name, User.id, User.name,
            func.sum(WorkLog.hours), func.count(func.distinct(WorkLog.work_date)),
            func.count(WorkLog.id), func.min(WorkLog.work_date), func.max(WorkLog.work_date),
        )
        .join(User, WorkLog.engineer_id == User.id)
        .group_by(Project.id, Project.name, User.id, User.name)
        .order_by(Project.name, User.name)
        .all()
    )
    phase_rows = (
        _base(
            ProjectPhase.id, ProjectPhase.phase_name, ProjectPhase.project_id, Project.name,
            func.sum(WorkLog.hours), func.count(func.distinct(WorkLog.engineer_id)),
            func.count(WorkLog.id),
        )
        .group_by(ProjectPhase.id, ProjectPhase.phase_name, ProjectPhase.phase_order,
                  ProjectPhase.project_id, Project.name)
        .order_by(Project.name, ProjectPhase.phase_order)
        .all()
    )
    detail_rows = (
        _base(
            ProjectPhase.id, ProjectPhase.phase_name, ProjectPhase.project_id, Project.name,
            User.id, User.name,
            func.sum(WorkLog.hours), func.count(WorkLog.id),
            func.count(func.distinct(WorkLog.work_date)),
            func.min(WorkLog.work_date), func.max(WorkLog.work_date),
        )
        .join(User, WorkLog.engineer_id == User.id)
        .group_by(ProjectPhase.id, ProjectPhase.phase_name, ProjectPhase.phase_order,
                  ProjectPhase.project_id, Project.name, User.id, User.name)
        .order_by(Project.name, ProjectPhase.phase_order, User.name)
        .all()
    )

    def _iso(d):
        return d.isoformat() if d else None

    return {
        "project_summary": [
            {
                "project_id": r[0], "project_name": r[1],
                "engineer_id": r[2], "engineer_name": r[3],
                "total_hours": round(float(r[4] or 0), 2), "days_worked": r[5],
                "total_entries": r[6],
                "first_entry_date": _iso(r[7]), "last_entry_date": _iso(r[8]),
            }
            for r in project_rows
        ],
        "phase_summary": [
            {
                "phase_id": r[0], "phase_name": r[1],
                "project_id": r[2], "project_name": r[3],
                "total_hours": round(float(r[4] or 0), 2),
                "engineers_count": r[5], "total_entries": r[6],
            }
            for r in phase_rows
        ],
        "phase_engineer_detail": [
            {
                "phase_id": r[0], "phase_name": r[1],
                "project_id": r[2], "project_name": r[3],
                "engineer_id": r[4], "engineer_name": r[5],
                "engineer_hours": round(float(r[6] or 0), 2),
                "engineer_entries": r[7], "engineer_days_worked": r[8],
                "first_entry_date": _iso(r[9]), "last_entry_date": _iso(r[10]),
            }
            for r in detail_rows
        ],
    }
