"""
Phase Lifecycle Service

Manages project phase status transitions with:
  - Transition validation (PHASE_TRANSITIONS)
  - Role checks (OPERATION_ROLES)
  - Side effects (approve → next phase ready, submit → early access
    work_completed, complete → actual_end_date)
  - Audit trail via write_audit
  - Real-time events published after commit

Primary track:
    not_started → ready → in_progress → submitted → approved → completed

Early access runs on its own dimension (early_access_status) so that granting
or revoking it never rewrites the primary history, and revoking never touches
logged hours.

Usage:
    from phasetrack.services.phase_lifecycle import transition_phase

    result = transition_phase(phase_id=7, action="approve", actor=current_user)
"""

import logging
from datetime import date, datetime, timedelta, timezone

from phasetrack.core.exceptions import (
    ConflictError,
    EarlyAccessUnavailable,
    InvalidTransition,
    ValidationError,
)
from phasetrack.models import db
from phasetrack.models.audit import write_audit
from phasetrack.models.phase import (
    DELAY_REASONS,
    PHASE_TRANSITIONS,
    REVOCABLE_EARLY_ACCESS,
    WORKABLE_STATUSES,
    ProjectPhase,
)
from phasetrack.models.project import Project
from phasetrack.models.work_log import WorkLog
from phasetrack.services import realtime
from phasetrack.services.permission import authorize, has_permission
from phasetrack.utils.helpers import atomic, get_or_raise, parse_date_input, parse_number

logger = logging.getLogger(__name__)

# Temporary offset applied during reorder so no two rows share an order mid-flight
REORDER_OFFSET = 100000


def _now():
    return datetime.now(timezone.utc)


def _queue_phase_updated(phase: ProjectPhase, action: str, actor_id: int) -> None:
    realtime.queue_project_event(db.session, phase.project_id, realtime.PHASE_UPDATED, {
        "phase_id": phase.id,
        "action": action,
        "status": phase.status,
        "early_access_status": phase.early_access_status,
        "updated_by": actor_id,
    })


def _predecessor(phase: ProjectPhase) -> ProjectPhase | None:
    return (
        ProjectPhase.query
        .filter(ProjectPhase.project_id == phase.project_id,
                ProjectPhase.phase_order < phase.phase_order)
        .order_by(ProjectPhase.phase_order.desc())
        .first()
    )


def _successor(phase: ProjectPhase) -> ProjectPhase | None:
    return (
        ProjectPhase.query
        .filter(ProjectPhase.project_id == phase.project_id,
                ProjectPhase.phase_order > phase.phase_order)
        .order_by(ProjectPhase.phase_order.asc())
        .first()
    )


def open_next_phase(project_id: int, actor_id: int | None = None) -> ProjectPhase | None:
    """
    Make sure a project that has no workable phase gets one.

    Called after phases are added, removed or reordered.  When no phase is
    ready, in_progress or submitted, the first not_started phase becomes
    ready if it has no predecessor or its predecessor is approved or
    completed.  Runs inside the caller's transaction; returns the phase it
    opened, if any.
    """
    ordered = (
        ProjectPhase.query
        .filter_by(project_id=project_id)
        .order_by(ProjectPhase.phase_order)
        .all()
    )
    if any(p.status in WORKABLE_STATUSES for p in ordered):
        return None

    previous = None
    for phase in ordered:
        if phase.status == "not_started":
            if previous is None or previous.status in ("approved", "completed"):
                phase.status = "ready"
                db.session.flush()
                _queue_phase_updated(phase, "unlock", actor_id)
                logger.info("Phase %s of project %s opened (ready)", phase.id, project_id)
                return phase
            return None
        previous = phase
    return None


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════


def validate_transition(phase: ProjectPhase, action: str) -> dict:
    """
    Validate whether an action is valid for the phase's current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None,
         "early_access": bool}
    """
    rule = PHASE_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": phase.status, "to": None,
                "reason": f"Unknown action: {action}", "early_access": False}

    if action == "start" and phase.can_start_via_early_access and phase.status in ("not_started", "ready"):
        return {"valid": True, "from": phase.status, "to": rule["to"], "reason": None,
                "early_access": True}

    if phase.status not in rule["from"]:
        return {"valid": False, "from": phase.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{phase.status}'",
                "early_access": False}

    return {"valid": True, "from": phase.status, "to": rule["to"], "reason": None,
            "early_access": False}


def _apply_start(phase: ProjectPhase, via_early_access: bool) -> None:
    phase.status = "in_progress"
    if phase.actual_start_date is None:
        phase.actual_start_date = _now()
    if via_early_access:
        phase.early_access_status = "in_progress"


def start_for_work_log(phase: ProjectPhase, actor_id: int) -> bool:
    """Start a phase implicitly because hours were logged against it.

    Runs inside the caller's transaction.  Returns True if the phase moved.
    """
    check = validate_transition(phase, "start")
    if not check["valid"]:
        return False
    previous = phase.status
    _apply_start(phase, check["early_access"])
    write_audit(
        entity_type="phase", entity_id=phase.id, action="phase.start",
        actor_user_id=actor_id, project_id=phase.project_id,
        note="Started by first work log",
        diff={"status": {"old": previous, "new": phase.status}},
    )
    if check["early_access"]:
        realtime.queue_project_event(db.session, phase.project_id, realtime.EARLY_ACCESS_PHASE_STARTED, {
            "phase_id": phase.id, "started_by": actor_id,
        })
    _queue_phase_updated(phase, "start", actor_id)
    return True


# ═════════════════════════════════════════════════════════════════════════════
# Primary lifecycle
# ═════════════════════════════════════════════════════════════════════════════


def transition_phase(phase_id: int, action: str, actor, *, note: str | None = None) -> dict:
    """
    Execute a primary lifecycle transition (start, submit, approve, complete).

    Returns:
        {"phase_id", "previous_status", "new_status", "action", "phase",
         "unlocked_phase_id"}

    Raises:
        InvalidTransition, AuthorizationError, NotFoundError
    """
    if action not in PHASE_TRANSITIONS:
        raise ValidationError(f"Unknown action: {action}", {"action": "invalid"})
    authorize(actor, f"phase.{action}")

    phase = get_or_raise(ProjectPhase, phase_id)
    check = validate_transition(phase, action)
    if not check["valid"]:
        raise InvalidTransition(action, phase.status, check["reason"])

    previous_status = phase.status
    unlocked = None
    today = date.today()

    with atomic():
        if action == "start":
            _apply_start(phase, check["early_access"])
        elif action == "submit":
            phase.status = "submitted"
            phase.submitted_date = today
            if phase.early_access_status == "in_progress":
                phase.early_access_status = "work_completed"
        elif action == "approve":
            phase.status = "approved"
            phase.approved_date = today
            nxt = _successor(phase)
            # A successor already running under early access keeps its status
            if nxt is not None and nxt.status == "not_started":
                nxt.status = "ready"
                unlocked = nxt
        elif action == "complete":
            phase.status = "completed"
            phase.actual_end_date = _now()

        write_audit(
            entity_type="phase", entity_id=phase.id, action=f"phase.{action}",
            actor_user_id=actor.id, project_id=phase.project_id, note=note,
            diff={"status": {"old": previous_status, "new": phase.status}},
        )
        if check["early_access"]:
            realtime.queue_project_event(db.session, phase.project_id, realtime.EARLY_ACCESS_PHASE_STARTED, {
                "phase_id": phase.id, "phase_name": phase.phase_name, "started_by": actor.id,
            })
        _queue_phase_updated(phase, action, actor.id)
        if unlocked is not None:
            _queue_phase_updated(unlocked, "unlock", actor.id)

    logger.info(
        "Phase %s %s: %s → %s (user=%s)",
        phase.id, action, previous_status, phase.status, actor.id,
    )
    return {
        "phase_id": phase.id,
        "previous_status": previous_status,
        "new_status": phase.status,
        "action": action,
        "phase": phase.to_dict(),
        "unlocked_phase_id": unlocked.id if unlocked is not None else None,
    }


def start_phase(phase_id: int, actor, note: str | None = None) -> dict:
    return transition_phase(phase_id, "start", actor, note=note)


def submit_phase(phase_id: int, actor, note: str | None = None) -> dict:
    return transition_phase(phase_id, "submit", actor, note=note)


def approve_phase(phase_id: int, actor, note: str | None = None) -> dict:
    return transition_phase(phase_id, "approve", actor, note=note)


def complete_phase(phase_id: int, actor, note: str | None = None) -> dict:
    return transition_phase(phase_id, "complete", actor, note=note)


# ═════════════════════════════════════════════════════════════════════════════
# Advisory flags & delays
# ═════════════════════════════════════════════════════════════════════════════


def mark_warning(phase_id: int, actor, flag: bool, note: str | None = None) -> dict:
    """Set or clear the manual warning flag. Idempotent; no status side effects."""
    authorize(actor, "phase.mark_warning")
    phase = get_or_raise(ProjectPhase, phase_id)
    flag = bool(flag)
    previous = phase.warning_flag

    with atomic():
        phase.warning_flag = flag
        write_audit(
            entity_type="phase", entity_id=phase.id, action="phase.mark_warning",
            actor_user_id=actor.id, project_id=phase.project_id, note=note,
            diff={"warning_flag": {"old": previous, "new": flag}},
        )
        _queue_phase_updated(phase, "warning", actor.id)

    logger.info("Phase %s warning_flag=%s (user=%s)", phase.id, flag, actor.id)
    return phase.to_dict()


def handle_delay(phase_id: int, actor, reason: str, note: str | None = None,
                 additional_weeks=None, new_end_date=None) -> dict:
    """
    Record a delay cause and optionally push the phase's planned end date.

    ``new_end_date`` wins over ``additional_weeks`` when both are given.  A
    client-caused delay shifts every later phase's planned dates by the same
    number of days; a company delay moves only this phase.
    """
    authorize(actor, "phase.delay")
    if reason not in DELAY_REASONS:
        raise ValidationError(
            f"delay_reason must be one of {', '.join(DELAY_REASONS)}",
            {"delay_reason": "invalid"},
        )
    phase = get_or_raise(ProjectPhase, phase_id)

    target_end = parse_date_input(new_end_date, "new_end_date")
    if target_end is None and additional_weeks not in (None, "", 0):
        weeks = parse_number(additional_weeks, "additional_weeks")
        if weeks <= 0:
            raise ValidationError("additional_weeks must be positive", {"additional_weeks": "invalid"})
        if phase.planned_end_date is None:
            raise ValidationError("Phase has no planned end date to extend")
        target_end = phase.planned_end_date + timedelta(days=round(weeks * 7))

    previous_reason = phase.delay_reason
    previous_end = phase.planned_end_date
    shifted = []

    with atomic():
        phase.delay_reason = reason
        if target_end is not None:
            phase.planned_end_date = target_end
            if reason == "client" and previous_end is not None:
                delta = target_end - previous_end
                if delta.days:
                    later = (
                        ProjectPhase.query
                        .filter(ProjectPhase.project_id == phase.project_id,
                                ProjectPhase.phase_order > phase.phase_order)
                        .all()
                    )
                    for p in later:
                        if p.planned_start_date is not None:
                            p.planned_start_date = p.planned_start_date + delta
                        if p.planned_end_date is not None:
                            p.planned_end_date = p.planned_end_date + delta
                        shifted.append(p.id)
        write_audit(
            entity_type="phase", entity_id=phase.id, action="phase.delay",
            actor_user_id=actor.id, project_id=phase.project_id, note=note,
            diff={
                "delay_reason": {"old": previous_reason, "new": reason},
                "planned_end_date": {"old": previous_end, "new": phase.planned_end_date},
                "shifted_phase_ids": shifted,
            },
        )
        _queue_phase_updated(phase, "delay", actor.id)

    logger.info(
        "Phase %s delay=%s end %s → %s, shifted %d later phase(s) (user=%s)",
        phase.id, reason, previous_end, phase.planned_end_date, len(shifted), actor.id,
    )
    return {"phase": phase.to_dict(), "shifted_phase_ids": shifted}


# ═════════════════════════════════════════════════════════════════════════════
# Early access
# ═════════════════════════════════════════════════════════════════════════════


def _grant_blocker(phase: ProjectPhase) -> str | None:
    if phase.status != "not_started":
        return f"Cannot grant early access to phase with status: {phase.status}"
    if phase.early_access_granted:
        return "Early access has already been granted for this phase"
    prev = _predecessor(phase)
    if prev is None:
        return "The first phase has no predecessor to bypass"
    if prev.status == "completed":
        return "Predecessor phase is already completed"
    return None


def _has_approved_hours(phase_id: int) -> bool:
    return db.session.query(
        WorkLog.query.filter_by(phase_id=phase_id, supervisor_approved=True).exists()
    ).scalar()


def _revoke_blocker(phase: ProjectPhase) -> str | None:
    if not phase.early_access_granted or phase.early_access_status not in REVOCABLE_EARLY_ACCESS:
        return f"Cannot revoke early access (early_access_status={phase.early_access_status})"
    if _has_approved_hours(phase.id):
        return "Cannot revoke early access - supervisor-approved hours exist on this phase"
    return None


def grant_early_access(phase_id: int, actor, note: str | None = None) -> dict:
    """Let engineers start a not_started phase before its predecessor is approved."""
    authorize(actor, "phase.grant_early_access")
    phase = get_or_raise(ProjectPhase, phase_id)
    blocker = _grant_blocker(phase)
    if blocker:
        raise EarlyAccessUnavailable(blocker, {"phase_id": phase.id, "status": phase.status})

    with atomic():
        phase.early_access_granted = True
        phase.early_access_status = "accessible"
        phase.early_access_granted_by = actor.id
        phase.early_access_granted_at = _now()
        phase.early_access_note = note
        write_audit(
            entity_type="phase", entity_id=phase.id, action="phase.grant_early_access",
            actor_user_id=actor.id, project_id=phase.project_id, note=note,
            diff={"early_access_status": {"old": "not_accessible", "new": "accessible"}},
        )
        realtime.queue_project_event(db.session, phase.project_id, realtime.EARLY_ACCESS_GRANTED, {
            "phase_id": phase.id, "phase_name": phase.phase_name,
            "granted_by": actor.id, "note": note,
        })
        _queue_phase_updated(phase, "grant_early_access", actor.id)

    logger.info("Early access granted on phase %s (user=%s)", phase.id, actor.id)
    return phase.to_dict()


def revoke_early_access(phase_id: int, actor, note: str | None = None) -> dict:
    """
    Withdraw early access.  Work logs are never modified.

    A phase that was already started under early access drops back to
    ``not_started`` unless its predecessor has since been approved or
    completed, in which case it stays ``in_progress`` on the normal track.
    """
    authorize(actor, "phase.revoke_early_access")
    phase = get_or_raise(ProjectPhase, phase_id)
    blocker = _revoke_blocker(phase)
    if blocker:
        raise EarlyAccessUnavailable(blocker, {"phase_id": phase.id,
                                               "early_access_status": phase.early_access_status})

    previous_status = phase.status
    previous_ea = phase.early_access_status
    prev = _predecessor(phase)
    predecessor_done = prev is not None and prev.status in ("approved", "completed")

    with atomic():
        if phase.status == "in_progress" and not predecessor_done:
            phase.status = "not_started"
        phase.early_access_granted = False
        phase.early_access_status = "not_accessible"
        phase.early_access_granted_by = None
        phase.early_access_granted_at = None
        phase.early_access_note = None
        write_audit(
            entity_type="phase", entity_id=phase.id, action="phase.revoke_early_access",
            actor_user_id=actor.id, project_id=phase.project_id, note=note,
            diff={
                "early_access_status": {"old": previous_ea, "new": "not_accessible"},
                "status": {"old": previous_status, "new": phase.status},
            },
        )
        realtime.queue_project_event(db.session, phase.project_id, realtime.EARLY_ACCESS_REVOKED, {
            "phase_id": phase.id, "phase_name": phase.phase_name, "revoked_by": actor.id,
        })
        _queue_phase_updated(phase, "revoke_early_access", actor.id)

    logger.info("Early access revoked on phase %s (user=%s)", phase.id, actor.id)
    return phase.to_dict()


def early_access_overview(project_id: int, actor) -> dict:
    authorize(actor, "phase.early_access_overview")
    get_or_raise(Project, project_id)
    phases = (
        ProjectPhase.query
        .filter_by(project_id=project_id, early_access_granted=True)
        .order_by(ProjectPhase.phase_order)
        .all()
    )
    active = [p for p in phases if p.early_access_status in REVOCABLE_EARLY_ACCESS]
    return {
        "phases": [p.to_dict() for p in phases],
        "total_early_access_phases": len(phases),
        "active_early_access_phases": len(active),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Reorder
# ═════════════════════════════════════════════════════════════════════════════


def _validate_ordering(phases: list[ProjectPhase], ordering) -> dict[int, int]:
    if not isinstance(ordering, list) or not ordering:
        raise ValidationError("phases must be a non-empty list of {phase_id, phase_order}")

    mapping: dict[int, int] = {}
    for item in ordering:
        if not isinstance(item, dict):
            raise ValidationError("Each entry must be an object with phase_id and phase_order")
        pid, order = item.get("phase_id"), item.get("phase_order")
        if not isinstance(pid, int) or isinstance(pid, bool) or not isinstance(order, int) or isinstance(order, bool):
            raise ValidationError("phase_id and phase_order must be integers")
        if pid in mapping:
            raise ValidationError(f"Phase {pid} appears more than once", {"phase_id": pid})
        mapping[pid] = order

    existing = {p.id for p in phases}
    if set(mapping) != existing:
        raise ValidationError(
            "Ordering must include every phase of the project exactly once",
            {"missing": sorted(existing - set(mapping)), "unknown": sorted(set(mapping) - existing)},
        )

    orders = list(mapping.values())
    if len(set(orders)) != len(orders):
        raise ConflictError("ProjectPhase", "phase_order", message="Duplicate phase_order in ordering")
    if sorted(orders) != list(range(1, len(phases) + 1)):
        raise ValidationError(
            f"phase_order values must be a permutation of 1..{len(phases)}",
            {"phase_order": "not contiguous"},
        )
    return mapping


def reorder_phases(project_id: int, actor, ordering) -> list[dict]:
    """
    Reassign phase_order for every phase of a project in one transaction.

    The full permutation is validated before any write.  All orders are then
    moved out of the 1..N range, flushed, and set to their final values, so
    the (project_id, phase_order) unique constraint never sees a collision.
    """
    authorize(actor, "phase.reorder")
    get_or_raise(Project, project_id)
    phases = ProjectPhase.query.filter_by(project_id=project_id).all()
    mapping = _validate_ordering(phases, ordering)
    before = {p.id: p.phase_order for p in phases}

    with atomic():
        for p in phases:
            p.phase_order = p.phase_order + REORDER_OFFSET
        db.session.flush()
        for p in phases:
            p.phase_order = mapping[p.id]
        db.session.flush()
        open_next_phase(project_id, actor.id)
        write_audit(
            entity_type="project", entity_id=project_id, action="phase.reorder",
            actor_user_id=actor.id, project_id=project_id,
            diff={"phase_order": {"old": before, "new": mapping}},
        )
        realtime.queue_project_event(db.session, project_id, realtime.PHASES_REORDERED, {
            "project_id": project_id,
            "order": [{"phase_id": pid, "phase_order": o} for pid, o in sorted(mapping.items(), key=lambda x: x[1])],
        })

    logger.info("Reordered %d phases of project %s (user=%s)", len(phases), project_id, actor.id)
    return [p.to_dict() for p in sorted(phases, key=lambda p: p.phase_order)]


# ═════════════════════════════════════════════════════════════════════════════
# Introspection
# ═════════════════════════════════════════════════════════════════════════════


def get_available_actions(phase: ProjectPhase, actor=None) -> list[str]:
    """List actions currently legal for a phase, filtered by ``actor``'s role when given."""
    actions = [a for a in PHASE_TRANSITIONS if validate_transition(phase, a)["valid"]]
    if _grant_blocker(phase) is None:
        actions.append("grant_early_access")
    if _revoke_blocker(phase) is None:
        actions.append("revoke_early_access")
    if actor is not None:
        actions = [a for a in actions if has_permission(actor, f"phase.{a}")]
    return actions
