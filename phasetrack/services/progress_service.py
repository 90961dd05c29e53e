"""
Progress Service — hours-based progress, manual overrides and variance.

Two numbers are kept side by side for every phase:

    calculated_progress  = clamp(0, 100, 100 * sum(hours) / predicted_hours)
    actual_progress      = manual percentage of the most recent
                           ProgressAdjustment row for the phase (None until
                           a supervisor records one)
    progress_variance    = actual_progress - calculated_progress

Adjustments are inserted, never updated, so the full override history
survives.  Per-engineer views compute each engineer's own hours against the
phase's predicted hours; those figures are reported next to the supervisor's
assessment, not reconciled with it.

Rules:
    - ``recompute_phase`` flushes but never commits; callers own the
      transaction (see ``phasetrack.utils.helpers.atomic``).
    - Public mutating functions authorize the actor and commit.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from phasetrack.core.exceptions import AuthorizationError, ValidationError
from phasetrack.models import db
from phasetrack.models.audit import write_audit
from phasetrack.models.auth import User
from phasetrack.models.phase import ProjectPhase
from phasetrack.models.project import Project
from phasetrack.models.work_log import ProgressAdjustment, WorkLog
from phasetrack.services import realtime
from phasetrack.services.permission import Role, authorize
from phasetrack.utils.helpers import atomic, get_or_raise, parse_number

logger = logging.getLogger(__name__)

# Variance beyond ±10 points flags a phase as ahead of / behind its hours
VARIANCE_THRESHOLD = 10


# ═════════════════════════════════════════════════════════════════════════════
# Pure computation
# ═════════════════════════════════════════════════════════════════════════════


def calculated_progress(hours, predicted_hours) -> float:
    """Hours-based completion percentage, clamped to [0, 100] and rounded to 2 dp.

    Returns 0 when ``predicted_hours`` is 0, None or not positive.  Never
    raises and never returns NaN.
    """
    try:
        hours = float(hours or 0)
        predicted = float(predicted_hours or 0)
    except (TypeError, ValueError):
        return 0.0
    if predicted <= 0 or hours != hours or predicted != predicted:
        return 0.0
    pct = 100.0 * hours / predicted
    return round(min(100.0, max(0.0, pct)), 2)


def progress_variance(actual, calculated) -> float | None:
    if actual is None:
        return None
    return round(float(actual) - float(calculated or 0), 2)


def calculate_progress_for_hours(hours, predicted_hours) -> dict:
    """Preview what ``calculated_progress`` would be for a number of hours."""
    hours = parse_number(hours, "hours_logged")
    predicted = parse_number(predicted_hours, "predicted_hours")
    if hours < 0 or predicted < 0:
        raise ValidationError("hours_logged and predicted_hours must not be negative")
    return {
        "hours_logged": hours,
        "predicted_hours": predicted,
        "calculated_progress": calculated_progress(hours, predicted),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Aggregates
# ═════════════════════════════════════════════════════════════════════════════


def _phase_hours(phase_id: int, engineer_id: int | None = None) -> float:
    q = db.session.query(func.coalesce(func.sum(WorkLog.hours), 0)).filter(WorkLog.phase_id == phase_id)
    if engineer_id is not None:
        q = q.filter(WorkLog.engineer_id == engineer_id)
    return float(q.scalar() or 0)


def _latest_adjustment(phase_id: int, engineer_id: int | None = None) -> ProgressAdjustment | None:
    q = ProgressAdjustment.query.filter_by(phase_id=phase_id)
    if engineer_id is not None:
        q = q.filter_by(engineer_id=engineer_id)
    return q.order_by(ProgressAdjustment.created_at.desc(), ProgressAdjustment.id.desc()).first()


def recompute_project_hours(project_id: int) -> float:
    total = float(
        db.session.query(func.coalesce(func.sum(ProjectPhase.actual_hours), 0))
        .filter(ProjectPhase.project_id == project_id)
        .scalar() or 0
    )
    project = db.session.get(Project, project_id)
    if project is not None:
        project.actual_hours = round(total, 2)
    return total


def recompute_phase(phase_id: int) -> float:
    """Re-derive a phase's hours and progress fields from its rows.

    Sums the phase's work logs into ``actual_hours``, refreshes
    ``calculated_progress``, ``actual_progress`` and ``progress_variance``,
    then re-sums the owning project's ``actual_hours``.  Idempotent.

    Returns:
        The phase's new actual_hours.
    """
    phase = get_or_raise(ProjectPhase, phase_id)
    db.session.flush()

    hours = round(_phase_hours(phase.id), 2)
    phase.actual_hours = hours
    phase.calculated_progress = calculated_progress(hours, phase.predicted_hours)

    latest = _latest_adjustment(phase.id)
    phase.actual_progress = latest.manual_progress_percentage if latest else None
    phase.progress_variance = progress_variance(phase.actual_progress, phase.calculated_progress)

    db.session.flush()
    recompute_project_hours(phase.project_id)
    db.session.flush()
    logger.debug(
        "Recomputed phase %s: hours=%s calculated=%s actual=%s",
        phase.id, hours, phase.calculated_progress, phase.actual_progress,
    )
    return hours


# ═════════════════════════════════════════════════════════════════════════════
# Manual adjustments
# ═════════════════════════════════════════════════════════════════════════════


def _validate_adjustment(manual_progress_percentage, reason) -> tuple[float, str]:
    pct = parse_number(manual_progress_percentage, "manual_progress_percentage")
    if pct < 0 or pct > 100:
        raise ValidationError(
            "Progress percentage must be between 0 and 100",
            {"manual_progress_percentage": "out of range"},
        )
    reason = (reason or "").strip() if isinstance(reason, str) else ""
    if not reason:
        raise ValidationError("Adjustment reason is required", {"adjustment_reason": "required"})
    return pct, reason


def adjust_phase_progress(phase_id: int, actor, manual_progress_percentage, reason,
                          engineer_id: int | None = None) -> dict:
    """Record a phase-overall override and return the refreshed phase detail."""
    authorize(actor, "progress.adjust")
    pct, reason = _validate_adjustment(manual_progress_percentage, reason)
    phase = get_or_raise(ProjectPhase, phase_id)
    if engineer_id is not None:
        get_or_raise(User, engineer_id, label="Engineer")

    with atomic():
        hours = _phase_hours(phase.id, engineer_id)
        adjustment = ProgressAdjustment(
            phase_id=phase.id,
            engineer_id=engineer_id,
            adjustment_type="phase_overall",
            hours_logged=hours,
            hours_based_progress=calculated_progress(hours, phase.predicted_hours),
            manual_progress_percentage=pct,
            adjustment_reason=reason,
            adjusted_by=actor.id,
        )
        db.session.add(adjustment)
        db.session.flush()
        recompute_phase(phase.id)
        write_audit(
            entity_type="phase", entity_id=phase.id, action="progress.adjust",
            actor_user_id=actor.id, project_id=phase.project_id, note=reason,
            diff={"actual_progress": pct, "engineer_id": engineer_id},
        )
        realtime.queue_project_event(db.session, phase.project_id, realtime.PROGRESS_ADJUSTED, {
            "phase_id": phase.id,
            "actual_progress": phase.actual_progress,
            "calculated_progress": phase.calculated_progress,
            "progress_variance": phase.progress_variance,
        })

    logger.info("Phase %s progress set to %s%% by user=%s", phase.id, pct, actor.id)
    return {"adjustment": adjustment.to_dict(), "phase": phase.to_dict()}


def adjust_work_log_progress(work_log_id: int, actor, manual_progress_percentage, reason) -> dict:
    """Record a per-entry override and stamp it on the work log."""
    authorize(actor, "progress.adjust")
    pct, reason = _validate_adjustment(manual_progress_percentage, reason)
    work_log = get_or_raise(WorkLog, work_log_id)
    phase = get_or_raise(ProjectPhase, work_log.phase_id)

    with atomic():
        engineer_hours = _phase_hours(phase.id, work_log.engineer_id)
        adjustment = ProgressAdjustment(
            phase_id=phase.id,
            engineer_id=work_log.engineer_id,
            work_log_id=work_log.id,
            adjustment_type="work_log",
            hours_logged=work_log.hours,
            hours_based_progress=calculated_progress(engineer_hours, phase.predicted_hours),
            manual_progress_percentage=pct,
            adjustment_reason=reason,
            adjusted_by=actor.id,
        )
        db.session.add(adjustment)
        work_log.manual_progress_percentage = pct
        work_log.progress_notes = reason
        work_log.progress_adjusted_by = actor.id
        work_log.progress_adjusted_at = datetime.now(timezone.utc)
        db.session.flush()
        recompute_phase(phase.id)
        write_audit(
            entity_type="work_log", entity_id=work_log.id, action="progress.adjust",
            actor_user_id=actor.id, project_id=phase.project_id, note=reason,
            diff={"manual_progress_percentage": pct},
        )
        realtime.queue_project_event(db.session, phase.project_id, realtime.PROGRESS_ADJUSTED, {
            "phase_id": phase.id,
            "work_log_id": work_log.id,
            "actual_progress": phase.actual_progress,
        })

    logger.info("Work log %s progress set to %s%% by user=%s", work_log.id, pct, actor.id)
    return {
        "adjustment": adjustment.to_dict(),
        "breakdown": _engineer_breakdown(phase, work_log.engineer_id),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════════════


def _engineer_breakdown(phase: ProjectPhase, engineer_id: int) -> dict:
    engineer = db.session.get(User, engineer_id)
    hours = _phase_hours(phase.id, engineer_id)
    hours_based = calculated_progress(hours, phase.predicted_hours)
    history = (
        ProgressAdjustment.query
        .filter_by(phase_id=phase.id, engineer_id=engineer_id)
        .order_by(ProgressAdjustment.created_at.desc(), ProgressAdjustment.id.desc())
        .all()
    )
    actual = history[0].manual_progress_percentage if history else hours_based
    return {
        "phase_id": phase.id,
        "phase_name": phase.phase_name,
        "engineer_id": engineer_id,
        "engineer_name": engineer.name if engineer else None,
        "hours_logged": round(hours, 2),
        "predicted_hours": phase.predicted_hours or 0,
        "hours_based_progress": hours_based,
        "actual_progress": actual,
        "variance": round(actual - hours_based, 2),
        "has_manual_adjustments": bool(history),
        "manual_adjustments": [a.to_dict() for a in history],
        "adjustment_history_count": len(history),
    }


def _engineers_on_phase(phase_id: int) -> list[int]:
    rows = (
        db.session.query(WorkLog.engineer_id)
        .filter(WorkLog.phase_id == phase_id)
        .distinct()
        .all()
    )
    return [r[0] for r in rows]


def progress_history(phase_id: int, actor, engineer_id: int | None = None) -> list[dict]:
    """Adjustment rows for a phase, newest first."""
    authorize(actor, "progress.view")
    get_or_raise(ProjectPhase, phase_id)
    q = ProgressAdjustment.query.filter_by(phase_id=phase_id)
    if engineer_id is not None:
        q = q.filter_by(engineer_id=engineer_id)
    rows = q.order_by(ProgressAdjustment.created_at.desc(), ProgressAdjustment.id.desc()).all()
    return [r.to_dict() for r in rows]


def phase_progress_summary(phase_id: int, actor) -> list[dict]:
    """Per-engineer hours-based % next to actual working %, for every engineer with hours."""
    authorize(actor, "progress.view")
    phase = get_or_raise(ProjectPhase, phase_id)
    out = []
    for engineer_id in _engineers_on_phase(phase.id):
        b = _engineer_breakdown(phase, engineer_id)
        latest = _latest_adjustment(phase.id, engineer_id)
        out.append({
            "phase_id": phase.id,
            "phase_name": phase.phase_name,
            "engineer_id": engineer_id,
            "engineer_name": b["engineer_name"],
            "total_hours_logged": b["hours_logged"],
            "predicted_hours": b["predicted_hours"],
            "calculated_progress": b["hours_based_progress"],
            "actual_progress": b["actual_progress"],
            "variance": b["variance"],
            "last_adjustment": latest.created_at.isoformat() if latest else None,
            "last_adjustment_by": latest.adjuster.name if latest and latest.adjuster else None,
            "adjustment_count": b["adjustment_history_count"],
        })
    out.sort(key=lambda row: (row["engineer_name"] or "").lower())
    return out


def engineer_progress_breakdown(phase_id: int, engineer_id: int, actor) -> dict:
    """One engineer's progress on a phase. Engineers may only view their own."""
    authorize(actor, "progress.view")
    if actor.role == Role.ENGINEER.value and actor.id != engineer_id:
        raise AuthorizationError(
            "Engineers can only view their own progress",
            operation="progress.view", role=actor.role,
        )
    phase = get_or_raise(ProjectPhase, phase_id)
    get_or_raise(User, engineer_id, label="Engineer")
    return _engineer_breakdown(phase, engineer_id)


def phase_progress_detail(phase_id: int, actor) -> dict:
    authorize(actor, "progress.view")
    phase = get_or_raise(ProjectPhase, phase_id)
    engineers = []
    for engineer_id in _engineers_on_phase(phase.id):
        b = _engineer_breakdown(phase, engineer_id)
        last_date = (
            db.session.query(func.max(WorkLog.work_date))
            .filter(WorkLog.phase_id == phase.id, WorkLog.engineer_id == engineer_id)
            .scalar()
        )
        engineers.append({
            "engineer_id": engineer_id,
            "engineer_name": b["engineer_name"],
            "hours_logged": b["hours_logged"],
            "calculated_progress": b["hours_based_progress"],
            "actual_progress": b["actual_progress"],
            "variance": b["variance"],
            "last_work_log_date": last_date.isoformat() if last_date else None,
            "adjustment_count": b["adjustment_history_count"],
            "has_manual_adjustments": b["has_manual_adjustments"],
        })
    engineers.sort(key=lambda row: (row["engineer_name"] or "").lower())
    return {
        "phase_id": phase.id,
        "phase_name": phase.phase_name,
        "predicted_hours": phase.predicted_hours or 0,
        "actual_hours": phase.actual_hours or 0,
        "calculated_progress": phase.calculated_progress or 0,
        "actual_progress": phase.actual_progress,
        "progress_variance": phase.progress_variance,
        "engineers": engineers,
    }


def project_progress_stats(project_id: int, actor) -> dict:
    """Project-level progress averages and ahead/behind counts."""
    authorize(actor, "project.view")
    get_or_raise(Project, project_id)
    phases = ProjectPhase.query.filter_by(project_id=project_id).all()

    def _avg(values):
        values = [v for v in values if v is not None]
        return round(sum(values) / len(values), 2) if values else 0

    return {
        "total_phases": len(phases),
        "completed_phases": sum(1 for p in phases if p.actual_progress == 100),
        "avg_calculated_progress": _avg([p.calculated_progress for p in phases]),
        "avg_actual_progress": _avg([p.actual_progress for p in phases]),
        "avg_variance": _avg([p.progress_variance for p in phases]),
        "phases_behind_quality": sum(
            1 for p in phases if p.progress_variance is not None and p.progress_variance < -VARIANCE_THRESHOLD
        ),
        "phases_ahead_quality": sum(
            1 for p in phases if p.progress_variance is not None and p.progress_variance > VARIANCE_THRESHOLD
        ),
    }
