"""
Warning Service — advisory delay and risk heuristics for a project's phases.

``generate_warnings`` is a pure function: it takes phase rows (dicts or
objects) with their aggregated logged hours plus a reference date, and
returns advisory records with a capped risk score.  It never raises;
rows it cannot interpret are skipped and logged.

Warning types:
    phase_delay           in progress longer than planned_weeks
    approaching_due_date  planned end within 7 days (planned_end_date, else
                          planned_start_date + planned_weeks)
    overdue               planned end already passed
    warning_flag          supervisor flagged the phase manually
    progress_risk         3–7 days left and logged hours trail elapsed time
"""

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import func

from phasetrack.models import db
from phasetrack.models.phase import ProjectPhase
from phasetrack.models.project import Project
from phasetrack.models.work_log import WorkLog
from phasetrack.services.permission import authorize
from phasetrack.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)

MAX_RISK_SCORE = 100

# ── Risk weights ─────────────────────────────────────────────────────────────
DELAY_CRITICAL_DAYS = 7
SCORE_DELAY_CRITICAL = 30
SCORE_DELAY_WARNING = 15
DUE_SOON_DAYS = 7
DUE_URGENT_DAYS = 3
SCORE_DUE_URGENT = 20
SCORE_DUE_WARNING = 10
SCORE_OVERDUE = 40
SCORE_FLAGGED = 10

# progress gap (expected % − logged %) → (risk_level, severity, score)
PROGRESS_RISK_BANDS = (
    (30, "critical", "critical", 25),
    (20, "high", "urgent", 20),
    (10, "medium", "warning", 15),
)


def _get(row, key, default=None):
    if isinstance(row, dict):
        return row.get(key, default)
    return getattr(row, key, default)


def _as_date(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _phase_warnings(row, today: date) -> list[dict]:
    out = []
    phase_id = _get(row, "id")
    name = _get(row, "phase_name") or f"Phase {phase_id}"
    status = _get(row, "status")
    planned_days = int(_get(row, "planned_weeks") or 0) * 7
    actual_start = _as_date(_get(row, "actual_start_date"))
    planned_start = _as_date(_get(row, "planned_start_date"))
    planned_end = _as_date(_get(row, "planned_end_date"))
    predicted = float(_get(row, "predicted_hours") or 0)
    logged = float(_get(row, "actual_hours_logged", _get(row, "actual_hours")) or 0)

    if status == "in_progress" and actual_start is not None:
        days_in_progress = (today - actual_start).days
        if days_in_progress > planned_days:
            days_overdue = days_in_progress - planned_days
            critical = days_overdue > DELAY_CRITICAL_DAYS
            out.append({
                "id": f"delay-{phase_id}",
                "type": "phase_delay",
                "severity": "critical" if critical else "warning",
                "phase_id": phase_id,
                "phase_name": name,
                "message": f'Phase "{name}" is {days_overdue} days overdue',
                "days_overdue": days_overdue,
                "planned_duration": planned_days,
                "actual_duration": days_in_progress,
                "risk_score": SCORE_DELAY_CRITICAL if critical else SCORE_DELAY_WARNING,
            })

    if status == "in_progress" and (planned_end is not None or planned_start is not None):
        # planned_end_date moves when a delay is recorded; prefer it when set
        due = planned_end or planned_start + timedelta(days=planned_days)
        days_until_due = (due - today).days
        if 0 <= days_until_due <= DUE_SOON_DAYS:
            urgent = days_until_due <= DUE_URGENT_DAYS
            out.append({
                "id": f"due-{phase_id}",
                "type": "approaching_due_date",
                "severity": "urgent" if urgent else "warning",
                "phase_id": phase_id,
                "phase_name": name,
                "message": f'Phase "{name}" is due in {days_until_due} days ({due.isoformat()})',
                "days_until_due": days_until_due,
                "due_date": due.isoformat(),
                "risk_score": SCORE_DUE_URGENT if urgent else SCORE_DUE_WARNING,
            })
        elif days_until_due < 0:
            out.append({
                "id": f"overdue-{phase_id}",
                "type": "overdue",
                "severity": "critical",
                "phase_id": phase_id,
                "phase_name": name,
                "message": f'Phase "{name}" was due {abs(days_until_due)} days ago',
                "days_overdue": abs(days_until_due),
                "due_date": due.isoformat(),
                "risk_score": SCORE_OVERDUE,
            })

    if _get(row, "warning_flag"):
        out.append({
            "id": f"warning-{phase_id}",
            "type": "warning_flag",
            "severity": "warning",
            "phase_id": phase_id,
            "phase_name": name,
            "message": f'Phase "{name}" has been flagged for attention',
            "risk_score": SCORE_FLAGGED,
        })

    if status == "in_progress" and actual_start is not None and predicted > 0 and planned_days > 0:
        due = actual_start + timedelta(days=planned_days)
        days_until_due = (due - today).days
        days_elapsed = (today - actual_start).days
        if DUE_URGENT_DAYS <= days_until_due <= DUE_SOON_DAYS and days_elapsed > 0:
            expected = min(100.0, days_elapsed / planned_days * 100)
            actual = min(100.0, logged / predicted * 100)
            gap = expected - actual
            for threshold, level, severity, score in PROGRESS_RISK_BANDS:
                if gap >= threshold:
                    hours_needed = max(0.0, predicted - logged)
                    daily = -(-hours_needed // max(1, days_until_due))  # ceil
                    out.append({
                        "id": f"progress-risk-{phase_id}",
                        "type": "progress_risk",
                        "severity": severity,
                        "phase_id": phase_id,
                        "phase_name": name,
                        "message": (
                            f'Phase "{name}" is {gap:.1f}% behind expected progress with '
                            f"{days_until_due} days remaining. {hours_needed:g} hours still "
                            f"needed ({daily:g} hours/day required)."
                        ),
                        "days_until_due": days_until_due,
                        "progress_gap": round(gap),
                        "expected_progress": round(expected),
                        "actual_progress": round(actual),
                        "hours_remaining": hours_needed,
                        "daily_hours_required": daily,
                        "risk_level": level,
                        "risk_score": score,
                    })
                    break
    return out


def _risk_level(score: int) -> tuple[str, str]:
    if score >= 70:
        return "critical", "Immediate attention required"
    if score >= 40:
        return "high", "Action needed soon"
    if score >= 20:
        return "medium", "Monitor closely"
    return "low", "On track"


def generate_warnings(phases, today: date | None = None) -> dict:
    """Evaluate every phase row and return warnings plus project-level scores."""
    today = today or date.today()
    phases = list(phases or [])
    warnings = []
    for row in phases:
        try:
            warnings.extend(_phase_warnings(row, today))
        except (TypeError, ValueError, AttributeError, ZeroDivisionError) as exc:
            logger.debug("Skipping malformed phase row %r: %s", _get(row, "id"), exc)

    raw_score = sum(w["risk_score"] for w in warnings)
    total_risk = min(raw_score, MAX_RISK_SCORE)
    level, description = _risk_level(raw_score)

    statuses = [_get(p, "status") for p in phases]
    completed = statuses.count("completed")
    completion_pct = completed / len(phases) * 100 if phases else 0

    health = 100 - raw_score - 5 * len(warnings) + min(20, completion_pct * 0.2)
    health = max(10, min(100, health))

    by_severity = {s: sum(1 for w in warnings if w["severity"] == s) for s in ("critical", "urgent", "warning")}
    recommendations = []
    if by_severity["critical"]:
        recommendations.append({
            "id": "critical-action",
            "priority": 95,
            "title": "Immediate Action Required",
            "description": f"{by_severity['critical']} critical issue(s) detected. Review overdue phases.",
        })
    if by_severity["urgent"]:
        recommendations.append({
            "id": "urgent-planning",
            "priority": 80,
            "title": "Strategic Planning Session",
            "description": f"{by_severity['urgent']} urgent issue(s) require attention within 48 hours.",
        })
    risk_rows = [w for w in warnings if w["type"] == "progress_risk"]
    if risk_rows:
        hours = sum(w["hours_remaining"] for w in risk_rows)
        recommendations.append({
            "id": "resource-optimization",
            "priority": 75,
            "title": "Resource Optimization",
            "description": f"{hours:g} additional hours needed across {len(risk_rows)} at-risk phase(s).",
        })

    return {
        "warnings": warnings,
        "total_warnings": len(warnings),
        "total_risk_score": total_risk,
        "health_score": round(health),
        "risk_assessment": {
            "level": level,
            "description": description,
            "mitigation_required": raw_score >= 40,
        },
        "summary": {
            t: sum(1 for w in warnings if w["type"] == t)
            for t in ("phase_delay", "approaching_due_date", "overdue", "warning_flag", "progress_risk")
        },
        "performance_metrics": {
            "total_phases": len(phases),
            "completed_phases": completed,
            "in_progress_phases": statuses.count("in_progress"),
            "not_started_phases": statuses.count("not_started"),
            "completion_percentage": round(completion_pct),
        },
        "recommendations": recommendations,
        "analysis_date": today.isoformat(),
    }


def project_warnings(project_id: int, actor, today: date | None = None) -> dict:
    """Load a project's phases with logged hours and run the heuristics."""
    authorize(actor, "project.view")
    get_or_raise(Project, project_id)
    rows = (
        db.session.query(ProjectPhase, func.coalesce(func.sum(WorkLog.hours), 0))
        .outerjoin(WorkLog, WorkLog.phase_id == ProjectPhase.id)
        .filter(ProjectPhase.project_id == project_id)
        .group_by(ProjectPhase.id)
        .order_by(ProjectPhase.phase_order)
        .all()
    )
    phases = []
    for phase, logged in rows:
        phases.append({
            "id": phase.id,
            "phase_name": phase.phase_name,
            "status": phase.status,
            "planned_weeks": phase.planned_weeks,
            "planned_start_date": phase.planned_start_date,
            "planned_end_date": phase.planned_end_date,
            "actual_start_date": phase.actual_start_date,
            "warning_flag": phase.warning_flag,
            "phase_order": phase.phase_order,
            "predicted_hours": phase.predicted_hours,
            "actual_hours_logged": float(logged or 0),
        })
    result = generate_warnings(phases, today)
    result["project_id"] = project_id
    return result
