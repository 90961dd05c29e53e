"""
Read-only reports: project health and metrics, engineer activity and
per-user hour breakdowns.  Nothing here writes to the database.
"""

from datetime import date, datetime, time, timedelta

from sqlalchemy import func

from phasetrack.core.exceptions import AuthorizationError, ValidationError
from phasetrack.models import db
from phasetrack.models.auth import User, UserSession
from phasetrack.models.phase import ProjectPhase
from phasetrack.models.project import Project
from phasetrack.models.work_log import WorkLog
from phasetrack.services.permission import Role, authorize
from phasetrack.utils.helpers import get_or_raise, parse_date_input

# Logged hours above this share of predicted hours count as over budget
OVER_BUDGET_PCT = 110

ACTIVITY_SUMMARY_DEFAULT_DAYS = 7


def _pct(part, whole) -> float:
    return round(float(part) / float(whole) * 100, 2) if whole else 0.0


def _logged_hours(project_id: int) -> float:
    total = (
        db.session.query(func.coalesce(func.sum(WorkLog.hours), 0))
        .select_from(WorkLog)
        .join(ProjectPhase, WorkLog.phase_id == ProjectPhase.id)
        .filter(ProjectPhase.project_id == project_id)
        .scalar()
    )
    return round(float(total or 0), 2)


# ═════════════════════════════════════════════════════════════════════════════
# Project health & metrics
# ═════════════════════════════════════════════════════════════════════════════


def compute_project_health(project_id: int, actor) -> dict:
    """
    Single health verdict for a project.

    ``overall`` is ``good`` unless hours run over budget or any phase is
    flagged (``warning``); any delayed phase makes it ``critical``.
    """
    authorize(actor, "project.view")
    project = get_or_raise(Project, project_id)
    phases = ProjectPhase.query.filter_by(project_id=project_id).all()

    finished = sum(1 for p in phases if p.status in ("approved", "completed"))
    warning_count = sum(1 for p in phases if p.warning_flag)
    delay_count = sum(1 for p in phases if p.delay_reason and p.delay_reason != "none")
    utilization = _pct(_logged_hours(project_id), project.predicted_hours)

    overall = "good"
    risks = []
    if utilization > OVER_BUDGET_PCT:
        overall = "warning"
        risks.append("Over budget on hours")
    if warning_count:
        overall = "warning"
        risks.append(f"{warning_count} phases have warnings")
    if delay_count:
        overall = "critical"
        risks.append(f"{delay_count} phases are delayed")

    return {
        "project_id": project.id,
        "overall": overall,
        "progress": _pct(finished, len(phases)),
        "hours_utilization": utilization,
        "warning_count": warning_count,
        "delay_count": delay_count,
        "on_time": delay_count == 0,
        "on_budget": utilization <= OVER_BUDGET_PCT,
        "risks": risks,
    }


def compute_project_metrics(project_id: int, actor) -> dict:
    authorize(actor, "project.view")
    project = get_or_raise(Project, project_id)

    team_size, total_hours, avg_hours, log_count = (
        db.session.query(
            func.count(func.distinct(WorkLog.engineer_id)),
            func.coalesce(func.sum(WorkLog.hours), 0),
            func.coalesce(func.avg(WorkLog.hours), 0),
            func.count(WorkLog.id),
        )
        .select_from(WorkLog)
        .join(ProjectPhase, WorkLog.phase_id == ProjectPhase.id)
        .filter(ProjectPhase.project_id == project_id)
        .one()
    )
    total_phases = ProjectPhase.query.filter_by(project_id=project_id).count()
    completed = ProjectPhase.query.filter_by(project_id=project_id, status="completed").count()

    return {
        "project_id": project.id,
        "team_size": team_size,
        "total_logged_hours": round(float(total_hours), 2),
        "avg_hours_per_work_log": round(float(avg_hours), 2),
        "total_work_logs": log_count,
        "total_phases": total_phases,
        "completed_phases": completed,
        "completion_rate": _pct(completed, total_phases),
        "hours_utilization": _pct(total_hours, project.predicted_hours),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Engineer activity
# ═════════════════════════════════════════════════════════════════════════════


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _login_times(day: date) -> dict[int, datetime]:
    """Latest session opened on ``day`` per user."""
    start, end = _day_bounds(day)
    rows = (
        db.session.query(UserSession.user_id, func.max(UserSession.created_at))
        .filter(UserSession.created_at >= start, UserSession.created_at < end)
        .group_by(UserSession.user_id)
        .all()
    )
    return {user_id: ts for user_id, ts in rows}


def _logged_in_on(user: User, day: date, sessions: dict) -> datetime | None:
    if user.id in sessions:
        return sessions[user.id]
    if user.last_login_at is not None and user.last_login_at.date() == day:
        return user.last_login_at
    return None


def daily_activity(actor, day=None) -> dict:
    """
    Who among the active engineers logged hours on ``day`` (default today).

    Engineers with hours are listed by total hours, highest first.  The rest
    are classified as ``no_work_logged`` (signed in that day),
    ``not_logged_in`` (signed in before) or ``completely_inactive``.
    """
    authorize(actor, "activity.view")
    day = parse_date_input(day, "date") or date.today()

    engineers = (
        User.query.filter_by(role=Role.ENGINEER.value, is_active=True)
        .order_by(User.name)
        .all()
    )
    sessions = _login_times(day)

    rows = (
        db.session.query(WorkLog, ProjectPhase.phase_name, Project.name)
        .join(ProjectPhase, WorkLog.phase_id == ProjectPhase.id)
        .join(Project, ProjectPhase.project_id == Project.id)
        .filter(WorkLog.work_date == day)
        .order_by(WorkLog.engineer_id, WorkLog.created_at.desc())
        .all()
    )
    logs_by_engineer: dict[int, list[dict]] = {}
    for log, phase_name, project_name in rows:
        logs_by_engineer.setdefault(log.engineer_id, []).append({
            "id": log.id,
            "project_name": project_name,
            "phase_name": phase_name,
            "hours": log.hours,
            "description": log.description or "",
            "work_date": log.work_date.isoformat(),
            "created_at": log.created_at.isoformat() if log.created_at else None,
        })

    active, inactive = [], []
    for engineer in engineers:
        login = _logged_in_on(engineer, day, sessions)
        logs = logs_by_engineer.get(engineer.id)
        if logs:
            active.append({
                "id": engineer.id,
                "name": engineer.name,
                "email": engineer.email,
                "login_time": login.isoformat() if login else None,
                "total_hours": round(sum(entry["hours"] for entry in logs), 2),
                "work_logs": logs,
            })
            continue
        if login is not None:
            status = "no_work_logged"
        elif engineer.last_login_at is not None:
            status = "not_logged_in"
        else:
            status = "completely_inactive"
        last_work = (
            db.session.query(func.max(WorkLog.work_date))
            .filter(WorkLog.engineer_id == engineer.id)
            .scalar()
        )
        inactive.append({
            "id": engineer.id,
            "name": engineer.name,
            "email": engineer.email,
            "last_login": engineer.last_login_at.isoformat() if engineer.last_login_at else None,
            "last_work_date": last_work.isoformat() if last_work else None,
            "status": status,
        })

    active.sort(key=lambda row: row["total_hours"], reverse=True)
    total_hours = round(sum(row["total_hours"] for row in active), 2)
    return {
        "summary": {
            "date": day.isoformat(),
            "total_active_engineers": len(active),
            "total_inactive_engineers": len(inactive),
            "total_hours_logged": total_hours,
            "average_hours_per_engineer": round(total_hours / len(active), 2) if active else 0,
        },
        "active_engineers": active,
        "inactive_engineers": inactive,
    }


def activity_summary(actor, start_date=None, end_date=None) -> dict:
    """Per-day engineer counts and hours between two dates, newest day first."""
    authorize(actor, "activity.view")
    end = parse_date_input(end_date, "end_date") or date.today()
    start = parse_date_input(start_date, "start_date") or end - timedelta(days=ACTIVITY_SUMMARY_DEFAULT_DAYS)
    if start > end:
        raise ValidationError("start_date must be on or before end_date", {"start_date": "after end_date"})

    rows = (
        db.session.query(
            WorkLog.work_date,
            func.count(func.distinct(WorkLog.engineer_id)),
            func.sum(WorkLog.hours),
            func.count(WorkLog.id),
        )
        .select_from(WorkLog)
        .join(User, WorkLog.engineer_id == User.id)
        .filter(User.role == Role.ENGINEER.value,
                WorkLog.work_date >= start, WorkLog.work_date <= end)
        .group_by(WorkLog.work_date)
        .order_by(WorkLog.work_date.desc())
        .all()
    )
    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "days": [
            {
                "date": work_date.isoformat(),
                "active_engineers": engineers,
                "total_hours": round(float(hours or 0), 2),
                "total_work_logs": count,
            }
            for work_date, engineers, hours, count in rows
        ],
    }


# ═════════════════════════════════════════════════════════════════════════════
# Per-user breakdown
# ═════════════════════════════════════════════════════════════════════════════


def user_project_breakdown(user_id: int, actor) -> dict:
    """Hours one user logged, grouped by project and then by phase.

    Engineers may only request their own breakdown.
    """
    authorize(actor, "user.view")
    if actor.role == Role.ENGINEER.value and actor.id != user_id:
        raise AuthorizationError(
            "Engineers can only view their own breakdown",
            operation="user.view", role=actor.role,
        )
    user = get_or_raise(User, user_id, label="User")

    rows = (
        db.session.query(
            Project.id, Project.name, Project.status,
            ProjectPhase.id, ProjectPhase.phase_name, ProjectPhase.phase_order,
            func.sum(WorkLog.hours), func.count(WorkLog.id),
            func.min(WorkLog.work_date), func.max(WorkLog.work_date),
        )
        .select_from(WorkLog)
        .join(ProjectPhase, WorkLog.phase_id == ProjectPhase.id)
        .join(Project, ProjectPhase.project_id == Project.id)
        .filter(WorkLog.engineer_id == user_id)
        .group_by(Project.id, Project.name, Project.status,
                  ProjectPhase.id, ProjectPhase.phase_name, ProjectPhase.phase_order)
        .order_by(Project.name, ProjectPhase.phase_order)
        .all()
    )

    projects: dict[int, dict] = {}
    for (pid, pname, pstatus, phase_id, phase_name, phase_order,
         hours, count, first_day, last_day) in rows:
        entry = projects.setdefault(pid, {
            "project_id": pid,
            "project_name": pname,
            "project_status": pstatus,
            "total_hours": 0.0,
            "work_log_count": 0,
            "first_work_date": first_day,
            "last_work_date": last_day,
            "phases": [],
        })
        entry["total_hours"] += float(hours or 0)
        entry["work_log_count"] += count
        entry["first_work_date"] = min(entry["first_work_date"], first_day)
        entry["last_work_date"] = max(entry["last_work_date"], last_day)
        entry["phases"].append({
            "phase_id": phase_id,
            "phase_name": phase_name,
            "phase_order": phase_order,
            "total_hours": round(float(hours or 0), 2),
            "work_log_count": count,
            "last_work_date": last_day.isoformat(),
        })

    out = []
    for entry in projects.values():
        entry["total_hours"] = round(entry["total_hours"], 2)
        entry["first_work_date"] = entry["first_work_date"].isoformat()
        entry["last_work_date"] = entry["last_work_date"].isoformat()
        out.append(entry)
    out.sort(key=lambda e: e["total_hours"], reverse=True)

    return {
        "user": user.to_dict(),
        "total_hours": round(sum(e["total_hours"] for e in out), 2),
        "project_count": len(out),
        "projects": out,
    }
