"""
Project & phase management tests.

Covers:
    - Project creation: phase ordering, planned dates, first phase ready
    - Timeline tolerance (± 1 week) and required fields
    - Update, archive / unarchive, delete (cascade)
    - Phase CRUD: append, update, delete with renumbering
    - Opening the next phase after append, delete or status back-fill
    - Historical phase back-fill
    - Predefined phase catalogue
"""

import pytest

from phasetrack.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from phasetrack.models import db
from phasetrack.models.audit import AuditLog, write_audit
from phasetrack.models.phase import ProjectPhase, seed_predefined_phases
from phasetrack.models.work_log import WorkLog
from phasetrack.services.phase_lifecycle import transition_phase
from phasetrack.services.project_service import (
    archive_project,
    create_phase,
    delete_phase,
    delete_project,
    get_phase,
    get_project,
    list_archived_projects,
    list_phases,
    list_predefined_phases,
    list_projects,
    unarchive_project,
    update_phase,
    update_phase_historical,
    update_project,
)
from phasetrack.services.work_log_service import create_work_log


# ═════════════════════════════════════════════════════════════════════════════
# BLOCK 1 — Create project
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateProject:
    def test_phases_ordered_and_scheduled(self, project):
        phases = project["phases"]
        assert [p["phase_order"] for p in phases] == [1, 2, 3]
        assert [p["status"] for p in phases] == ["ready", "not_started", "not_started"]
        assert phases[0]["planned_start_date"] == "2026-01-05"
        assert phases[0]["planned_end_date"] == "2026-01-19"
        assert phases[1]["planned_start_date"] == "2026-01-19"
        assert phases[2]["planned_end_date"] == "2026-03-16"

    def test_predicted_hours_default_to_phase_sum(self, project):
        assert project["project"]["predicted_hours"] == 450
        assert project["project"]["status"] == "active"

    def test_explicit_predicted_hours(self, supervisor, project_factory):
        result = project_factory(supervisor, predicted_hours=500)
        assert result["project"]["predicted_hours"] == 500

    def test_one_week_tolerance(self, supervisor, project_factory):
        result = project_factory(supervisor, planned_total_weeks=11)
        assert result["project"]["planned_total_weeks"] == 11

    def test_timeline_mismatch(self, supervisor, project_factory):
        with pytest.raises(ValidationError) as exc:
            project_factory(supervisor, planned_total_weeks=14)
        assert exc.value.details == {
            "total_phase_weeks": 10, "planned_total_weeks": 14, "difference": 4,
        }

    def test_phase_name_alias(self, supervisor, project_factory):
        result = project_factory(supervisor, phases=[{"name": "Feasibility", "planned_weeks": 2}])
        assert result["phases"][0]["phase_name"] == "Feasibility"

    @pytest.mark.parametrize("overrides", [
        {"name": ""},
        {"start_date": None},
        {"start_date": "31/31/2026"},
        {"phases": []},
        {"planned_total_weeks": 0},
    ])
    def test_required_fields(self, supervisor, project_factory, overrides):
        with pytest.raises(ValidationError):
            project_factory(supervisor, **overrides)

    def test_invalid_phase_weeks(self, supervisor, project_factory):
        with pytest.raises(ValidationError):
            project_factory(supervisor, phases=[{"phase_name": "Concept", "planned_weeks": 0}],
                            planned_total_weeks=1)

    def test_engineer_cannot_create(self, engineer, project_factory):
        with pytest.raises(AuthorizationError):
            project_factory(engineer)


# ═════════════════════════════════════════════════════════════════════════════
# BLOCK 2 — Update / archive / delete
# ═════════════════════════════════════════════════════════════════════════════


class TestProjectMaintenance:
    def test_update(self, project, supervisor):
        pid = project["project"]["id"]
        result = update_project(pid, supervisor, {"client_name": "City Council", "status": "on_hold",
                                                  "unknown": "ignored"})
        assert result["client_name"] == "City Council"
        assert result["status"] == "on_hold"

    def test_update_invalid_status(self, project, supervisor):
        with pytest.raises(ValidationError):
            update_project(project["project"]["id"], supervisor, {"status": "paused"})

    def test_archive_round_trip(self, project, supervisor, engineer):
        pid = project["project"]["id"]
        archived = archive_project(pid, supervisor)
        assert archived["archived_by"] == supervisor.id
        assert list_projects(engineer) == []
        assert [p["id"] for p in list_archived_projects(engineer)] == [pid]
        assert len(list_projects(engineer, include_archived=True)) == 1

        with pytest.raises(ConflictError):
            archive_project(pid, supervisor)
        assert unarchive_project(pid, supervisor)["archived_at"] is None
        with pytest.raises(ConflictError):
            unarchive_project(pid, supervisor)

    def test_delete_cascades(self, project, phases, engineer, supervisor):
        pid = project["project"]["id"]
        create_work_log(engineer, phases[0].id, 3)
        assert delete_project(pid, supervisor) == {"deleted_id": pid}
        assert ProjectPhase.query.filter_by(project_id=pid).count() == 0
        assert WorkLog.query.filter_by(project_id=pid).count() == 0
        with pytest.raises(NotFoundError):
            get_project(pid, supervisor)

    def test_get_project_includes_children(self, project, phases, engineer, administrator):
        create_work_log(engineer, phases[0].id, 3)
        result = get_project(project["project"]["id"], administrator)
        assert len(result["phases"]) == 3
        assert len(result["work_logs"]) == 1
        assert result["actual_hours"] == 3

    def test_administrator_cannot_archive(self, project, administrator):
        with pytest.raises(AuthorizationError):
            archive_project(project["project"]["id"], administrator)


# ═════════════════════════════════════════════════════════════════════════════
# BLOCK 3 — Phase CRUD
# ═════════════════════════════════════════════════════════════════════════════


class TestPhaseCrud:
    def test_append_phase(self, project, supervisor):
        phase = create_phase(project["project"]["id"], supervisor,
                             {"phase_name": "Tender Support", "planned_weeks": 2, "predicted_hours": 40})
        assert phase["phase_order"] == 4
        assert phase["is_custom"] is True
        assert phase["status"] == "not_started"
        assert phase["planned_start_date"] == "2026-03-16"
        assert phase["planned_end_date"] == "2026-03-30"

    def test_get_phase_lists_actions(self, phases, engineer):
        result = get_phase(phases[0].id, engineer)
        assert result["available_actions"] == ["start"]

    def test_update_phase_dates(self, phases, supervisor):
        result = update_phase(phases[1].id, supervisor, {"planned_end_date": "2026-02-20",
                                                         "phase_name": "Schematic Design II"})
        assert result["planned_end_date"] == "2026-02-20"
        assert result["phase_name"] == "Schematic Design II"

    def test_update_phase_ignores_status(self, phases, supervisor):
        result = update_phase(phases[1].id, supervisor, {"status": "approved"})
        assert result["status"] == "not_started"

    def test_delete_renumbers(self, project, phases, supervisor):
        pid = project["project"]["id"]
        result = delete_phase(phases[0].id, supervisor)
        assert result == {"deleted_id": phases[0].id, "project_id": pid}
        remaining = list_phases(pid, supervisor)
        assert [(p["id"], p["phase_order"]) for p in remaining] == [(phases[1].id, 1), (phases[2].id, 2)]

    def test_delete_with_logs_conflicts(self, phases, engineer, supervisor):
        create_work_log(engineer, phases[0].id, 1)
        with pytest.raises(ConflictError):
            delete_phase(phases[0].id, supervisor)
        assert db.session.get(ProjectPhase, phases[0].id) is not None


class TestHistoricalPhaseUpdate:
    def test_backfill_completed_phase(self, phases, supervisor):
        result = update_phase_historical(phases[0].id, supervisor, {
            "status": "completed",
            "actual_start_date": "2026-01-05",
            "actual_end_date": "16.01.2026",
            "submitted_date": "2026-01-15",
            "approved_date": "2026-01-16",
        })
        assert result["status"] == "completed"
        assert result["actual_start_date"].startswith("2026-01-05")
        assert result["actual_end_date"].startswith("2026-01-16")
        assert result["approved_date"] == "2026-01-16"
        # the next phase opens once nothing else is workable
        assert db.session.get(ProjectPhase, phases[1].id).status == "ready"
        row = AuditLog.query.filter_by(entity_type="phase", entity_id=str(phases[0].id),
                                       note="historical update").one()
        assert row.diff["status"] == {"old": "ready", "new": "completed"}

    def test_predicted_hours_recomputes_progress(self, phases, engineer, supervisor):
        create_work_log(engineer, phases[0].id, 10)
        result = update_phase_historical(phases[0].id, supervisor, {"predicted_hours": 20})
        assert result["calculated_progress"] == 50

    @pytest.mark.parametrize("body", [{}, {"early_access_status": "accessible"}, {"status": "finished"},
                                      {"approved_date": "someday"}, {"planned_weeks": 0}])
    def test_rejected_bodies(self, phases, supervisor, body):
        with pytest.raises(ValidationError):
            update_phase_historical(phases[0].id, supervisor, body)
        assert db.session.get(ProjectPhase, phases[0].id).status == "ready"

    def test_supervisor_only(self, phases, engineer, administrator):
        for actor in (engineer, administrator):
            with pytest.raises(AuthorizationError):
                update_phase_historical(phases[0].id, actor, {"status": "completed"})

    def test_route(self, client, phases, supervisor, auth_headers):
        res = client.put(f"/api/v1/phases/{phases[1].id}/historical",
                         headers=auth_headers(supervisor), json={"submitted_date": "2026-02-01"})
        assert res.status_code == 200
        assert res.get_json()["data"]["submitted_date"] == "2026-02-01"


class TestPhaseOpening:
    def test_delete_ready_first_phase_opens_next(self, project, phases, supervisor, engineer):
        delete_phase(phases[0].id, supervisor)
        nxt = db.session.get(ProjectPhase, phases[1].id)
        assert nxt.phase_order == 1
        assert nxt.status == "ready"
        result = transition_phase(nxt.id, "start", engineer)
        assert result["new_status"] == "in_progress"

    def test_delete_keeps_single_workable_phase(self, project, phases, supervisor):
        delete_phase(phases[2].id, supervisor)
        statuses = [p["status"] for p in list_phases(project["project"]["id"], supervisor)]
        assert statuses == ["ready", "not_started"]

    @pytest.mark.parametrize("last_status", ["approved", "completed"])
    def test_append_after_finished_phase_is_ready(self, project, phases, supervisor, last_status):
        for p in phases:
            p.status = last_status
        db.session.commit()
        phase = create_phase(project["project"]["id"], supervisor,
                             {"phase_name": "Post Occupancy", "planned_weeks": 1, "predicted_hours": 10})
        assert phase["phase_order"] == 4
        assert db.session.get(ProjectPhase, phase["id"]).status == "ready"

    def test_append_after_all_deleted_is_ready(self, project, phases, supervisor):
        for p in phases:
            delete_phase(p.id, supervisor)
        phase = create_phase(project["project"]["id"], supervisor,
                             {"phase_name": "Feasibility", "planned_weeks": 2, "predicted_hours": 20})
        assert phase["phase_order"] == 1
        assert phase["status"] == "ready"


class TestPredefinedPhases:
    def test_seed_is_idempotent(self, engineer):
        created = seed_predefined_phases()
        db.session.commit()
        assert created > 0
        assert seed_predefined_phases() == 0
        names = [p["name"] for p in list_predefined_phases(engineer)]
        assert names[0] == "Concept Design"
        assert len(names) == created


class TestAuditTrail:
    def test_project_history(self, project, supervisor):
        pid = project["project"]["id"]
        archive_project(pid, supervisor)
        rows = AuditLog.history("project", pid)
        assert [r.action for r in rows] == ["create", "project.archive"]
        assert rows[1].actor_user_id == supervisor.id

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            write_audit(entity_type="phase", entity_id=1, action="phase.teleport")
