"""
Phase reorder tests.

Covers:
    - Full permutation applied atomically (no unique-constraint collisions)
    - Rejections: missing / unknown / duplicate phases, duplicate or
      non-contiguous orders, wrong shapes
    - Failed reorders leave the stored order untouched
    - Audit row and PHASES_REORDERED event
"""

import pytest

from phasetrack.core.exceptions import AuthorizationError, ConflictError, ValidationError
from phasetrack.models.audit import AuditLog
from phasetrack.models.phase import ProjectPhase
from phasetrack.services import realtime
from phasetrack.services.phase_lifecycle import reorder_phases


def _orders(project_id):
    rows = ProjectPhase.query.filter_by(project_id=project_id).order_by(ProjectPhase.phase_order).all()
    return [(p.id, p.phase_order) for p in rows]


class TestReorder:
    def test_reverse(self, project, phases, supervisor):
        pid = project["project"]["id"]
        a, b, c = (p.id for p in phases)
        result = reorder_phases(pid, supervisor, [
            {"phase_id": a, "phase_order": 3},
            {"phase_id": b, "phase_order": 2},
            {"phase_id": c, "phase_order": 1},
        ])
        assert [p["id"] for p in result] == [c, b, a]
        assert _orders(pid) == [(c, 1), (b, 2), (a, 3)]

    def test_swap_adjacent(self, project, phases, supervisor):
        pid = project["project"]["id"]
        a, b, c = (p.id for p in phases)
        reorder_phases(pid, supervisor, [
            {"phase_id": a, "phase_order": 2},
            {"phase_id": b, "phase_order": 1},
            {"phase_id": c, "phase_order": 3},
        ])
        assert _orders(pid) == [(b, 1), (a, 2), (c, 3)]

    def test_identity_is_allowed(self, project, phases, supervisor):
        pid = project["project"]["id"]
        before = _orders(pid)
        reorder_phases(pid, supervisor, [{"phase_id": i, "phase_order": o} for i, o in before])
        assert _orders(pid) == before

    def test_audit_and_event(self, project, phases, supervisor):
        pid = project["project"]["id"]
        a, b, c = (p.id for p in phases)
        reorder_phases(pid, supervisor, [
            {"phase_id": a, "phase_order": 2},
            {"phase_id": b, "phase_order": 1},
            {"phase_id": c, "phase_order": 3},
        ])
        assert AuditLog.query.filter_by(action="phase.reorder", project_id=pid).count() == 1
        events = [e for e in realtime.recorded_events(realtime.project_channel(pid))
                  if e["event"] == realtime.PHASES_REORDERED]
        assert [o["phase_id"] for o in events[0]["data"]["order"]] == [b, a, c]


class TestReorderRejections:
    def test_missing_phase(self, project, phases, supervisor):
        a, b, _ = (p.id for p in phases)
        with pytest.raises(ValidationError) as exc:
            reorder_phases(project["project"]["id"], supervisor, [
                {"phase_id": a, "phase_order": 1},
                {"phase_id": b, "phase_order": 2},
            ])
        assert exc.value.details["missing"] == [phases[2].id]

    def test_unknown_phase(self, project, phases, supervisor):
        a, b, _ = (p.id for p in phases)
        with pytest.raises(ValidationError):
            reorder_phases(project["project"]["id"], supervisor, [
                {"phase_id": a, "phase_order": 1},
                {"phase_id": b, "phase_order": 2},
                {"phase_id": 9999, "phase_order": 3},
            ])

    def test_duplicate_phase_id(self, project, phases, supervisor):
        a, b, _ = (p.id for p in phases)
        with pytest.raises(ValidationError):
            reorder_phases(project["project"]["id"], supervisor, [
                {"phase_id": a, "phase_order": 1},
                {"phase_id": a, "phase_order": 2},
                {"phase_id": b, "phase_order": 3},
            ])

    def test_duplicate_order_conflicts(self, project, phases, supervisor):
        pid = project["project"]["id"]
        before = _orders(pid)
        a, b, c = (p.id for p in phases)
        with pytest.raises(ConflictError):
            reorder_phases(pid, supervisor, [
                {"phase_id": a, "phase_order": 1},
                {"phase_id": b, "phase_order": 1},
                {"phase_id": c, "phase_order": 2},
            ])
        assert _orders(pid) == before

    def test_gap_in_orders(self, project, phases, supervisor):
        a, b, c = (p.id for p in phases)
        with pytest.raises(ValidationError):
            reorder_phases(project["project"]["id"], supervisor, [
                {"phase_id": a, "phase_order": 1},
                {"phase_id": b, "phase_order": 2},
                {"phase_id": c, "phase_order": 5},
            ])

    @pytest.mark.parametrize("ordering", [
        [],
        None,
        "1,2,3",
        [[1, 1]],
        [{"phase_id": "1", "phase_order": 1}],
        [{"phase_id": True, "phase_order": 1}],
    ])
    def test_bad_shapes(self, project, phases, supervisor, ordering):
        with pytest.raises(ValidationError):
            reorder_phases(project["project"]["id"], supervisor, ordering)

    def test_engineer_cannot_reorder(self, project, phases, engineer):
        with pytest.raises(AuthorizationError):
            reorder_phases(project["project"]["id"], engineer, [])

    def test_failure_after_offset_restores_order(self, project, phases, supervisor, monkeypatch):
        from phasetrack.services import phase_lifecycle

        def _fail(**kwargs):
            raise RuntimeError("audit store unavailable")

        pid = project["project"]["id"]
        before = _orders(pid)
        a, b, c = (p.id for p in phases)
        monkeypatch.setattr(phase_lifecycle, "write_audit", _fail)
        with pytest.raises(RuntimeError):
            reorder_phases(pid, supervisor, [
                {"phase_id": a, "phase_order": 3},
                {"phase_id": b, "phase_order": 2},
                {"phase_id": c, "phase_order": 1},
            ])
        assert _orders(pid) == before
        assert not [e for e in realtime.recorded_events(realtime.project_channel(pid))
                    if e["event"] == realtime.PHASES_REORDERED]


class TestReorderOpensPhase:
    def test_idle_project_gets_first_phase_ready(self, project, phases, supervisor):
        from phasetrack.models import db

        pid = project["project"]["id"]
        a, b, c = phases
        a.status = "completed"
        b.status = "not_started"
        c.status = "not_started"
        db.session.commit()

        reorder_phases(pid, supervisor, [
            {"phase_id": c.id, "phase_order": 1},
            {"phase_id": a.id, "phase_order": 2},
            {"phase_id": b.id, "phase_order": 3},
        ])
        statuses = {p.id: p.status for p in ProjectPhase.query.filter_by(project_id=pid)}
        assert statuses == {c.id: "ready", a.id: "completed", b.id: "not_started"}

    def test_workable_phase_left_alone(self, project, phases, supervisor):
        pid = project["project"]["id"]
        a, b, c = (p.id for p in phases)
        reorder_phases(pid, supervisor, [
            {"phase_id": a, "phase_order": 3},
            {"phase_id": b, "phase_order": 1},
            {"phase_id": c, "phase_order": 2},
        ])
        statuses = {p.id: p.status for p in ProjectPhase.query.filter_by(project_id=pid)}
        assert statuses == {a: "ready", b: "not_started", c: "not_started"}
