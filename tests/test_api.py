"""
HTTP API tests — envelope, status codes and end-to-end flows.

Covers:
    - Success / error envelope shape
    - 401 without token, 403 by role, 404 / 409 / 415 mapping
    - Project create → log hours → adjust progress → warnings over HTTP
    - Phase lifecycle, reorder and early access endpoints
    - Work log pagination, admin back-fill and approval endpoints
    - Health checks
"""

import pytest

from phasetrack.services import realtime


@pytest.fixture()
def sup(supervisor, auth_headers):
    return auth_headers(supervisor)


@pytest.fixture()
def eng(engineer, auth_headers):
    return auth_headers(engineer)


def _create_project(client, headers, **overrides):
    body = {
        "name": "Riverside Clinic",
        "start_date": "2026-02-02",
        "planned_total_weeks": 6,
        "selectedPhases": [
            {"name": "Concept Design", "planned_weeks": 2, "predicted_hours": 80},
            {"name": "Design Development", "planned_weeks": 4, "predicted_hours": 160},
        ],
    }
    body.update(overrides)
    return client.post("/api/v1/projects", json=body, headers=headers)


# ═════════════════════════════════════════════════════════════════════════════
# BLOCK 1 — Envelope & error mapping
# ═════════════════════════════════════════════════════════════════════════════


class TestEnvelope:
    def test_success_shape(self, client, sup):
        res = _create_project(client, sup)
        assert res.status_code == 201
        body = res.get_json()
        assert body["success"] is True
        assert body["message"] == "Project created successfully"
        assert len(body["data"]["phases"]) == 2

    def test_validation_shape(self, client, sup):
        res = _create_project(client, sup, planned_total_weeks=12)
        assert res.status_code == 400
        body = res.get_json()
        assert body["success"] is False
        assert body["code"] == "ERR_VALIDATION"
        assert body["details"]["difference"] == 6

    def test_401_without_token(self, client):
        res = client.get("/api/v1/projects")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_AUTHENTICATION"

    def test_403_by_role(self, client, eng):
        res = _create_project(client, eng)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_404(self, client, sup):
        res = client.get("/api/v1/projects/4040", headers=sup)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_415_non_json_body(self, client, sup):
        res = client.post("/api/v1/projects", data="name=x", headers={**sup, "Content-Type": "text/plain"})
        assert res.status_code == 415

    def test_non_object_body(self, client, sup):
        res = client.post("/api/v1/projects", json=[1, 2], headers=sup)
        assert res.status_code == 400

    def test_unknown_route(self, client, sup):
        res = client.get("/api/v1/nothing-here", headers=sup)
        assert res.status_code == 404
        assert res.get_json()["success"] is False


# ═════════════════════════════════════════════════════════════════════════════
# BLOCK 2 — Flows
# ═════════════════════════════════════════════════════════════════════════════


class TestProgressFlow:
    def test_log_adjust_and_read(self, client, sup, eng, engineer):
        project = _create_project(client, sup).get_json()["data"]
        phase_id = project["phases"][0]["id"]

        res = client.post("/api/v1/work-logs", headers=eng,
                          json={"phase_id": phase_id, "hours": 20, "description": "Site analysis",
                                "date": "2026-02-03"})
        assert res.status_code == 201
        log_id = res.get_json()["data"]["id"]

        phase = client.get(f"/api/v1/phases/{phase_id}", headers=eng).get_json()["data"]
        assert phase["status"] == "in_progress"
        assert phase["calculated_progress"] == 25
        assert "submit" not in phase["available_actions"]

        res = client.post(f"/api/v1/progress/phase/{phase_id}", headers=sup,
                          json={"manual_progress_percentage": 35, "adjustment_reason": "Model ahead"})
        assert res.status_code == 201
        assert res.get_json()["data"]["phase"]["progress_variance"] == 10

        res = client.post(f"/api/v1/progress/work-log/{log_id}", headers=sup,
                          json={"manual_progress_percentage": 30, "adjustment_reason": "Per entry"})
        assert res.status_code == 201

        history = client.get(f"/api/v1/progress/phase/{phase_id}/history", headers=eng).get_json()["data"]
        assert len(history) == 2
        mine = client.get(f"/api/v1/progress/phase/{phase_id}/engineer/{engineer.id}",
                          headers=eng).get_json()["data"]
        assert mine["actual_progress"] == 30

        stats = client.get(f"/api/v1/projects/{project['project']['id']}/progress-stats",
                           headers=sup).get_json()["data"]
        assert stats["total_phases"] == 2

        warnings = client.get(f"/api/v1/projects/{project['project']['id']}/warnings",
                              headers=sup).get_json()["data"]
        assert warnings["project_id"] == project["project"]["id"]

    def test_progress_engineer_id_must_be_int(self, client, sup, phases):
        res = client.post(f"/api/v1/progress/phase/{phases[0].id}", headers=sup,
                          json={"manual_progress_percentage": 10, "adjustment_reason": "x",
                                "engineer_id": "seven"})
        assert res.status_code == 400

    def test_calculate_preview(self, client, eng):
        res = client.post("/api/v1/progress/calculate", headers=eng,
                          json={"hours": 45, "predicted_hours": 60})
        assert res.get_json()["data"]["calculated_progress"] == 75

    def test_calculate_requires_login(self, client):
        res = client.post("/api/v1/progress/calculate", json={"hours": 1, "predicted_hours": 2})
        assert res.status_code == 401


class TestPhaseEndpoints:
    def test_lifecycle(self, client, sup, eng, phases):
        pid = phases[0].id
        assert client.post(f"/api/v1/phases/{pid}/start", headers=eng).status_code == 200
        assert client.post(f"/api/v1/phases/{pid}/submit", headers=eng).status_code == 403
        assert client.post(f"/api/v1/phases/{pid}/submit", headers=sup).status_code == 200
        res = client.post(f"/api/v1/phases/{pid}/approve", headers=sup, json={"note": "OK"})
        assert res.get_json()["data"]["unlocked_phase_id"] == phases[1].id
        again = client.post(f"/api/v1/phases/{pid}/approve", headers=sup)
        assert again.status_code == 409
        assert again.get_json()["code"] == "ERR_INVALID_TRANSITION"

    def test_warning_requires_flag(self, client, sup, phases):
        res = client.post(f"/api/v1/phases/{phases[0].id}/warning", headers=sup, json={})
        assert res.status_code == 400
        res = client.post(f"/api/v1/phases/{phases[0].id}/warning", headers=sup,
                          json={"warning_flag": True})
        assert res.get_json()["data"]["warning_flag"] is True

    def test_delay(self, client, sup, phases):
        res = client.post(f"/api/v1/phases/{phases[0].id}/delay", headers=sup,
                          json={"delay_reason": "client", "additional_weeks": 1})
        assert res.status_code == 200
        assert len(res.get_json()["data"]["shifted_phase_ids"]) == 2

    def test_reorder(self, client, sup, project, phases):
        pid = project["project"]["id"]
        order = [{"phase_id": p.id, "phase_order": 3 - i} for i, p in enumerate(phases)]
        res = client.put(f"/api/v1/phases/project/{pid}/reorder", headers=sup, json={"phases": order})
        assert res.status_code == 200
        assert [p["id"] for p in res.get_json()["data"]] == [phases[2].id, phases[1].id, phases[0].id]

    def test_reorder_duplicate_order_is_409(self, client, sup, project, phases):
        order = [{"phase_id": p.id, "phase_order": 1} for p in phases]
        res = client.put(f"/api/v1/phases/project/{project['project']['id']}/reorder",
                         headers=sup, json={"phases": order})
        assert res.status_code == 409

    def test_early_access_and_locked_phase(self, client, sup, eng, project, phases):
        blocked = client.post("/api/v1/work-logs", headers=eng, json={"phase_id": phases[1].id, "hours": 2})
        assert blocked.status_code == 409
        assert blocked.get_json()["code"] == "ERR_PHASE_LOCKED"

        res = client.post(f"/api/v1/phases/{phases[1].id}/grant-early-access", headers=sup,
                          json={"note": "Team free"})
        assert res.status_code == 200
        ok = client.post("/api/v1/work-logs", headers=eng, json={"phase_id": phases[1].id, "hours": 2})
        assert ok.status_code == 201

        overview = client.get(f"/api/v1/phases/project/{project['project']['id']}/early-access-overview",
                              headers=sup).get_json()["data"]
        assert overview["active_early_access_phases"] == 1

        res = client.post(f"/api/v1/phases/{phases[1].id}/revoke-early-access", headers=sup)
        assert res.get_json()["data"]["status"] == "not_started"

    def test_delete_phase_with_logs(self, client, sup, eng, phases):
        client.post("/api/v1/work-logs", headers=eng, json={"phase_id": phases[0].id, "hours": 1})
        res = client.delete(f"/api/v1/phases/{phases[0].id}", headers=sup)
        assert res.status_code == 409
        assert client.delete(f"/api/v1/phases/{phases[2].id}", headers=sup).status_code == 200


class TestWorkLogEndpoints:
    def test_phase_id_must_be_int(self, client, eng, phases):
        res = client.post("/api/v1/work-logs", headers=eng, json={"phase_id": "1", "hours": 2})
        assert res.status_code == 400

    def test_pagination(self, client, eng, phases):
        for day in range(3, 8):
            client.post("/api/v1/work-logs", headers=eng,
                        json={"phase_id": phases[0].id, "hours": 1, "work_date": f"2026-01-0{day}"})
        body = client.get(f"/api/v1/work-logs/phase/{phases[0].id}?limit=2&offset=1",
                          headers=eng).get_json()["data"]
        assert body["total"] == 5
        assert body["limit"] == 2 and body["offset"] == 1
        assert [i["work_date"] for i in body["items"]] == ["2026-01-06", "2026-01-05"]

    def test_admin_backfill_and_approval(self, client, sup, engineer, phases):
        res = client.post("/api/v1/work-logs/admin", headers=sup,
                          json={"engineer_id": engineer.id, "phase_id": phases[0].id,
                                "hours": 400, "date": "2025-12-01"})
        assert res.status_code == 201
        log = res.get_json()["data"]
        assert log["entry_type"] == "historical"

        assert client.put(f"/api/v1/work-logs/{log['id']}/approval", headers=sup, json={}).status_code == 400
        res = client.put(f"/api/v1/work-logs/{log['id']}/approval", headers=sup, json={"approved": True})
        assert res.get_json()["data"]["supervisor_approved"] is True

    def test_update_and_delete(self, client, eng, phases):
        log = client.post("/api/v1/work-logs", headers=eng,
                          json={"phase_id": phases[0].id, "hours": 3}).get_json()["data"]
        res = client.put(f"/api/v1/work-logs/{log['id']}", headers=eng, json={"hours": 4})
        assert res.get_json()["data"]["hours"] == 4
        res = client.delete(f"/api/v1/work-logs/{log['id']}", headers=eng)
        assert res.get_json()["data"]["phase_actual_hours"] == 0

    def test_summary_for_administrator(self, client, eng, administrator, auth_headers, phases):
        client.post("/api/v1/work-logs", headers=eng, json={"phase_id": phases[0].id, "hours": 3})
        res = client.get("/api/v1/work-logs/summary", headers=auth_headers(administrator))
        assert res.status_code == 200
        assert res.get_json()["data"]["phase_summary"][0]["total_hours"] == 3


class TestUsersAndHealth:
    def test_create_and_deactivate(self, client, sup):
        res = client.post("/api/v1/users", headers=sup,
                          json={"email": "new@studio.test", "name": "New", "password": "long-enough-1"})
        assert res.status_code == 201
        uid = res.get_json()["data"]["id"]
        res = client.put(f"/api/v1/users/{uid}/active", headers=sup, json={"is_active": False})
        assert res.get_json()["data"]["is_active"] is False

    def test_health(self, client):
        res = client.get("/api/v1/health")
        assert res.get_json()["data"]["status"] == "ok"

    def test_health_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        checks = res.get_json()["data"]["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["realtime"] == {"status": "ok", "backend": "memory"}

    def test_events_recorded_for_http_writes(self, client, sup, project, phases):
        realtime.clear_recorded_events()
        client.post(f"/api/v1/phases/{phases[0].id}/warning", headers=sup, json={"warning_flag": True})
        events = realtime.recorded_events(realtime.project_channel(project["project"]["id"]))
        assert [e["event"] for e in events] == [realtime.PHASE_UPDATED]

    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers
