from datetime import datetime, timedelta, timezone

import pytest

from goaltrack.models import TrackingRecord


@pytest.fixture
def auth(headers_for, owner):
    return headers_for(owner)


# --- CRUD ---

def test_create_and_get_task(client, auth, goal):
    resp = client.post("/api/tasks/", json={
        "goalId": goal.id,
        "name": "Write tests",
        "timeBudget": 45,
        "priority": 3,
    }, headers=auth)
    assert resp.status_code == 201, resp.text
    created = resp.json()
    assert created["timeBudget"] == 45
    assert created["status"] == "pending"

    resp = client.get(f"/api/tasks/{created['id']}", headers=auth)
    assert resp.status_code == 200
    assert resp.json()["activeTracking"] is None


@pytest.mark.parametrize("payload", [
    {"timeBudget": -1},
    {"priority": 11},
    {"goalId": "not-a-uuid"},
])
def test_create_task_validation(client, auth, goal, payload):
    body = {"goalId": goal.id, "name": "Bad", "timeBudget": 10, **payload}
    assert client.post("/api/tasks/", json=body, headers=auth).status_code == 422


def test_non_uuid_path_is_validation_error(client, auth):
    resp = client.get("/api/tasks/12345", headers=auth)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid task ID format"


def test_list_tasks_orders_done_last_and_attaches_tracking(client, auth, owner, goal, task, make_task):
    make_task("Archive", status="done")
    make_task("Backlog grooming")
    started = client.post(f"/api/tasks/{task.id}/start", json={}, headers=auth).json()["record"]

    resp = client.get("/api/tasks/", params={"goalId": goal.id}, headers=auth)
    assert resp.status_code == 200
    rows = resp.json()
    assert [r["name"] for r in rows] == ["Backlog grooming", "Write docs", "Archive"]
    assert rows[1]["activeTracking"]["id"] == started["id"]
    assert rows[0]["activeTracking"] is None


def test_update_and_delete_task(client, auth, task):
    resp = client.put(f"/api/tasks/{task.id}", json={"status": "done"}, headers=auth)
    assert resp.status_code == 200
    assert resp.json()["status"] == "done"

    assert client.delete(f"/api/tasks/{task.id}", headers=auth).status_code == 204
    assert client.get(f"/api/tasks/{task.id}", headers=auth).status_code == 404


def test_daily_budget(client, auth, goal, task, make_task):
    resp = client.get(f"/api/tasks/daily-budget/{goal.id}", headers=auth)
    assert resp.status_code == 200
    assert resp.json() == {"goalId": goal.id, "totalTimeBudgetMinutes": 60, "totalTimeBudgetHours": 1.0}

    make_task("Marathon", time_budget=24 * 60)
    data = client.get(f"/api/tasks/daily-budget/{goal.id}", headers=auth).json()
    assert data["totalTimeBudgetMinutes"] == 25 * 60
    assert "exceeds 24 hours" in data["warning"]


# --- Tracking ---

def test_start_and_stop(client, clock, auth, task):
    resp = client.post(f"/api/tasks/{task.id}/start", json={}, headers=auth)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["message"] == "Task tracking started"
    record = body["record"]
    assert record["endTime"] is None

    clock.advance(seconds=90)
    resp = client.post(f"/api/tasks/{record['id']}/stop", json={}, headers=auth)
    assert resp.status_code == 200, resp.text
    assert resp.json()["record"]["duration"] == 90


def test_start_without_body(client, auth, task):
    assert client.post(f"/api/tasks/{task.id}/start", headers=auth).status_code == 201


def test_second_start_reports_active_task(client, auth, task, make_task):
    client.post(f"/api/tasks/{task.id}/start", json={}, headers=auth)
    other = make_task("Review PRs")

    resp = client.post(f"/api/tasks/{other.id}/start", json={}, headers=auth)
    assert resp.status_code == 400
    data = resp.json()
    assert data["activeTask"] == {"taskId": task.id, "taskName": "Write docs"}
    assert "message" in data


def test_stop_errors(client, auth, task):
    record = client.post(
        f"/api/tasks/{task.id}/start", json={"startTime": "2024-03-15T09:00:00Z"}, headers=auth
    ).json()["record"]

    resp = client.post(f"/api/tasks/{record['id']}/stop", json={"stopTime": "2024-03-15T08:59:59Z"}, headers=auth)
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_time_range"

    resp = client.post(f"/api/tasks/{record['id']}/stop", json={"stopTime": "2024-03-15T09:00:00Z"}, headers=auth)
    assert resp.status_code == 200
    assert resp.json()["record"]["duration"] == 0

    resp = client.post(f"/api/tasks/{record['id']}/stop", json={}, headers=auth)
    assert resp.status_code == 400
    assert resp.json()["code"] == "already_stopped"

    missing = "11111111-1111-1111-1111-111111111111"
    assert client.post(f"/api/tasks/{missing}/stop", json={}, headers=auth).status_code == 404


def test_manual_record(client, auth, task):
    resp = client.post(f"/api/tasks/{task.id}/manual-record", json={
        "startTime": "2024-03-15T07:00:00Z",
        "stopTime": "2024-03-15T07:20:00Z",
        "duration": 1200,
    }, headers=auth)
    assert resp.status_code == 201, resp.text
    assert resp.json()["record"]["duration"] == 1200


def test_summary_endpoint(client, auth, task):
    client.post(f"/api/tasks/{task.id}/manual-record", json={
        "startTime": "2024-03-15T07:00:00Z",
        "stopTime": "2024-03-15T07:02:00Z",
        "duration": 120,
    }, headers=auth)
    client.post(f"/api/tasks/{task.id}/manual-record", json={
        "startTime": "2024-03-15T08:00:00Z",
        "stopTime": "2024-03-15T08:05:00Z",
        "duration": 300,
    }, headers=auth)

    resp = client.get("/api/tasks/summary", params={"period": "day"}, headers=auth)
    assert resp.status_code == 200
    assert resp.json() == [{"taskName": "Write docs", "totalDurationSeconds": 420, "period": "2024-03-15T00:00:00"}]

    resp = client.get("/api/tasks/summary", params={"period": "total"}, headers=auth)
    assert resp.json() == [{"taskName": "Write docs", "totalDurationSeconds": 420}]

    resp = client.get("/api/tasks/summary", params={"period": "week"}, headers=auth)
    assert resp.status_code == 400


# --- Collaborators ---

def test_collaborator_needs_submit_permission(client, headers_for, other, workspace, task, grant, permit):
    grant(workspace, other, can_list=True, can_edit=False)
    headers = headers_for(other)

    resp = client.post(f"/api/tasks/{task.id}/start", json={}, headers=headers)
    assert resp.status_code == 403
    assert resp.json()["code"] == "insufficient_permission"

    permit(other, task, can_list=True, can_submit_record=True)
    resp = client.post(f"/api/tasks/{task.id}/start", json={}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["record"]["userId"] == other.id


def test_collaborator_add_task(client, headers_for, other, workspace, goal, grant, permit):
    grant(workspace, other, can_list=True)
    body = {"goalId": goal.id, "name": "Their task", "timeBudget": 10}

    assert client.post("/api/tasks/", json=body, headers=headers_for(other)).status_code == 403

    permit(other, goal, can_add_task=True)
    resp = client.post("/api/tasks/", json=body, headers=headers_for(other))
    assert resp.status_code == 201
    assert resp.json()["userId"] == other.id


def test_stranger_gets_not_found(client, headers_for, other, task):
    resp = client.get(f"/api/tasks/{task.id}", headers=headers_for(other))
    assert resp.status_code == 404
    assert resp.json() == {"message": "Resource not found", "code": "resource_not_found"}


def test_pending_invitee_can_narrow_summary_to_workspace(client, db_session, headers_for, other, make_user, workspace, goal, task, grant):
    grant(workspace, other, status="pending")
    start = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)
    db_session.add(TrackingRecord(
        task_id=task.id, user_id=other.id, start_time=start, end_time=start + timedelta(minutes=5), duration=300,
    ))
    db_session.commit()

    unfiltered = client.get("/api/tasks/summary", params={"period": "day"}, headers=headers_for(other)).json()
    for params in ({"workspaceId": workspace.id}, {"goalId": goal.id}):
        resp = client.get("/api/tasks/summary", params={"period": "day", **params}, headers=headers_for(other))
        assert resp.status_code == 200, resp.text
        assert resp.json() == unfiltered == [
            {"taskName": "Write docs", "totalDurationSeconds": 300, "period": "2024-03-15T00:00:00"}
        ]

    stranger = make_user("carol")
    resp = client.get(
        "/api/tasks/summary", params={"period": "day", "workspaceId": workspace.id}, headers=headers_for(stranger)
    )
    assert resp.status_code == 404
