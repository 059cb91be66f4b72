from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from sqlalchemy import func, select

from goaltrack.db import get_db
from goaltrack.models import Goal, Permission, Task, TrackingRecord, Workspace

TODAY_9AM = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


def test_create_and_list_workspaces(client, headers_for, owner):
    headers = headers_for(owner)
    resp = client.post("/api/workspaces/", json={"name": "Research", "groupName": "Work"}, headers=headers)
    assert resp.status_code == 201, resp.text
    data = resp.json()
    assert data["name"] == "Research"
    assert data["userId"] == owner.id

    listed = client.get("/api/workspaces/", headers=headers).json()
    assert [(w["name"], w["goalCount"], w["isOwner"]) for w in listed] == [("Research", 0, True)]


def test_list_is_per_user(client, headers_for, other, workspace):
    assert client.get("/api/workspaces/", headers=headers_for(other)).json() == []


def test_unique_group_names(client, db_session, headers_for, owner, other):
    db_session.add_all([
        Workspace(user_id=owner.id, name="A", group_name="Work"),
        Workspace(user_id=owner.id, name="B", group_name="Work"),
        Workspace(user_id=owner.id, name="C", group_name="Home"),
        Workspace(user_id=owner.id, name="D", group_name=None),
        Workspace(user_id=owner.id, name="E", group_name=""),
        Workspace(user_id=other.id, name="F", group_name="Secret"),
    ])
    db_session.commit()

    resp = client.get("/api/workspaces/groups/unique", headers=headers_for(owner))
    assert resp.status_code == 200
    assert resp.json() == ["Home", "Work"]


def test_get_workspace_reports_progress(client, db_session, headers_for, owner, workspace, goal, task, make_task):
    make_task("Done already", time_budget=60, status="done")
    db_session.add(TrackingRecord(
        task_id=task.id,
        user_id=owner.id,
        start_time=TODAY_9AM,
        end_time=TODAY_9AM + timedelta(minutes=30),
        duration=1800,
    ))
    db_session.commit()

    data = client.get(f"/api/workspaces/{workspace.id}", headers=headers_for(owner)).json()
    assert data["goalCount"] == 1
    assert data["taskCount"] == 2
    # (30 tracked + 60 done) / 120 budgeted minutes
    assert data["totalProgress"] == 75.0


def test_update_workspace_needs_edit(client, headers_for, owner, other, workspace, grant):
    grant(workspace, other, can_list=True, can_edit=False)

    resp = client.put(f"/api/workspaces/{workspace.id}", json={"name": "Nope"}, headers=headers_for(other))
    assert resp.status_code == 403

    resp = client.put(f"/api/workspaces/{workspace.id}", json={"name": "Focus"}, headers=headers_for(owner))
    assert resp.status_code == 200
    assert resp.json()["name"] == "Focus"


def test_delete_workspace_cascades(client, db_session, headers_for, owner, other, workspace, goal, task, grant, permit):
    grant(workspace, other, can_list=True)
    permit(other, goal, can_edit=True)
    permit(other, task, can_edit=True)
    client.post(f"/api/tasks/{task.id}/start", json={}, headers=headers_for(owner))

    resp = client.delete(f"/api/workspaces/{workspace.id}", headers=headers_for(owner))
    assert resp.status_code == 204

    for model in (Workspace, Goal, Task, TrackingRecord, Permission):
        assert db_session.scalar(select(func.count()).select_from(model)) == 0


def test_delete_workspace_needs_delete(client, headers_for, other, workspace, grant):
    grant(workspace, other, can_list=True, can_edit=True, can_delete=False)
    assert client.delete(f"/api/workspaces/{workspace.id}", headers=headers_for(other)).status_code == 403


# --- Goals ---

def test_create_goal_requires_edit_on_workspace(client, headers_for, owner, other, workspace, grant):
    body = {"workspaceId": workspace.id, "name": "Learn Rust"}
    grant(workspace, other, can_list=True, can_edit=False)

    assert client.post("/api/goals/", json=body, headers=headers_for(other)).status_code == 403

    resp = client.post("/api/goals/", json=body, headers=headers_for(owner))
    assert resp.status_code == 201, resp.text
    assert resp.json()["status"] == "pending"


def test_list_goals_with_progress(client, headers_for, owner, workspace, goal, task):
    client.post(f"/api/tasks/{task.id}/start", json={}, headers=headers_for(owner))

    resp = client.get("/api/goals/", params={"workspaceId": workspace.id}, headers=headers_for(owner))
    assert resp.status_code == 200
    rows = resp.json()
    assert [(g["name"], g["taskCount"], g["hasRunningTask"]) for g in rows] == [("Ship v1", 1, True)]
    assert rows[0]["totalProgress"] == 0.0


def test_shared_goal_list_respects_resource_permission(client, db_session, headers_for, owner, other, workspace, goal, grant, permit):
    hidden = Goal(user_id=owner.id, workspace_id=workspace.id, name="Private")
    db_session.add(hidden)
    db_session.commit()
    grant(workspace, other, can_list=True)
    permit(other, hidden, can_list=False)

    rows = client.get("/api/goals/", headers=headers_for(other)).json()
    assert [g["name"] for g in rows] == ["Ship v1"]


def test_update_and_delete_goal(client, db_session, headers_for, owner, goal, task):
    headers = headers_for(owner)
    resp = client.put(f"/api/goals/{goal.id}", json={"status": "reached"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "reached"

    assert client.put(f"/api/goals/{goal.id}", json={"status": "archived"}, headers=headers).status_code == 422

    assert client.delete(f"/api/goals/{goal.id}", headers=headers).status_code == 204
    assert db_session.scalar(select(func.count()).select_from(Task)) == 0


def test_ready(client):
    resp = client.get("/api/ready")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "db_ok": True, "redis_ok": True}


def test_ready_reports_database_failure(client):
    broken = MagicMock()
    broken.execute.side_effect = RuntimeError("connection refused")
    client.app.dependency_overrides[get_db] = lambda: broken

    resp = client.get("/api/ready")
    assert resp.status_code == 200
    assert resp.json() == {"ok": False, "db_ok": False, "redis_ok": True}
