from datetime import datetime, timedelta, timezone

import pytest

from goaltrack.models import Goal, Task, TrackingRecord
from goaltrack.services.progress import compute_progress, goal_progress, workspace_progress

TODAY_9AM = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


def _task(id, budget, status="pending"):
    return Task(id=id, name=id, time_budget=budget, status=status)


def test_compute_progress_no_tasks():
    assert compute_progress([], {}) == 0.0


def test_compute_progress_zero_budget():
    assert compute_progress([_task("a", 0), _task("b", 0, status="done")], {"a": 600}) == 0.0


def test_done_task_credits_full_budget():
    tasks = [_task("a", 60, status="done"), _task("b", 60)]
    assert compute_progress(tasks, {"a": 0, "b": 0}) == 50.0


def test_tracked_minutes_credit_open_tasks():
    tasks = [_task("a", 60), _task("b", 40)]
    # 30 + 20 minutes of 100
    assert compute_progress(tasks, {"a": 1800, "b": 1200}) == pytest.approx(50.0)


def test_overrun_can_exceed_hundred():
    assert compute_progress([_task("a", 10)], {"a": 1200}) == pytest.approx(200.0)


def test_goal_progress_counts_only_today(db_session, tracker, owner, goal, task):
    db_session.add_all([
        TrackingRecord(task_id=task.id, user_id=owner.id, start_time=TODAY_9AM,
                       end_time=TODAY_9AM + timedelta(minutes=15), duration=900),
        TrackingRecord(task_id=task.id, user_id=owner.id, start_time=TODAY_9AM - timedelta(days=1),
                       end_time=TODAY_9AM - timedelta(days=1) + timedelta(minutes=30), duration=1800),
    ])
    db_session.commit()

    progress = goal_progress(tracker, owner.id, goal)
    assert progress.task_count == 1
    assert progress.total_progress == pytest.approx(25.0)
    assert progress.has_running_task is False


def test_goal_progress_is_per_user(db_session, tracker, owner, other, goal, task):
    db_session.add(TrackingRecord(task_id=task.id, user_id=other.id, start_time=TODAY_9AM,
                                  end_time=TODAY_9AM + timedelta(hours=1), duration=3600))
    db_session.commit()

    assert goal_progress(tracker, owner.id, goal).total_progress == 0.0
    assert goal_progress(tracker, other.id, goal).total_progress == pytest.approx(100.0)


def test_goal_progress_flags_running_task(tracker, owner, goal, task):
    tracker.start(owner.id, task.id)
    assert goal_progress(tracker, owner.id, goal).has_running_task is True


def test_workspace_progress_spans_goals(db_session, tracker, owner, workspace, goal, task, make_task):
    second_goal = Goal(user_id=owner.id, workspace_id=workspace.id, name="Ship v2")
    db_session.add(second_goal)
    db_session.commit()
    make_task("Launch", time_budget=140, status="done", parent=second_goal)

    db_session.add(TrackingRecord(task_id=task.id, user_id=owner.id, start_time=TODAY_9AM,
                                  end_time=TODAY_9AM + timedelta(hours=1), duration=3600))
    db_session.commit()
    db_session.refresh(workspace)

    progress = workspace_progress(tracker, owner.id, workspace.goals)
    # (60 tracked + 140 done) of 200 budgeted minutes
    assert progress.task_count == 2
    assert progress.total_progress == pytest.approx(100.0)
