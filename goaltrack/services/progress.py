"""Goal / workspace progress.

progress % = sum(credited minutes) * 100 / sum(time budget)

- a `done` task credits its whole budget
- any other task credits the minutes tracked on it today
- zero total budget gives 0.0
"""

from dataclasses import dataclass
from typing import Iterable, Mapping

from sqlalchemy import select

from ..models import Goal, Task, TrackingRecord
from .tracking import TrackingEngine


@dataclass(frozen=True)
class Progress:
    total_progress: float
    task_count: int
    has_running_task: bool = False


def compute_progress(tasks: Iterable[Task], tracked_seconds: Mapping[str, int]) -> float:
    tasks = list(tasks)
    budget = sum(task.time_budget for task in tasks)
    if budget == 0:
        return 0.0

    credited = 0.0
    for task in tasks:
        if task.status == "done":
            credited += task.time_budget
        else:
            credited += tracked_seconds.get(task.id, 0) / 60
    return credited * 100.0 / budget


def _progress_for(engine: TrackingEngine, user_id: str, tasks: list[Task]) -> Progress:
    tracked = engine.tracked_seconds_today(user_id, [task.id for task in tasks])
    running = False
    if tasks:
        running = engine.db.scalar(
            select(TrackingRecord.id).where(
                TrackingRecord.user_id == user_id,
                TrackingRecord.end_time.is_(None),
                TrackingRecord.task_id.in_([task.id for task in tasks]),
            )
        ) is not None
    return Progress(compute_progress(tasks, tracked), len(tasks), running)


def goal_progress(engine: TrackingEngine, user_id: str, goal: Goal) -> Progress:
    return _progress_for(engine, user_id, list(goal.tasks))


def workspace_progress(engine: TrackingEngine, user_id: str, goals: Iterable[Goal]) -> Progress:
    tasks = [task for goal in goals for task in goal.tasks]
    return _progress_for(engine, user_id, tasks)
