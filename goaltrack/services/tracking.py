"""Time tracking engine.

Owns every write to task_tracking_records:
- start / stop of the live timer (one running record per user, across all tasks)
- manual back-filled records
- per-period summaries in the user's own timezone

Callers authorize first (submitRecord on the task / tracking record); the
engine only enforces tracking invariants.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..clock import Clock, SystemClock, as_utc, resolve_timezone
from ..errors import (
    AlreadyStopped,
    AnotherTaskActive,
    InvalidTimeRange,
    ResourceNotFound,
    TrackingRecordNotFound,
    ValidationError,
)
from ..models import Goal, Task, TrackingRecord, User
from .access import shared_workspace_ids

logger = logging.getLogger("goaltrack.tracking")

PERIODS = ("day", "month", "year", "total")


@dataclass(frozen=True)
class TaskSummary:
    task_name: str
    total_duration_seconds: int
    # Local wall-clock start of the bucket; None for "total"
    period: Optional[datetime] = None


def elapsed_seconds(start: datetime, end: datetime) -> int:
    return math.floor((as_utc(end) - as_utc(start)).total_seconds())


def period_start(local: datetime, period: str) -> datetime:
    """Truncate a local datetime to the start of its day/month/year (naive result)."""
    bucket = local.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    if period in ("month", "year"):
        bucket = bucket.replace(day=1)
    if period == "year":
        bucket = bucket.replace(month=1)
    return bucket


class TrackingEngine:
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    # --- helpers ---

    def user_timezone(self, user_id: str) -> tzinfo:
        user = self.db.get(User, user_id)
        return resolve_timezone(user.timezone if user else None)

    def active_record(self, user_id: str) -> Optional[TrackingRecord]:
        """The user's running record, if any."""
        return self.db.scalar(
            select(TrackingRecord).where(
                TrackingRecord.user_id == user_id,
                TrackingRecord.end_time.is_(None),
            )
        )

    def _active_conflict(self, user_id: str):
        return self.db.execute(
            select(TrackingRecord.task_id, Task.name)
            .join(Task, TrackingRecord.task_id == Task.id)
            .where(
                TrackingRecord.user_id == user_id,
                TrackingRecord.end_time.is_(None),
            )
        ).first()

    def _close_open_records(self, user_id: str, task_id: str, exclude_id: Optional[str] = None) -> int:
        """Close stray running records of this user on this task at "now"."""
        stmt = select(TrackingRecord).where(
            TrackingRecord.user_id == user_id,
            TrackingRecord.task_id == task_id,
            TrackingRecord.end_time.is_(None),
        )
        if exclude_id is not None:
            stmt = stmt.where(TrackingRecord.id != exclude_id)
        return self._close_at_now(stmt)

    def close_open_records_in(self, user_id: str, task_ids: Iterable[str]) -> int:
        """Close the user's running records on any of `task_ids` at "now".

        Flushes only; the caller owns the transaction.
        """
        task_ids = list(task_ids)
        if not task_ids:
            return 0
        stmt = select(TrackingRecord).where(
            TrackingRecord.user_id == user_id,
            TrackingRecord.task_id.in_(task_ids),
            TrackingRecord.end_time.is_(None),
        )
        return self._close_at_now(stmt)

    def _close_at_now(self, stmt) -> int:
        now = self.clock.now()
        closed = 0
        for record in self.db.scalars(stmt).all():
            record.end_time = now
            record.duration = max(0, elapsed_seconds(record.start_time, now))
            closed += 1
            logger.warning(f"Closed dangling tracking record {record.id} for task {record.task_id}")
        if closed:
            self.db.flush()
        return closed

    # --- live timer ---

    def start(self, user_id: str, task_id: str, start_time: Optional[datetime] = None) -> TrackingRecord:
        task = self.db.get(Task, task_id)
        if task is None:
            raise ResourceNotFound()

        if start_time is None:
            start_time = self.clock.now().astimezone(self.user_timezone(user_id))

        active = self._active_conflict(user_id)
        if active:
            raise AnotherTaskActive(active.task_id, active.name)

        try:
            self._close_open_records(user_id, task_id)
            record = TrackingRecord(task_id=task_id, user_id=user_id, start_time=start_time)
            self.db.add(record)
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent start for the same user.
            self.db.rollback()
            active = self._active_conflict(user_id)
            if active:
                logger.info(f"Concurrent start rejected for user {user_id}, task {active.task_id} is running")
                raise AnotherTaskActive(active.task_id, active.name)
            raise

        self.db.refresh(record)
        logger.info(f"Started tracking record {record.id} on task {task_id} for user {user_id}")
        return record

    def stop(self, user_id: str, record_id: str, stop_time: Optional[datetime] = None) -> TrackingRecord:
        record = self.db.scalar(
            select(TrackingRecord).where(
                TrackingRecord.id == record_id,
                TrackingRecord.user_id == user_id,
            )
        )
        if record is None:
            raise TrackingRecordNotFound()
        if record.end_time is not None:
            raise AlreadyStopped()

        stop_time = as_utc(stop_time) if stop_time is not None else self.clock.now()
        if stop_time < as_utc(record.start_time):
            raise InvalidTimeRange()

        try:
            record.end_time = stop_time
            record.duration = elapsed_seconds(record.start_time, stop_time)
            self.db.flush()
            self._close_open_records(user_id, record.task_id, exclude_id=record.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(record)
        logger.info(f"Stopped tracking record {record.id} after {record.duration}s")
        return record

    def record_manual(
        self,
        user_id: str,
        task_id: str,
        start_time: datetime,
        stop_time: datetime,
        duration: int,
    ) -> TrackingRecord:
        """Insert a closed record as given (back-fill); no session or overlap checks."""
        if self.db.get(Task, task_id) is None:
            raise ResourceNotFound()

        record = TrackingRecord(
            task_id=task_id,
            user_id=user_id,
            start_time=start_time,
            end_time=stop_time,
            duration=duration,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Manual tracking record {record.id} ({duration}s) on task {task_id}")
        return record

    # --- summaries ---

    def current_period(self, period: str, tz: tzinfo) -> Optional[datetime]:
        """Bucket containing "now" in the given timezone; None for "total"."""
        if period == "total":
            return None
        return period_start(self.clock.now().astimezone(tz), period)

    @staticmethod
    def record_period(record: TrackingRecord, period: str, tz: tzinfo) -> datetime:
        return period_start(as_utc(record.start_time).astimezone(tz), period)

    def _visible_records(
        self,
        user_id: str,
        workspace_id: Optional[str] = None,
        goal_id: Optional[str] = None,
    ) -> Iterable[tuple[TrackingRecord, Task]]:
        """The user's own records on tasks they own or that live in a workspace shared with them."""
        base = (
            select(TrackingRecord, Task)
            .join(Task, TrackingRecord.task_id == Task.id)
            .join(Goal, Task.goal_id == Goal.id)
            .where(TrackingRecord.user_id == user_id)
        )
        if goal_id:
            base = base.where(Task.goal_id == goal_id)
        if workspace_id:
            base = base.where(Goal.workspace_id == workspace_id)

        sources = [Task.user_id == user_id]
        shared = shared_workspace_ids(self.db, user_id)
        if shared:
            sources.append(Goal.workspace_id.in_(shared))

        # Union of both sources keyed by record id, so overlap is counted once.
        seen: dict[str, tuple[TrackingRecord, Task]] = {}
        for source in sources:
            for record, task in self.db.execute(base.where(source)).all():
                seen[record.id] = (record, task)
        return seen.values()

    def summarize(
        self,
        user_id: str,
        period: str,
        workspace_id: Optional[str] = None,
        goal_id: Optional[str] = None,
    ) -> list[TaskSummary]:
        if period not in PERIODS:
            raise ValidationError('Invalid period specified. Must be "day", "month", "year", or "total".')

        tz = self.user_timezone(user_id)
        current = self.current_period(period, tz)
        totals: dict[tuple[str, Optional[datetime]], int] = defaultdict(int)
        for record, task in self._visible_records(user_id, workspace_id, goal_id):
            if record.duration is None:
                continue
            bucket = None
            if current is not None:
                bucket = self.record_period(record, period, tz)
                if bucket != current:
                    continue
            totals[(task.name, bucket)] += record.duration

        return [
            TaskSummary(task_name=name, total_duration_seconds=seconds, period=bucket)
            for (name, bucket), seconds in sorted(totals.items(), key=lambda item: (item[0][0], item[0][1] or datetime.min))
        ]

    def tracked_seconds_today(self, user_id: str, task_ids: Iterable[str]) -> dict[str, int]:
        """Seconds the user tracked today (own timezone) per task id."""
        task_ids = list(task_ids)
        if not task_ids:
            return {}

        tz = self.user_timezone(user_id)
        today = self.current_period("day", tz)
        records = self.db.scalars(
            select(TrackingRecord).where(
                TrackingRecord.user_id == user_id,
                TrackingRecord.task_id.in_(task_ids),
                TrackingRecord.duration.is_not(None),
            )
        ).all()

        seconds: dict[str, int] = defaultdict(int)
        for record in records:
            if self.record_period(record, "day", tz) == today:
                seconds[record.task_id] += record.duration
        return dict(seconds)
