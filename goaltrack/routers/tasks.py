from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import case, select
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user, get_tracking_engine, require_permission
from ..infra.idempotency import idempotency_clear_key, idempotency_precheck, idempotency_store_result
from ..models import Goal, Task, User
from ..schemas import (
    DailyBudgetOut,
    ManualRecordRequest,
    StartTrackingRequest,
    StopTrackingRequest,
    TaskCreate,
    TaskOut,
    TaskSummaryOut,
    TaskUpdate,
    TaskWithTrackingOut,
    TrackingRecordOut,
    TrackingResponse,
)
from ..services import access
from ..services.sharing import purge_permissions, resource_tree
from ..services.tracking import TrackingEngine
from ..settings import settings

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("/", response_model=TaskOut, status_code=201)
def create_task(
    data: TaskCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    access.require(db, user.id, "goal", data.goal_id, "addTask")
    task = Task(user_id=user.id, **data.model_dump())
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


@router.get("/", response_model=List[TaskWithTrackingOut])
def list_tasks(
    goal_id: Optional[str] = Query(None, alias="goalId"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    """Visible tasks with the caller's running record attached; done tasks sort last."""
    stmt = select(Task).join(Goal, Task.goal_id == Goal.id)
    if goal_id:
        access.require(db, user.id, "goal", goal_id, "list")
        stmt = stmt.where(Task.goal_id == goal_id)
    else:
        workspace_ids = access.accepted_workspace_ids(db, user.id)
        stmt = stmt.where((Task.user_id == user.id) | Goal.workspace_id.in_(workspace_ids))

    stmt = stmt.order_by(case((Task.status == "done", 1), else_=0), Task.name)
    tasks = [
        t for t in db.scalars(stmt).all()
        if access.authorize(db, user.id, "task", t.id, "list").allowed
    ]

    active = engine.active_record(user.id)
    out = []
    for task in tasks:
        item = TaskWithTrackingOut.model_validate(task)
        if active is not None and active.task_id == task.id:
            item.active_tracking = TrackingRecordOut.model_validate(active)
        out.append(item)
    return out


@router.get("/summary", response_model=List[TaskSummaryOut], response_model_exclude_none=True)
def tracking_summary(
    period: str = Query(...),
    workspace_id: Optional[str] = Query(None, alias="workspaceId"),
    goal_id: Optional[str] = Query(None, alias="goalId"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    """Tracked seconds per task name for the current day/month/year, or all time."""
    if workspace_id:
        access.require_summary_scope(db, user.id, "workspace", workspace_id)
    if goal_id:
        access.require_summary_scope(db, user.id, "goal", goal_id)

    rows = engine.summarize(user.id, period, workspace_id=workspace_id, goal_id=goal_id)
    return [TaskSummaryOut.model_validate(row) for row in rows]


@router.get("/daily-budget/{goalId}", response_model=DailyBudgetOut, response_model_exclude_none=True)
def daily_budget(
    goalId: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("goal", "list", param="goalId")),
):
    goal = db.get(Goal, goalId)
    minutes = sum(task.time_budget for task in goal.tasks)
    hours = minutes / 60

    warning = None
    if hours > settings.daily_budget_warning_hours:
        warning = f"Warning: Total time budget exceeds {settings.daily_budget_warning_hours} hours for this goal."

    return DailyBudgetOut(
        goal_id=goal.id,
        total_time_budget_minutes=minutes,
        total_time_budget_hours=hours,
        warning=warning,
    )


@router.get("/{id}", response_model=TaskWithTrackingOut)
def get_task(
    id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("task", "list")),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    task = db.get(Task, id)
    out = TaskWithTrackingOut.model_validate(task)
    active = engine.active_record(user.id)
    if active is not None and active.task_id == task.id:
        out.active_tracking = TrackingRecordOut.model_validate(active)
    return out


@router.put("/{id}", response_model=TaskOut)
def update_task(
    id: str,
    data: TaskUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("task", "edit")),
):
    task = db.get(Task, id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(task, key, value)
    db.commit()
    db.refresh(task)
    return task


@router.delete("/{id}", status_code=204)
def delete_task(
    id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("task", "delete")),
):
    task = db.get(Task, id)
    purge_permissions(db, resource_tree(task))
    db.delete(task)
    db.commit()
    return Response(status_code=204)


# --- Tracking ---

@router.post("/{id}/start", response_model=TrackingResponse, status_code=201)
async def start_tracking(
    id: str,
    request: Request,
    body: Optional[StartTrackingRequest] = None,
    user: User = Depends(require_permission("task", "submitRecord")),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    """Open a tracking record on the task for the caller.

    Fails with AnotherTaskActive while any other record of the caller is open.
    """
    pre = await idempotency_precheck(request, user_id=user.id, route_key=f"task_start_{id}")
    if isinstance(pre, JSONResponse):
        return pre
    redis_key, req_hash = pre or (None, None)

    try:
        record = engine.start(user.id, id, body.start_time if body else None)
        resp = TrackingResponse(message="Task tracking started", record=TrackingRecordOut.model_validate(record))
        if redis_key:
            await idempotency_store_result(
                redis_key, req_hash, status=201, body=resp.model_dump(mode="json", by_alias=True)
            )
        return resp
    except Exception:
        await idempotency_clear_key(redis_key)
        raise


@router.post("/{id}/stop", response_model=TrackingResponse)
def stop_tracking(
    id: str,
    body: Optional[StopTrackingRequest] = None,
    user: User = Depends(require_permission("tracking_record", "submitRecord")),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    """Close the caller's tracking record `id` at stopTime (default: now)."""
    record = engine.stop(user.id, id, body.stop_time if body else None)
    return TrackingResponse(message="Task tracking stopped", record=TrackingRecordOut.model_validate(record))


@router.post("/{taskId}/manual-record", response_model=TrackingResponse, status_code=201)
async def create_manual_record(
    taskId: str,
    request: Request,
    body: ManualRecordRequest,
    user: User = Depends(require_permission("task", "submitRecord", param="taskId")),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    pre = await idempotency_precheck(request, user_id=user.id, route_key=f"task_manual_{taskId}")
    if isinstance(pre, JSONResponse):
        return pre
    redis_key, req_hash = pre or (None, None)

    try:
        record = engine.record_manual(user.id, taskId, body.start_time, body.stop_time, body.duration)
        resp = TrackingResponse(message="Manual task record created", record=TrackingRecordOut.model_validate(record))
        if redis_key:
            await idempotency_store_result(
                redis_key, req_hash, status=201, body=resp.model_dump(mode="json", by_alias=True)
            )
        return resp
    except Exception:
        await idempotency_clear_key(redis_key)
        raise
