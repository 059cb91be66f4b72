from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user, get_tracking_engine, require_permission
from ..models import Goal, User
from ..schemas import GoalCreate, GoalOut, GoalSummaryOut, GoalUpdate
from ..services import access
from ..services.progress import goal_progress
from ..services.sharing import purge_permissions, resource_tree
from ..services.tracking import TrackingEngine

router = APIRouter(prefix="/goals", tags=["goals"])


def _summary(engine: TrackingEngine, user: User, goal: Goal) -> GoalSummaryOut:
    progress = goal_progress(engine, user.id, goal)
    out = GoalSummaryOut.model_validate(goal)
    out.task_count = progress.task_count
    out.total_progress = progress.total_progress
    out.has_running_task = progress.has_running_task
    return out


@router.post("/", response_model=GoalOut, status_code=201)
def create_goal(
    data: GoalCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Create a goal; needs edit rights on the target workspace."""
    access.require(db, user.id, "workspace", data.workspace_id, "edit")
    goal = Goal(user_id=user.id, **data.model_dump())
    db.add(goal)
    db.commit()
    db.refresh(goal)
    return goal


@router.get("/", response_model=List[GoalSummaryOut])
def list_goals(
    workspace_id: Optional[str] = Query(None, alias="workspaceId"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    """Goals the user can list, optionally narrowed to one workspace."""
    if workspace_id:
        access.require(db, user.id, "workspace", workspace_id, "list")
        stmt = select(Goal).where(Goal.workspace_id == workspace_id)
    else:
        workspace_ids = access.accepted_workspace_ids(db, user.id)
        stmt = select(Goal).where(
            (Goal.user_id == user.id) | Goal.workspace_id.in_(workspace_ids)
        )

    goals = db.scalars(stmt.order_by(Goal.created_at)).all()
    visible = [g for g in goals if access.authorize(db, user.id, "goal", g.id, "list").allowed]
    return [_summary(engine, user, g) for g in visible]


@router.get("/{id}", response_model=GoalSummaryOut)
def get_goal(
    id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("goal", "list")),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    return _summary(engine, user, db.get(Goal, id))


@router.put("/{id}", response_model=GoalOut)
def update_goal(
    id: str,
    data: GoalUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("goal", "edit")),
):
    goal = db.get(Goal, id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(goal, key, value)
    db.commit()
    db.refresh(goal)
    return goal


@router.delete("/{id}", status_code=204)
def delete_goal(
    id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("goal", "delete")),
):
    goal = db.get(Goal, id)
    purge_permissions(db, resource_tree(goal))
    db.delete(goal)
    db.commit()
    return Response(status_code=204)
