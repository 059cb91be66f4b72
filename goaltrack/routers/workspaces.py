from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user, get_tracking_engine, require_permission
from ..models import User, Workspace
from ..schemas import WorkspaceCreate, WorkspaceOut, WorkspaceSummaryOut, WorkspaceUpdate
from ..services import access
from ..services.progress import workspace_progress
from ..services.sharing import purge_permissions, resource_tree
from ..services.tracking import TrackingEngine

router = APIRouter(prefix="/workspaces", tags=["workspaces"])


def _summary(engine: TrackingEngine, user: User, workspace: Workspace) -> WorkspaceSummaryOut:
    progress = workspace_progress(engine, user.id, workspace.goals)
    out = WorkspaceSummaryOut.model_validate(workspace)
    out.goal_count = len(workspace.goals)
    out.task_count = progress.task_count
    out.total_progress = progress.total_progress
    out.is_owner = workspace.user_id == user.id
    return out


@router.get("/", response_model=List[WorkspaceSummaryOut])
def list_workspaces(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    """Owned workspaces plus accepted shares the user may list, with today's progress."""
    owned = db.scalars(
        select(Workspace).where(Workspace.user_id == user.id).order_by(Workspace.created_at)
    ).all()

    shared_ids = access.accepted_workspace_ids(db, user.id)
    shared = []
    if shared_ids:
        shared = [
            ws for ws in db.scalars(
                select(Workspace).where(Workspace.id.in_(shared_ids)).order_by(Workspace.created_at)
            ).all()
            if access.authorize(db, user.id, "workspace", ws.id, "list").allowed
        ]

    return [_summary(engine, user, ws) for ws in [*owned, *shared]]


@router.post("/", response_model=WorkspaceOut, status_code=201)
def create_workspace(
    data: WorkspaceCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    workspace = Workspace(user_id=user.id, **data.model_dump())
    db.add(workspace)
    db.commit()
    db.refresh(workspace)
    return workspace


@router.get("/groups/unique", response_model=List[str])
def unique_group_names(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Distinct non-empty group labels across the user's own workspaces."""
    names = db.scalars(
        select(Workspace.group_name)
        .where(Workspace.user_id == user.id, Workspace.group_name.is_not(None), Workspace.group_name != "")
        .distinct()
        .order_by(Workspace.group_name)
    ).all()
    return list(names)


@router.get("/{id}", response_model=WorkspaceSummaryOut)
def get_workspace(
    id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("workspace", "list")),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    return _summary(engine, user, db.get(Workspace, id))


@router.put("/{id}", response_model=WorkspaceOut)
def update_workspace(
    id: str,
    data: WorkspaceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("workspace", "edit")),
):
    workspace = db.get(Workspace, id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(workspace, key, value)
    db.commit()
    db.refresh(workspace)
    return workspace


@router.delete("/{id}", status_code=204)
def delete_workspace(
    id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("workspace", "delete")),
):
    """Delete the workspace with its goals, tasks, records, shares and permissions."""
    workspace = db.get(Workspace, id)
    purge_permissions(db, resource_tree(workspace))
    db.delete(workspace)
    db.commit()
    return Response(status_code=204)
