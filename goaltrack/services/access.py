"""Access resolution for workspaces, goals, tasks and tracking records.

authorize() walks, in order:

1. ownership      - the resource's owner (or the owner of its workspace) is always allowed
2. workspace      - find the workspace that transitively contains the resource
3. share          - the user needs an *accepted* share on that workspace
4. permissions    - resource-specific row, then workspace-level row, then deny

Every step only reads. Missing data resolves to the most restrictive answer,
and database errors propagate untouched so callers never mistake an outage
for a denial.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Type

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import (
    AccessDenied,
    InsufficientPermission,
    NoAccess,
    NoPermissionDefined,
    ResourceNotFound,
    ShareNotAccepted,
    ValidationError,
)
from ..models import Goal, Permission, Task, TrackingRecord, Workspace, WorkspaceShare

logger = logging.getLogger("goaltrack.access")


class ResourceType(str, Enum):
    WORKSPACE = "workspace"
    GOAL = "goal"
    TASK = "task"
    TRACKING_RECORD = "tracking_record"


class Action(str, Enum):
    LIST = "list"
    EDIT = "edit"
    DELETE = "delete"
    ADD_TASK = "addTask"
    SUBMIT_RECORD = "submitRecord"


@dataclass(frozen=True)
class ResourceRef:
    """Tagged reference to a permission target (Permission.resource_type/resource_id)."""
    type: ResourceType
    id: str


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[Type[AccessDenied]] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(True)

    @classmethod
    def deny(cls, reason: Type[AccessDenied]) -> "Decision":
        return cls(False, reason)

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise self.reason()


# (resource type, action) -> (resource-specific flag, workspace-level fallback flag).
# Tracking records are checked against their task, so they have no entries of their own.
FLAG_TABLE: dict[tuple[ResourceType, Action], tuple[str, str]] = {
    (ResourceType.WORKSPACE, Action.LIST): ("can_list", "can_list"),
    (ResourceType.WORKSPACE, Action.EDIT): ("can_edit", "can_edit"),
    (ResourceType.WORKSPACE, Action.DELETE): ("can_delete", "can_delete"),
    (ResourceType.GOAL, Action.LIST): ("can_list", "can_list"),
    (ResourceType.GOAL, Action.EDIT): ("can_edit", "can_edit"),
    (ResourceType.GOAL, Action.DELETE): ("can_delete", "can_delete"),
    (ResourceType.GOAL, Action.ADD_TASK): ("can_add_task", "can_edit"),
    (ResourceType.TASK, Action.LIST): ("can_list", "can_list"),
    (ResourceType.TASK, Action.EDIT): ("can_edit", "can_edit"),
    (ResourceType.TASK, Action.DELETE): ("can_delete", "can_delete"),
    (ResourceType.TASK, Action.SUBMIT_RECORD): ("can_submit_record", "can_edit"),
}


@dataclass(frozen=True)
class _Target:
    owner_id: Optional[str]
    permission_ref: ResourceRef
    # Set once the containing workspace is resolved
    workspace_id: Optional[str] = None


def _resolve_owner(db: Session, resource_type: ResourceType, resource_id: str) -> Optional[_Target]:
    """Owner and permission target of a resource, or None when it does not exist."""
    if resource_type == ResourceType.WORKSPACE:
        ws = db.get(Workspace, resource_id)
        if ws is None:
            return None
        return _Target(ws.user_id, ResourceRef(ResourceType.WORKSPACE, ws.id), ws.id)

    if resource_type == ResourceType.GOAL:
        goal = db.get(Goal, resource_id)
        if goal is None:
            return None
        return _Target(goal.user_id, ResourceRef(ResourceType.GOAL, goal.id))

    if resource_type == ResourceType.TASK:
        task = db.get(Task, resource_id)
        if task is None:
            return None
        return _Target(task.user_id, ResourceRef(ResourceType.TASK, task.id))

    record = db.get(TrackingRecord, resource_id)
    if record is None:
        return None
    task = db.get(Task, record.task_id)
    if task is None:
        return None
    # A record is owned by whoever owns its task, and permissions are read off the task.
    return _Target(task.user_id, ResourceRef(ResourceType.TASK, task.id))


def resolve_workspace_id(db: Session, ref: ResourceRef) -> Optional[str]:
    """Workspace that transitively contains the resource, or None if the chain is broken."""
    if ref.type == ResourceType.WORKSPACE:
        return ref.id if db.get(Workspace, ref.id) is not None else None

    if ref.type == ResourceType.TRACKING_RECORD:
        record = db.get(TrackingRecord, ref.id)
        if record is None:
            return None
        ref = ResourceRef(ResourceType.TASK, record.task_id)

    if ref.type == ResourceType.TASK:
        task = db.get(Task, ref.id)
        if task is None:
            return None
        ref = ResourceRef(ResourceType.GOAL, task.goal_id)

    goal = db.get(Goal, ref.id)
    if goal is None or db.get(Workspace, goal.workspace_id) is None:
        return None
    return goal.workspace_id


def _find_permission(db: Session, user_id: str, ref: ResourceRef) -> Optional[Permission]:
    return db.scalar(
        select(Permission).where(
            Permission.user_id == user_id,
            Permission.resource_id == ref.id,
            Permission.resource_type == ref.type.value,
        )
    )


def _check_flag(permission: Permission, flag: str) -> Decision:
    if getattr(permission, flag):
        return Decision.allow()
    return Decision.deny(InsufficientPermission)


# --- Permission chain ---
# Each resolver returns a Decision when it has an opinion, None to fall through.

Resolver = Callable[[Session, str, ResourceRef, str, Action], Optional[Decision]]


def _resource_specific(db: Session, user_id: str, ref: ResourceRef, workspace_id: str, action: Action) -> Optional[Decision]:
    if ref.type == ResourceType.WORKSPACE:
        # The workspace row is the fallback tier; let that resolver handle it.
        return None
    permission = _find_permission(db, user_id, ref)
    if permission is None:
        return None
    flags = FLAG_TABLE.get((ref.type, action))
    if flags is None:
        return Decision.deny(InsufficientPermission)
    return _check_flag(permission, flags[0])


def _workspace_level(db: Session, user_id: str, ref: ResourceRef, workspace_id: str, action: Action) -> Optional[Decision]:
    permission = _find_permission(db, user_id, ResourceRef(ResourceType.WORKSPACE, workspace_id))
    if permission is None:
        return None
    flags = FLAG_TABLE.get((ref.type, action))
    if flags is None:
        return Decision.deny(InsufficientPermission)
    return _check_flag(permission, flags[1])


PERMISSION_CHAIN: tuple[Resolver, ...] = (_resource_specific, _workspace_level)


def _resolve_permissions(db: Session, user_id: str, ref: ResourceRef, workspace_id: str, action: Action) -> Decision:
    for resolver in PERMISSION_CHAIN:
        decision = resolver(db, user_id, ref, workspace_id, action)
        if decision is not None:
            return decision
    return Decision.deny(NoPermissionDefined)


def _share_decision(db: Session, user_id: str, workspace_id: str) -> Optional[Decision]:
    statuses = db.scalars(
        select(WorkspaceShare.status).where(
            WorkspaceShare.workspace_id == workspace_id,
            WorkspaceShare.shared_with_user_id == user_id,
        )
    ).all()
    if not statuses:
        return Decision.deny(NoAccess)
    if "accepted" not in statuses:
        return Decision.deny(ShareNotAccepted)
    return None


def _coerce(resource_type, action) -> tuple[ResourceType, Action]:
    try:
        return ResourceType(resource_type), Action(action)
    except ValueError as e:
        raise ValidationError(str(e))


def authorize(db: Session, user_id: str, resource_type, resource_id: str, action) -> Decision:
    """Decide whether `user_id` may perform `action` on the given resource."""
    resource_type, action = _coerce(resource_type, action)

    target = _resolve_owner(db, resource_type, resource_id)
    if target is None:
        return _log_denial(user_id, resource_type, resource_id, action, Decision.deny(ResourceNotFound))
    if target.owner_id == user_id:
        return Decision.allow()

    workspace_id = target.workspace_id or resolve_workspace_id(db, ResourceRef(resource_type, resource_id))
    if workspace_id is None:
        return _log_denial(user_id, resource_type, resource_id, action, Decision.deny(ResourceNotFound))

    workspace = db.get(Workspace, workspace_id)
    if workspace.user_id == user_id:
        # Workspace owners keep full control over everything collaborators add.
        return Decision.allow()

    decision = _share_decision(db, user_id, workspace_id)
    if decision is None:
        decision = _resolve_permissions(db, user_id, target.permission_ref, workspace_id, action)
    if not decision.allowed:
        _log_denial(user_id, resource_type, resource_id, action, decision)
    return decision


def require(db: Session, user_id: str, resource_type, resource_id: str, action) -> None:
    """authorize(), raising the matching AccessDenied subclass on DENY."""
    authorize(db, user_id, resource_type, resource_id, action).raise_for_denial()


def require_summary_scope(db: Session, user_id: str, resource_type, resource_id: str) -> None:
    """Gate for narrowing a summary to one workspace or goal.

    Summaries count the caller's records in workspaces shared with them in any
    invitation state, so any share on the containing workspace is enough here.
    """
    decision = authorize(db, user_id, resource_type, resource_id, Action.LIST)
    if decision.allowed:
        return
    workspace_id = resolve_workspace_id(db, ResourceRef(ResourceType(resource_type), resource_id))
    if workspace_id is not None and workspace_id in shared_workspace_ids(db, user_id):
        return
    decision.raise_for_denial()


def _log_denial(user_id, resource_type, resource_id, action, decision: Decision) -> Decision:
    logger.info(
        f"Denied {action.value} on {resource_type.value} {resource_id} for user {user_id}: "
        f"{decision.reason.__name__}"
    )
    return decision


def accepted_workspace_ids(db: Session, user_id: str) -> list[str]:
    """Workspaces shared with the user through an accepted invitation."""
    return list(
        db.scalars(
            select(WorkspaceShare.workspace_id)
            .where(
                WorkspaceShare.shared_with_user_id == user_id,
                WorkspaceShare.status == "accepted",
            )
            .distinct()
        ).all()
    )


def shared_workspace_ids(db: Session, user_id: str) -> list[str]:
    """Workspaces shared with the user in any invitation state."""
    return list(
        db.scalars(
            select(WorkspaceShare.workspace_id)
            .where(WorkspaceShare.shared_with_user_id == user_id)
            .distinct()
        ).all()
    )
