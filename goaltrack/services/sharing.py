"""Workspace sharing: invitations and permission rows.

Only this module writes WorkspaceShare and Permission rows.
"""

import logging
from typing import Iterable, Optional, Union

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from ..errors import (
    AlreadyResponded,
    AlreadyShared,
    NoAccess,
    ResourceNotFound,
    ValidationError,
)
from ..models import Goal, Permission, Task, User, Workspace, WorkspaceShare
from . import access
from .access import ResourceRef, ResourceType
from .tracking import TrackingEngine

logger = logging.getLogger("goaltrack.sharing")

RESPONSES = {"accept": "accepted", "decline": "declined"}


# --- helpers ---

def find_user_by_identifier(db: Session, identifier: str) -> Optional[User]:
    return db.scalar(
        select(User).where(or_(User.username == identifier, User.email == identifier))
    )


def _owned_workspace(db: Session, owner_id: str, workspace_id: str) -> Workspace:
    workspace = db.get(Workspace, workspace_id)
    if workspace is None or workspace.user_id != owner_id:
        raise ResourceNotFound("Workspace not found or you do not have permission to manage it")
    return workspace


def resource_tree(resource: Union[Workspace, Goal, Task]) -> list[ResourceRef]:
    """Refs of a resource and everything nested under it."""
    if isinstance(resource, Task):
        return [ResourceRef(ResourceType.TASK, resource.id)]
    if isinstance(resource, Goal):
        refs = [ResourceRef(ResourceType.GOAL, resource.id)]
        for task in resource.tasks:
            refs.extend(resource_tree(task))
        return refs
    refs = [ResourceRef(ResourceType.WORKSPACE, resource.id)]
    for goal in resource.goals:
        refs.extend(resource_tree(goal))
    return refs


def purge_permissions(db: Session, refs: Iterable[ResourceRef], user_id: Optional[str] = None) -> int:
    """Delete permission rows pointing at any of `refs` (optionally for one grantee only).

    Does not commit; the caller owns the transaction.
    """
    clauses = [
        and_(Permission.resource_type == ref.type.value, Permission.resource_id == ref.id)
        for ref in refs
    ]
    if not clauses:
        return 0
    stmt = delete(Permission).where(or_(*clauses))
    if user_id is not None:
        stmt = stmt.where(Permission.user_id == user_id)
    result = db.execute(stmt)
    return result.rowcount or 0


def upsert_permission(
    db: Session,
    user_id: str,
    ref: ResourceRef,
    *,
    can_list: bool,
    can_edit: bool,
    can_delete: bool,
    can_add_task: bool = False,
    can_submit_record: bool = False,
) -> Permission:
    permission = db.scalar(
        select(Permission).where(
            Permission.user_id == user_id,
            Permission.resource_id == ref.id,
            Permission.resource_type == ref.type.value,
        )
    )
    if permission is None:
        permission = Permission(user_id=user_id, resource_id=ref.id, resource_type=ref.type.value)
        db.add(permission)

    permission.can_list = can_list
    permission.can_edit = can_edit
    permission.can_delete = can_delete
    # Flags only meaningful on their own resource type
    permission.can_add_task = can_add_task if ref.type == ResourceType.GOAL else False
    permission.can_submit_record = can_submit_record if ref.type == ResourceType.TASK else False
    return permission


def _task_ids_under(db: Session, ref: ResourceRef) -> list[str]:
    model = {ResourceType.WORKSPACE: Workspace, ResourceType.GOAL: Goal, ResourceType.TASK: Task}[ref.type]
    resource = db.get(model, ref.id)
    if resource is None:
        return []
    return [r.id for r in resource_tree(resource) if r.type == ResourceType.TASK]


def _ref_in_workspace(db: Session, ref: ResourceRef, workspace_id: str) -> bool:
    if ref.type == ResourceType.WORKSPACE:
        return ref.id == workspace_id
    if ref.type == ResourceType.GOAL:
        goal = db.get(Goal, ref.id)
        return goal is not None and goal.workspace_id == workspace_id
    if ref.type == ResourceType.TASK:
        task = db.get(Task, ref.id)
        return task is not None and task.goal.workspace_id == workspace_id
    return False


# --- operations ---

def share_workspace(
    db: Session,
    owner_id: str,
    workspace_id: str,
    identifier: str,
    can_list: bool = True,
    can_edit: bool = False,
    can_delete: bool = False,
) -> tuple[WorkspaceShare, Permission]:
    """Invite a user (by username or email) and set their workspace-level defaults."""
    workspace = _owned_workspace(db, owner_id, workspace_id)

    invitee = find_user_by_identifier(db, identifier)
    if invitee is None:
        raise ResourceNotFound("User not found with the provided username or email")
    if invitee.id == owner_id:
        raise ValidationError("You cannot share a workspace with yourself")

    # A declined invitation does not block a fresh one; it gets a new row.
    open_share = db.scalar(
        select(WorkspaceShare).where(
            WorkspaceShare.workspace_id == workspace.id,
            WorkspaceShare.shared_with_user_id == invitee.id,
            WorkspaceShare.status.in_(("pending", "accepted")),
        )
    )
    if open_share is not None:
        raise AlreadyShared()

    share = WorkspaceShare(
        workspace_id=workspace.id,
        shared_with_user_id=invitee.id,
        invited_by_user_id=owner_id,
        status="pending",
    )
    db.add(share)
    permission = upsert_permission(
        db,
        invitee.id,
        ResourceRef(ResourceType.WORKSPACE, workspace.id),
        can_list=can_list,
        can_edit=can_edit,
        can_delete=can_delete,
    )
    db.commit()
    db.refresh(share)
    db.refresh(permission)
    logger.info(f"Workspace {workspace.id} shared with user {invitee.id} by {owner_id}")
    return share, permission


def respond_to_invitation(db: Session, user_id: str, workspace_id: str, share_id: str, response: str) -> WorkspaceShare:
    if response not in RESPONSES:
        raise ValidationError('Invalid response. Use "accept" or "decline"')

    share = db.scalar(
        select(WorkspaceShare).where(
            WorkspaceShare.id == share_id,
            WorkspaceShare.workspace_id == workspace_id,
            WorkspaceShare.shared_with_user_id == user_id,
        )
    )
    if share is None:
        raise ResourceNotFound("Share invitation not found")
    if share.status != "pending":
        raise AlreadyResponded()

    share.status = RESPONSES[response]
    if share.status == "declined":
        purge_permissions(db, [ResourceRef(ResourceType.WORKSPACE, workspace_id)], user_id=user_id)
    db.commit()
    db.refresh(share)
    logger.info(f"Share {share.id} on workspace {workspace_id} {share.status} by user {user_id}")
    return share


def update_permissions(
    db: Session,
    owner_id: str,
    workspace_id: str,
    target_user_id: str,
    ref: ResourceRef,
    *,
    can_list: bool,
    can_edit: bool,
    can_delete: bool,
    can_add_task: bool = False,
    can_submit_record: bool = False,
    engine: Optional[TrackingEngine] = None,
) -> Permission:
    _owned_workspace(db, owner_id, workspace_id)

    # Any share state counts; owners may pre-configure pending invitees.
    share = db.scalar(
        select(WorkspaceShare.id).where(
            WorkspaceShare.workspace_id == workspace_id,
            WorkspaceShare.shared_with_user_id == target_user_id,
        )
    )
    if share is None:
        raise ResourceNotFound("User does not have access to this workspace")

    if ref.type == ResourceType.TRACKING_RECORD:
        raise ValidationError("Permissions can only target a workspace, goal or task")
    if not _ref_in_workspace(db, ref, workspace_id):
        raise ResourceNotFound(f"{ref.type.value.capitalize()} not found in this workspace")

    permission = upsert_permission(
        db,
        target_user_id,
        ref,
        can_list=can_list,
        can_edit=can_edit,
        can_delete=can_delete,
        can_add_task=can_add_task,
        can_submit_record=can_submit_record,
    )
    db.flush()

    # A running timer the user may no longer stop is closed now.
    engine = engine or TrackingEngine(db)
    active = engine.active_record(target_user_id)
    if (
        active is not None
        and active.task_id in _task_ids_under(db, ref)
        and not access.authorize(db, target_user_id, "task", active.task_id, "submitRecord").allowed
    ):
        engine.close_open_records_in(target_user_id, [active.task_id])

    db.commit()
    db.refresh(permission)
    return permission


def revoke_access(
    db: Session,
    owner_id: str,
    workspace_id: str,
    target_user_id: str,
    engine: Optional[TrackingEngine] = None,
) -> None:
    """Drop every share row and every permission the user holds inside the workspace.

    The user's running timer on any task of the workspace is closed first.
    """
    workspace = _owned_workspace(db, owner_id, workspace_id)

    shares = db.scalars(
        select(WorkspaceShare).where(
            WorkspaceShare.workspace_id == workspace_id,
            WorkspaceShare.shared_with_user_id == target_user_id,
        )
    ).all()
    if not shares:
        raise ResourceNotFound("User does not have access to this workspace")

    engine = engine or TrackingEngine(db)
    task_ids = [ref.id for ref in resource_tree(workspace) if ref.type == ResourceType.TASK]
    engine.close_open_records_in(target_user_id, task_ids)

    for share in shares:
        db.delete(share)
    removed = purge_permissions(db, resource_tree(workspace), user_id=target_user_id)
    db.commit()
    logger.info(f"Revoked user {target_user_id} from workspace {workspace_id} ({removed} permission rows)")


def shared_users(db: Session, user_id: str, workspace_id: str) -> list[dict]:
    """Invitees of a workspace with their workspace-level permission row."""
    workspace = db.get(Workspace, workspace_id)
    if workspace is None:
        raise ResourceNotFound()
    if workspace.user_id != user_id:
        accepted = db.scalar(
            select(WorkspaceShare.id).where(
                WorkspaceShare.workspace_id == workspace_id,
                WorkspaceShare.shared_with_user_id == user_id,
                WorkspaceShare.status == "accepted",
            )
        )
        if accepted is None:
            raise NoAccess()

    rows = db.execute(
        select(WorkspaceShare, User, Permission)
        .join(User, WorkspaceShare.shared_with_user_id == User.id)
        .outerjoin(
            Permission,
            and_(
                Permission.user_id == User.id,
                Permission.resource_id == workspace_id,
                Permission.resource_type == ResourceType.WORKSPACE.value,
            ),
        )
        .where(WorkspaceShare.workspace_id == workspace_id)
        .order_by(User.username)
    ).all()

    return [
        {
            "share_id": share.id,
            "user_id": user.id,
            "username": user.username,
            "email": user.email,
            "status": share.status,
            "invited_by_user_id": share.invited_by_user_id,
            "permission": permission,
        }
        for share, user, permission in rows
    ]


def my_invitations(db: Session, user_id: str) -> list[dict]:
    """Pending invitations addressed to the user."""
    rows = db.execute(
        select(WorkspaceShare, Workspace, User)
        .join(Workspace, WorkspaceShare.workspace_id == Workspace.id)
        .join(User, WorkspaceShare.invited_by_user_id == User.id)
        .where(
            WorkspaceShare.shared_with_user_id == user_id,
            WorkspaceShare.status == "pending",
        )
        .order_by(WorkspaceShare.created_at)
    ).all()

    return [
        {
            "share_id": share.id,
            "workspace_id": workspace.id,
            "workspace_name": workspace.name,
            "invited_by_user_id": inviter.id,
            "invited_by_username": inviter.username,
            "status": share.status,
            "created_at": share.created_at,
        }
        for share, workspace, inviter in rows
    ]
