from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user, get_tracking_engine
from ..models import User
from ..schemas import (
    InvitationOut,
    MessageOut,
    PermissionOut,
    PermissionResponse,
    PermissionUpdate,
    RespondRequest,
    ShareOut,
    ShareRequest,
    ShareResponse,
    SharedUserOut,
)
from ..services import sharing
from ..services.access import ResourceRef, ResourceType
from ..services.tracking import TrackingEngine

router = APIRouter(prefix="/workspaces", tags=["sharing"])


@router.get("/my-invitations", response_model=List[InvitationOut])
def my_invitations(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return [InvitationOut.model_validate(row) for row in sharing.my_invitations(db, user.id)]


@router.post("/{id}/share", response_model=ShareResponse, status_code=201)
def share_workspace(
    id: str,
    data: ShareRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Invite a user by username or email; only the owner may share."""
    share, permission = sharing.share_workspace(
        db,
        user.id,
        id,
        data.identifier,
        can_list=data.can_list,
        can_edit=data.can_edit,
        can_delete=data.can_delete,
    )
    return ShareResponse(
        message="Workspace shared successfully",
        share=ShareOut.model_validate(share),
        permission=PermissionOut.model_validate(permission),
    )


@router.post("/{id}/share/{shareId}/respond", response_model=ShareResponse)
def respond_to_invitation(
    id: str,
    shareId: str,
    data: RespondRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    share = sharing.respond_to_invitation(db, user.id, id, shareId, data.response)
    return ShareResponse(
        message=f"Invitation {share.status}",
        share=ShareOut.model_validate(share),
    )


@router.put("/{workspaceId}/permissions/{userId}", response_model=PermissionResponse)
def update_permissions(
    workspaceId: str,
    userId: str,
    data: PermissionUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    """Set a collaborator's flags on the workspace itself or on one goal/task inside it."""
    ref = ResourceRef(ResourceType(data.resource_type), data.resource_id or workspaceId)
    permission = sharing.update_permissions(
        db,
        user.id,
        workspaceId,
        userId,
        ref,
        can_list=data.can_list,
        can_edit=data.can_edit,
        can_delete=data.can_delete,
        can_add_task=data.can_add_task,
        can_submit_record=data.can_submit_record,
        engine=engine,
    )
    return PermissionResponse(
        message="Permissions updated successfully",
        permission=PermissionOut.model_validate(permission),
    )


@router.delete("/{workspaceId}/share/{userId}", response_model=MessageOut)
def revoke_access(
    workspaceId: str,
    userId: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    engine: TrackingEngine = Depends(get_tracking_engine),
):
    sharing.revoke_access(db, user.id, workspaceId, userId, engine=engine)
    return MessageOut(message="Access revoked successfully")


@router.get("/{id}/shared-users", response_model=List[SharedUserOut])
def shared_users(
    id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    out = []
    for row in sharing.shared_users(db, user.id, id):
        permission = row.pop("permission")
        item = SharedUserOut(**row)
        if permission is not None:
            item.permission = PermissionOut.model_validate(permission)
        out.append(item)
    return out
