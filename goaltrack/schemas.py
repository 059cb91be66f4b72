"""Pydantic schemas for goaltrack API.

Request/response models for:
- Auth / users
- Workspaces, goals, tasks (with progress)
- Tracking records and summaries
- Sharing and permissions

JSON keys are camelCase on the wire; attributes stay snake_case.
"""

from datetime import datetime
from typing import Optional, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class MessageOut(CamelModel):
    message: str


# --- Auth ---

class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=3, max_length=256)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=256)
    password: str = Field(..., min_length=6, max_length=72)


class LoginRequest(CamelModel):
    email: str
    password: str


class TimezoneUpdate(CamelModel):
    timezone: str = Field(..., min_length=1, max_length=256)


class UserOut(CamelModel):
    id: str
    username: str
    email: str
    timezone: str


class AuthResponse(CamelModel):
    message: str
    user: UserOut
    token: str


# --- Workspace ---

class WorkspaceCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=256)
    description: Optional[str] = None
    group_name: Optional[str] = Field(None, max_length=256)


class WorkspaceUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=256)
    description: Optional[str] = None
    group_name: Optional[str] = Field(None, max_length=256)


class WorkspaceOut(CamelModel):
    id: str
    user_id: str
    name: str
    description: Optional[str]
    group_name: Optional[str]
    created_at: datetime
    updated_at: datetime


class WorkspaceSummaryOut(WorkspaceOut):
    goal_count: int = 0
    task_count: int = 0
    total_progress: float = 0.0
    is_owner: bool = True


# --- Goal ---

GoalStatus = Literal["pending", "reached"]


class GoalCreate(CamelModel):
    workspace_id: str = Field(..., pattern=r"^[0-9a-fA-F-]{36}$")
    name: str = Field(..., min_length=1, max_length=256)
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    status: GoalStatus = "pending"


class GoalUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=256)
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    status: Optional[GoalStatus] = None


class GoalOut(CamelModel):
    id: str
    user_id: str
    workspace_id: str
    name: str
    description: Optional[str]
    deadline: Optional[datetime]
    status: str
    created_at: datetime
    updated_at: datetime


class GoalSummaryOut(GoalOut):
    task_count: int = 0
    total_progress: float = 0.0
    has_running_task: bool = False


class DailyBudgetOut(CamelModel):
    goal_id: str
    total_time_budget_minutes: int
    total_time_budget_hours: float
    warning: Optional[str] = None


# --- Task ---

TaskStatus = Literal["pending", "started", "failed", "done"]


class TaskCreate(CamelModel):
    goal_id: str = Field(..., pattern=r"^[0-9a-fA-F-]{36}$")
    name: str = Field(..., min_length=1, max_length=256)
    description: Optional[str] = None
    time_budget: int = Field(..., ge=0)  # minutes
    deadline: Optional[datetime] = None
    status: TaskStatus = "pending"
    priority: int = Field(1, ge=1, le=10)
    is_recurring: bool = False


class TaskUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=256)
    description: Optional[str] = None
    time_budget: Optional[int] = Field(None, ge=0)
    deadline: Optional[datetime] = None
    status: Optional[TaskStatus] = None
    priority: Optional[int] = Field(None, ge=1, le=10)
    is_recurring: Optional[bool] = None


class TrackingRecordOut(CamelModel):
    id: str
    task_id: str
    user_id: str
    start_time: datetime
    end_time: Optional[datetime]
    duration: Optional[int]  # seconds


class TaskOut(CamelModel):
    id: str
    user_id: str
    goal_id: str
    name: str
    description: Optional[str]
    time_budget: int
    deadline: Optional[datetime]
    status: str
    priority: int
    is_recurring: bool
    created_at: datetime
    updated_at: datetime


class TaskWithTrackingOut(TaskOut):
    active_tracking: Optional[TrackingRecordOut] = None


# --- Tracking ---

class StartTrackingRequest(CamelModel):
    start_time: Optional[datetime] = None


class StopTrackingRequest(CamelModel):
    stop_time: Optional[datetime] = None


class ManualRecordRequest(CamelModel):
    start_time: datetime
    stop_time: datetime
    duration: int = Field(..., ge=0)  # seconds


class TrackingResponse(CamelModel):
    message: str
    record: TrackingRecordOut


class TaskSummaryOut(CamelModel):
    task_name: str
    total_duration_seconds: int
    period: Optional[datetime] = None


# --- Sharing ---

ResourceKind = Literal["workspace", "goal", "task"]


class ShareRequest(CamelModel):
    identifier: str = Field(..., min_length=1)
    can_list: bool = True
    can_edit: bool = False
    can_delete: bool = False


class RespondRequest(CamelModel):
    response: Literal["accept", "decline"]


class PermissionUpdate(CamelModel):
    # Defaults to the workspace in the path
    resource_id: Optional[str] = Field(None, pattern=r"^[0-9a-fA-F-]{36}$")
    resource_type: ResourceKind = "workspace"
    can_list: bool = True
    can_edit: bool = False
    can_delete: bool = False
    can_add_task: bool = False
    can_submit_record: bool = False


class ShareOut(CamelModel):
    id: str
    workspace_id: str
    shared_with_user_id: str
    invited_by_user_id: str
    status: str
    created_at: datetime


class PermissionOut(CamelModel):
    id: str
    user_id: str
    resource_id: str
    resource_type: str
    can_list: bool
    can_edit: bool
    can_delete: bool
    can_add_task: bool
    can_submit_record: bool


class ShareResponse(CamelModel):
    message: str
    share: ShareOut
    permission: Optional[PermissionOut] = None


class PermissionResponse(CamelModel):
    message: str
    permission: PermissionOut


class SharedUserOut(CamelModel):
    share_id: str
    user_id: str
    username: str
    email: str
    status: str
    invited_by_user_id: str
    permission: Optional[PermissionOut] = None


class InvitationOut(CamelModel):
    share_id: str
    workspace_id: str
    workspace_name: str
    invited_by_user_id: str
    invited_by_username: str
    status: str
    created_at: datetime
