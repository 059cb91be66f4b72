"""Typed errors raised by the access resolver, tracking engine and sharing service.

Each error carries the HTTP status and public message the API renders; which
error applies is decided by the core, never by the routers.
"""

from typing import Any, Optional


class TrackerError(Exception):
    status_code = 400
    code = "error"
    message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    @property
    def public_code(self) -> str:
        return self.code

    def to_dict(self) -> dict:
        body = {"message": self.message, "code": self.public_code}
        body.update(self.extra)
        return body


class Unauthenticated(TrackerError):
    status_code = 401
    code = "unauthenticated"
    message = "Not authorized"


class ValidationError(TrackerError):
    status_code = 400
    code = "validation_error"
    message = "Invalid input"


# --- Access denials ---

class AccessDenied(TrackerError):
    status_code = 403
    code = "access_denied"
    message = "You do not have access to this resource"


class ResourceNotFound(AccessDenied):
    status_code = 404
    code = "resource_not_found"
    message = "Resource not found"


class NoAccess(AccessDenied):
    # Rendered exactly like ResourceNotFound so a stranger cannot probe for existence.
    status_code = 404
    code = "no_access"
    message = ResourceNotFound.message

    @property
    def public_code(self) -> str:
        return ResourceNotFound.code


class ShareNotAccepted(AccessDenied):
    code = "share_not_accepted"
    message = "Workspace invitation has not been accepted"


class NoPermissionDefined(AccessDenied):
    code = "no_permission_defined"
    message = "No permissions defined for this resource"


class InsufficientPermission(AccessDenied):
    code = "insufficient_permission"
    message = "You do not have permission to perform this action"


# --- Tracking ---

class AnotherTaskActive(TrackerError):
    code = "another_task_active"
    message = "Another task is already active. Please stop it before starting a new one."

    def __init__(self, task_id: str, task_name: str):
        self.task_id = task_id
        self.task_name = task_name
        super().__init__(activeTask={"taskId": task_id, "taskName": task_name})


class TrackingRecordNotFound(TrackerError):
    status_code = 404
    code = "tracking_record_not_found"
    message = "Tracking record not found"


class AlreadyStopped(TrackerError):
    code = "already_stopped"
    message = "Task tracking record is already stopped"


class InvalidTimeRange(TrackerError):
    code = "invalid_time_range"
    message = "Stop time cannot be before start time"


# --- Sharing ---

class AlreadyShared(TrackerError):
    code = "already_shared"
    message = "Workspace is already shared with this user"


class AlreadyResponded(TrackerError):
    code = "already_responded"
    message = "Invitation has already been responded to"
