"""FastAPI dependencies for goaltrack.

Provides:
- Database session dependency
- Clock dependency (overridden in tests)
- Current user resolution from the bearer token
- Access-resolver gate for routes (`require_permission`)
"""

import uuid
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .clock import Clock, SystemClock
from .db import get_db
from .errors import Unauthenticated, ValidationError
from .models import User
from .security import decode_access_token
from .services import access
from .services.tracking import TrackingEngine

bearer_scheme = HTTPBearer(auto_error=False)

_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Resolve `Authorization: Bearer <token>` to a user.

    Raises:
        Unauthenticated (401) when the header is missing, the token is
        invalid/expired, or the user no longer exists.
    """
    if credentials is None:
        raise Unauthenticated("Not authorized, no token")

    user_id = decode_access_token(credentials.credentials)
    if not user_id:
        raise Unauthenticated("Not authorized, token failed")

    user = db.get(User, user_id)
    if user is None:
        raise Unauthenticated("Not authorized, user not found")
    return user


def get_tracking_engine(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> TrackingEngine:
    return TrackingEngine(db, clock)


def require_permission(resource_type: str, action: str, param: str = "id") -> Callable:
    """Route dependency: authorize the current user on the resource named by path param `param`."""

    def _checker(
        request: Request,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> User:
        resource_id = request.path_params.get(param)
        if not resource_id:
            raise ValidationError("Resource ID missing in request")
        try:
            uuid.UUID(resource_id)
        except ValueError:
            raise ValidationError(f"Invalid {resource_type} ID format")
        access.require(db, user.id, resource_type, resource_id, action)
        return user

    return _checker
