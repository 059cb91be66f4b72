import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..clock import is_valid_timezone
from ..db import get_db
from ..deps import get_current_user
from ..errors import ValidationError
from ..infra.rate_limit import limiter
from ..models import User
from ..schemas import AuthResponse, LoginRequest, RegisterRequest, TimezoneUpdate, UserOut
from ..security import create_access_token, get_password_hash, verify_password
from ..settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("goaltrack.auth")


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account and return a bearer token."""
    existing = db.scalar(
        select(User).where(or_(User.email == data.email, User.username == data.username))
    )
    if existing:
        field = "email" if existing.email == data.email else "username"
        raise ValidationError(f"User with this {field} already exists")

    user = User(
        username=data.username,
        email=data.email,
        password_hash=get_password_hash(data.password),
        timezone=settings.default_timezone,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Registered user {user.id}")

    return AuthResponse(
        message="User registered successfully",
        user=UserOut.model_validate(user),
        token=create_access_token(user.id),
    )


@router.post("/login", response_model=AuthResponse)
@limiter.limit(settings.login_rate_limit)
def login(request: Request, data: LoginRequest, db: Session = Depends(get_db)):
    user = db.scalar(select(User).where(User.email == data.email))
    if not user or not verify_password(data.password, user.password_hash):
        raise ValidationError("Invalid credentials")

    return AuthResponse(
        message="Logged in successfully",
        user=UserOut.model_validate(user),
        token=create_access_token(user.id),
    )


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


@router.put("/timezone", response_model=UserOut)
def update_timezone(
    data: TimezoneUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Set the IANA timezone used for the user's day/month/year buckets."""
    if not is_valid_timezone(data.timezone):
        raise ValidationError(f"Unknown timezone '{data.timezone}'")
    user.timezone = data.timezone
    db.commit()
    db.refresh(user)
    return user
