from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import fakeredis
import fakeredis.aioredis

from goaltrack.main import app
from goaltrack.clock import FixedClock
from goaltrack.db import Base, get_db
from goaltrack.deps import get_clock
from goaltrack.infra import redis_client
from goaltrack.infra.rate_limit import limiter
from goaltrack.models import Goal, Permission, Task, User, Workspace, WorkspaceShare
from goaltrack.security import create_access_token, get_password_hash
from goaltrack.services.tracking import TrackingEngine

# --- Test Database Setup ---

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool  # one shared in-memory connection for every session
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# Friday 2024-03-15 12:00 UTC
NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
PASSWORD = "secret123"


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def client(clock):
    """Test client with DB and clock overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    """Direct database session for setup."""
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def tracker(db_session, clock):
    return TrackingEngine(db_session, clock)


@pytest.fixture(autouse=True)
def mock_redis():
    server = fakeredis.FakeServer()
    # Force the fake client into the infra module
    redis_client._redis_async = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
    yield
    redis_client._redis_async = None


# --- Data helpers ---

@pytest.fixture(scope="session")
def password_hash():
    # bcrypt is slow; hash once per run
    return get_password_hash(PASSWORD)


@pytest.fixture
def make_user(db_session, password_hash):
    def _make(username: str, tz: str = "UTC") -> User:
        user = User(username=username, email=f"{username}@example.com", password_hash=password_hash, timezone=tz)
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def owner(make_user):
    return make_user("alice")


@pytest.fixture
def other(make_user):
    return make_user("bob")


@pytest.fixture
def workspace(db_session, owner):
    ws = Workspace(user_id=owner.id, name="Deep Work")
    db_session.add(ws)
    db_session.commit()
    return ws


@pytest.fixture
def goal(db_session, owner, workspace):
    g = Goal(user_id=owner.id, workspace_id=workspace.id, name="Ship v1")
    db_session.add(g)
    db_session.commit()
    return g


@pytest.fixture
def task(db_session, owner, goal):
    t = Task(user_id=owner.id, goal_id=goal.id, name="Write docs", time_budget=60)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture
def make_task(db_session, owner, goal):
    def _make(name: str, time_budget: int = 60, status: str = "pending", user: User = None, parent: Goal = None) -> Task:
        t = Task(
            user_id=(user or owner).id,
            goal_id=(parent or goal).id,
            name=name,
            time_budget=time_budget,
            status=status,
        )
        db_session.add(t)
        db_session.commit()
        return t
    return _make


@pytest.fixture
def grant(db_session):
    """Share a workspace with a user; flags, when given, become the workspace-level permission row."""
    def _grant(workspace: Workspace, user: User, status: str = "accepted", **flags) -> WorkspaceShare:
        share = WorkspaceShare(
            workspace_id=workspace.id,
            shared_with_user_id=user.id,
            invited_by_user_id=workspace.user_id,
            status=status,
        )
        db_session.add(share)
        if flags:
            db_session.add(Permission(user_id=user.id, resource_id=workspace.id, resource_type="workspace", **flags))
        db_session.commit()
        return share
    return _grant


@pytest.fixture
def permit(db_session):
    """Resource-specific permission row on a goal or task."""
    def _permit(user: User, resource, **flags) -> Permission:
        permission = Permission(
            user_id=user.id,
            resource_id=resource.id,
            resource_type=type(resource).__name__.lower(),
            **flags,
        )
        db_session.add(permission)
        db_session.commit()
        return permission
    return _permit


@pytest.fixture
def headers_for():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers
