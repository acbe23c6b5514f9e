"""
Shared pytest fixtures for the Stageflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / admin / member / outsider: identity rows
    - space: Space owned by ``admin`` with ``member`` as a plain member
    - clock: frozen, steppable "now" for the task lifecycle
    - auth_headers: Bearer header factory for API tests
"""

from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest

from stageflow import create_app
from stageflow.models import db as _db
from stageflow.models.auth import Tenant, User
from stageflow.models.space import Space, SpaceMember
from stageflow.models.workflow import Group, GroupDependency
from stageflow.services import task_lifecycle

# Monday 2024-01-08 09:00 UTC — start of a working day
MONDAY_9AM = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        app.extensions["broadcast_hub"].shutdown()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity & space fixtures ────────────────────────────────────────────


def make_tenant(slug="acme"):
    t = Tenant(name=slug.title(), slug=slug)
    _db.session.add(t)
    _db.session.flush()
    return t


def make_user(tenant, email, full_name=None, is_active=True):
    u = User(tenant_id=tenant.id, email=email, full_name=full_name, is_active=is_active)
    _db.session.add(u)
    _db.session.flush()
    return u


def make_space(tenant, admin, name="Video Production", **kw):
    s = Space(
        tenant_id=tenant.id,
        name=name,
        admin_id=admin.id,
        working_hours_start=kw.pop("working_hours_start", "09:00"),
        working_hours_end=kw.pop("working_hours_end", "17:00"),
        working_days=kw.pop("working_days", [0, 1, 2, 3, 4]),
        timezone_name=kw.pop("timezone_name", "UTC"),
        **kw,
    )
    _db.session.add(s)
    _db.session.flush()
    _db.session.add(SpaceMember(space_id=s.id, user_id=admin.id, role="admin"))
    _db.session.flush()
    return s


def make_group(space, name, order, estimated_hours=8.0, **flags):
    g = Group(
        space_id=space.id, name=name, order=order, estimated_hours=estimated_hours, **flags,
    )
    _db.session.add(g)
    _db.session.flush()
    return g


def make_edge(group, depends_on, dependency_type="sequential"):
    edge = GroupDependency(
        group_id=group.id, depends_on_id=depends_on.id, dependency_type=dependency_type,
    )
    _db.session.add(edge)
    _db.session.flush()
    return edge


@pytest.fixture()
def tenant():
    return make_tenant()


@pytest.fixture()
def admin(tenant):
    return make_user(tenant, "ada@acme.test", "Ada Admin")


@pytest.fixture()
def member(tenant):
    return make_user(tenant, "max@acme.test", "Max Member")


@pytest.fixture()
def outsider():
    """User in another tenant."""
    other = make_tenant("globex")
    return make_user(other, "eve@globex.test", "Eve Outsider")


@pytest.fixture()
def space(tenant, admin, member):
    s = make_space(tenant, admin)
    _db.session.add(SpaceMember(space_id=s.id, user_id=member.id, role="member"))
    _db.session.commit()
    return s


# ── Time & auth helpers ──────────────────────────────────────────────────


class Clock:
    """Steppable replacement for task_lifecycle._utcnow."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)
        return self.now

    def set(self, value):
        self.now = value
        return value


@pytest.fixture()
def clock(monkeypatch):
    c = Clock(MONDAY_9AM)
    monkeypatch.setattr(task_lifecycle, "_utcnow", c)
    return c


def _token(app, user_id, **claims):
    payload = {"sub": str(user_id), "type": "access"}
    payload.update(claims)
    return pyjwt.encode(payload, app.config["JWT_SECRET_KEY"], algorithm="HS256")


@pytest.fixture()
def auth_headers(app):
    """Return a callable: auth_headers(user) → {"Authorization": "Bearer …"}."""

    def _headers(user, **claims):
        return {"Authorization": f"Bearer {_token(app, user.id, **claims)}"}

    return _headers


@pytest.fixture()
def token_for(app):
    def _make(user, **claims):
        return _token(app, user.id, **claims)

    return _make
