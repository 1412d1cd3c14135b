"""
Shared pytest fixtures for the tenant reconciliation test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - seed: Row factory for tenants, workspaces, projects, tasks, ...
    - super_operator / auth_headers: Authenticated platform operator
    - safety_flags: Toggle safety-gate flags for one test
"""

import itertools

import pytest

from tenantguard import create_app
from tenantguard.models import db as _db
from tenantguard.models.auth import Invitation, InvitationStatus, Tenant, TenantStatus, User, UserRole
from tenantguard.models.project import Client, Project, Section, Task
from tenantguard.models.workspace import Team, Workspace, WorkspaceMember
from tenantguard.services.jwt_service import generate_access_token
from tenantguard.services.safety_gate import SAFETY_FLAGS


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Row factory ──────────────────────────────────────────────────────────


class Seed:
    """Creates committed rows with sensible defaults; tests override fields."""

    def __init__(self):
        self._seq = itertools.count(1)

    def _add(self, obj):
        _db.session.add(obj)
        _db.session.commit()
        return obj

    def tenant(self, name=None, status=TenantStatus.ACTIVE, **kw):
        n = next(self._seq)
        return self._add(Tenant(name=name or f"Tenant {n}", slug=kw.pop("slug", f"tenant-{n}"), status=status, **kw))

    def workspace(self, tenant=None, is_primary=False, **kw):
        n = next(self._seq)
        return self._add(Workspace(
            tenant_id=tenant.id if tenant else None,
            name=kw.pop("name", f"Workspace {n}"),
            is_primary=is_primary,
            **kw,
        ))

    def client_row(self, tenant=None, **kw):
        n = next(self._seq)
        return self._add(Client(tenant_id=tenant.id if tenant else None, company_name=kw.pop("company_name", f"Client {n}"), **kw))

    def user(self, tenant=None, role=UserRole.EMPLOYEE, **kw):
        n = next(self._seq)
        return self._add(User(
            tenant_id=tenant.id if tenant else None,
            email=kw.pop("email", f"user{n}@example.test"),
            name=kw.pop("name", f"User {n}"),
            role=role,
            **kw,
        ))

    def member(self, workspace, user):
        return self._add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id))

    def invitation(self, tenant, email, status=InvitationStatus.PENDING):
        return self._add(Invitation(tenant_id=tenant.id, email=email, status=status))

    def project(self, tenant=None, workspace=None, client=None, creator=None, **kw):
        n = next(self._seq)
        return self._add(Project(
            tenant_id=tenant.id if tenant else None,
            workspace_id=workspace.id if workspace else None,
            client_id=client.id if client else None,
            created_by=creator.id if creator else None,
            name=kw.pop("name", f"Project {n}"),
            **kw,
        ))

    def section(self, project, **kw):
        n = next(self._seq)
        return self._add(Section(project_id=project.id, name=kw.pop("name", f"Section {n}"), **kw))

    def task(self, tenant=None, project=None, creator=None, parent=None, **kw):
        n = next(self._seq)
        return self._add(Task(
            tenant_id=tenant.id if tenant else None,
            project_id=project.id if project else None,
            created_by=creator.id if creator else None,
            parent_task_id=parent.id if parent else None,
            title=kw.pop("title", f"Task {n}"),
            **kw,
        ))

    def team(self, tenant=None, workspace=None, **kw):
        n = next(self._seq)
        return self._add(Team(
            tenant_id=tenant.id if tenant else None,
            workspace_id=workspace.id if workspace else None,
            name=kw.pop("name", f"Team {n}"),
            **kw,
        ))


@pytest.fixture()
def seed():
    return Seed()


# ── Auth & safety fixtures ───────────────────────────────────────────────


@pytest.fixture()
def super_operator(seed):
    """Active platform operator; exempt from tenant attribution."""
    return seed.user(email="ops@platform.test", name="Platform Ops", role=UserRole.SUPER_USER)


@pytest.fixture()
def auth_headers(super_operator):
    token = generate_access_token(super_operator.id, [UserRole.SUPER_USER])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def safety_flags(app):
    """Enable flags for one test: ``safety_flags(BACKFILL_TENANT_IDS_ALLOWED=True)``."""
    original = {name: app.config.get(name, False) for name in SAFETY_FLAGS}

    def _set(**flags):
        app.config.update(flags)

    yield _set
    app.config.update(original)
