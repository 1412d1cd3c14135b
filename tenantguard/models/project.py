"""
Project Models — clients, projects, sections, tasks.

Clients are trusted ground truth for ownership and are never remediated
by the reconciliation pass. Projects and tasks are, and only their
``tenant_id`` (plus ``status`` on quarantine) is ever written by it.
"""

from datetime import datetime, timezone

from tenantguard.models import db


class ProjectStatus:
    ACTIVE = "active"
    ARCHIVED = "archived"


class TaskStatus:
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ARCHIVED = "archived"


class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True,
    )
    company_name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id"), nullable=True, index=True,
    )
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True,
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ProjectStatus.ACTIVE)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "workspace_id": self.workspace_id,
            "client_id": self.client_id,
            "created_by": self.created_by,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Section(db.Model):
    """Board column inside a project. Owned by a tenant through its project."""

    __tablename__ = "sections"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)


class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id"), nullable=True, index=True,
    )
    section_id = db.Column(
        db.Integer, db.ForeignKey("sections.id", ondelete="SET NULL"), nullable=True,
    )
    parent_task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id"), nullable=True, index=True,
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TaskStatus.TODO)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "project_id": self.project_id,
            "section_id": self.section_id,
            "parent_task_id": self.parent_task_id,
            "created_by": self.created_by,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
