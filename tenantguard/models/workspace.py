"""
Workspace Models — workspaces, workspace members, teams.

Workspaces are the most reliable ownership signal: a project or team that
points at a tenant-resolved workspace inherits that workspace's tenant.
Exactly one workspace per tenant should be primary; the integrity checker
reports violations but nothing here enforces it.
"""

from datetime import datetime, timezone

from tenantguard.models import db


class Workspace(db.Model):
    __tablename__ = "workspaces"
    __table_args__ = (
        db.Index("ix_workspaces_tenant_primary", "tenant_id", "is_primary"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<Workspace {self.id}: {self.name}>"


class WorkspaceMember(db.Model):
    __tablename__ = "workspace_members"
    __table_args__ = (
        db.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))


class Team(db.Model):
    __tablename__ = "teams"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id"), nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "workspace_id": self.workspace_id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
