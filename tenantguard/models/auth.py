"""
Auth Models — tenants, users, invitations.

Tenant ownership is the subject of the whole engine: ``users.tenant_id``
is nullable until reconciliation attributes the row, and the reserved
quarantine tenant is located by slug, never by id.
"""

from datetime import datetime, timezone

from tenantguard.models import db


class TenantStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"


class UserRole:
    SUPER_USER = "super_user"
    TENANT_ADMIN = "tenant_admin"
    EMPLOYEE = "employee"
    CLIENT = "client"


class InvitationStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TenantStatus.ACTIVE)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Tenant {self.id}: {self.slug}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True,
    )
    email = db.Column(db.String(200), nullable=False, index=True)
    name = db.Column(db.String(200))
    role = db.Column(db.String(30), nullable=False, default=UserRole.EMPLOYEE)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def is_super_user(self) -> bool:
        return self.role == UserRole.SUPER_USER

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 3. INVITATIONS
# ═══════════════════════════════════════════════════════════════
class Invitation(db.Model):
    """Email invitation into a tenant; pending rows are an ownership signal."""

    __tablename__ = "invitations"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="SET NULL"), nullable=True,
    )
    email = db.Column(db.String(200), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=InvitationStatus.PENDING)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
