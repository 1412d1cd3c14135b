"""
Audit domain model.

Models:
    - AuditEvent: immutable, append-only trail of every mutating action
      taken by the reconciliation engine and the quarantine manager.
"""

from datetime import UTC, datetime

from tenantguard.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_EVENT_TYPES = {
    # Reconciliation pass
    "tenantid_backfill_applied",
    # Quarantine dispositions
    "quarantine_assigned",
    "quarantine_archived",
    "quarantine_deleted",
}


class AuditEvent(db.Model):
    """
    Immutable audit trail scoped to a tenant.

    One row per successful mutating action. Rows are never updated or
    deleted. ``tenant_id`` is null only for platform-level events that
    touched no single tenant (an apply pass that never needed quarantine).
    """

    __tablename__ = "tenant_audit_events"
    __table_args__ = (
        db.Index("idx_audit_event_type", "event_type"),
        db.Index("idx_audit_event_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="FK to users table (nullable for system/CLI entries)",
    )
    event_type = db.Column(db.String(60), nullable=False)
    message = db.Column(db.Text, nullable=False, default="")
    # "metadata" is reserved on declarative classes
    event_metadata = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "actor_user_id": self.actor_user_id,
            "event_type": self.event_type,
            "message": self.message,
            "metadata": self.event_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditEvent {self.id}: {self.event_type} tenant={self.tenant_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    tenant_id: int | None,
    event_type: str,
    message: str,
    actor_user_id: int | None = None,
    metadata: dict | None = None,
) -> AuditEvent:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control: the event commits together with the mutation it
    describes, or not at all.

    Returns the (flushed) AuditEvent instance.
    """
    if event_type not in AUDIT_EVENT_TYPES:
        raise ValueError(f"Unknown audit event type: {event_type}")

    event = AuditEvent(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        event_type=event_type,
        message=message,
        event_metadata=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
    return event
