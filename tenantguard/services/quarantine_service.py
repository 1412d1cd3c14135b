"""
Quarantine Manager — operator dispositions for rows held by the quarantine tenant.

Every operation is scoped to rows whose ``tenant_id`` currently equals the
quarantine tenant's id. Mutations re-check that predicate in the UPDATE or
DELETE itself, so a row reassigned by another operator in the meantime is
reported as not found instead of being overwritten.

Each successful mutation appends exactly one audit event in the same
transaction; a failure rolls back and records nothing.

    summary()                            counts per table
    list_rows(table, page, limit, q)     paginated rows + total
    assign(table, row_id, assign_to)     move to a real tenant
    archive(table, row_id)               users only: deactivate
    delete(table, row_id)                permanent, dependency-checked
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from tenantguard.core.exceptions import ConflictError, NotFoundError, ValidationError
from tenantguard.models import db
from tenantguard.models.audit import AuditEvent, write_audit
from tenantguard.models.auth import Tenant, User
from tenantguard.models.project import Client, Project, Section, Task
from tenantguard.models.workspace import Team, Workspace, WorkspaceMember
from tenantguard.services.quarantine_resolver import QuarantineTenantResolver

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class QuarantineTable:
    key: str
    label: str
    model: Any
    search_columns: tuple
    # assignTo field → (column it sets, model the id must belong to the tenant through)
    secondary: dict


QUARANTINE_TABLES: dict[str, QuarantineTable] = {
    "project": QuarantineTable(
        key="project", label="Project", model=Project,
        search_columns=(Project.name,),
        secondary={"workspaceId": "workspace_id", "clientId": "client_id"},
    ),
    "task": QuarantineTable(
        key="task", label="Task", model=Task,
        search_columns=(Task.title,),
        secondary={"projectId": "project_id", "sectionId": "section_id"},
    ),
    "team": QuarantineTable(
        key="team", label="Team", model=Team,
        search_columns=(Team.name,),
        secondary={"workspaceId": "workspace_id"},
    ),
    "user": QuarantineTable(
        key="user", label="User", model=User,
        search_columns=(User.email, User.name),
        secondary={},
    ),
}

SECONDARY_FIELDS = ("workspaceId", "projectId", "clientId", "sectionId")


def normalize_table(raw: Any) -> QuarantineTable:
    """Accept ``project`` or ``projects`` (any case).

    A missing or non-string table is a malformed request; a well-formed name
    that is not a quarantinable table does not exist.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("table is required", details={"table": "required"})
    key = raw.strip().lower()
    if key.endswith("s") and key[:-1] in QUARANTINE_TABLES:
        key = key[:-1]
    table = QUARANTINE_TABLES.get(key)
    if table is None:
        raise NotFoundError(
            resource="Table",
            resource_id=raw,
            detail=f"(must be one of: {', '.join(QUARANTINE_TABLES)})",
        )
    return table


def parse_row_id(raw: Any, field: str = "id") -> int:
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be an integer", details={field: raw})
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: raw}) from None
    if value < 1:
        raise ValidationError(f"{field} must be positive", details={field: raw})
    return value


def _require_quarantine_tenant() -> int:
    tenant_id = QuarantineTenantResolver().resolve_if_exists()
    if tenant_id is None:
        raise NotFoundError(resource="Quarantine tenant", detail="(run a backfill to create one)")
    return tenant_id


def _quarantined_row(table: QuarantineTable, row_id: int, quarantine_id: int):
    model = table.model
    row = db.session.execute(
        db.select(model).where(model.id == row_id, model.tenant_id == quarantine_id)
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError(resource=table.label, resource_id=row_id, detail="in quarantine")
    return row


# ═════════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════════

def summary() -> dict:
    """Per-table counts under the quarantine tenant. Never creates it."""
    quarantine_id = QuarantineTenantResolver().resolve_if_exists()
    counts = {f"{key}s": 0 for key in QUARANTINE_TABLES}
    if quarantine_id is None:
        return {
            "has_quarantine_tenant": False,
            "quarantine_tenant_id": None,
            "counts": counts,
            "message": "No quarantine tenant exists. Run a backfill to create one if needed.",
        }

    for key, table in QUARANTINE_TABLES.items():
        model = table.model
        counts[f"{key}s"] = db.session.execute(
            db.select(db.func.count(model.id)).where(model.tenant_id == quarantine_id)
        ).scalar() or 0

    return {
        "has_quarantine_tenant": True,
        "quarantine_tenant_id": quarantine_id,
        "counts": counts,
    }


def list_rows(table_name: Any, *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE, q: str | None = None) -> dict:
    """Paginated quarantined rows, newest first; *q* matches text columns or the literal id."""
    table = normalize_table(table_name)
    page = max(1, page)
    limit = min(MAX_PAGE_SIZE, max(1, limit))

    quarantine_id = QuarantineTenantResolver().resolve_if_exists()
    if quarantine_id is None:
        return {"rows": [], "total": 0, "page": page, "limit": limit, "table": table.key}

    model = table.model
    where = [model.tenant_id == quarantine_id]
    search = (q or "").strip()
    if search:
        clauses = [col.ilike(f"%{search}%") for col in table.search_columns]
        if search.isdigit():
            clauses.append(model.id == int(search))
        where.append(db.or_(*clauses))

    total = db.session.execute(
        db.select(db.func.count(model.id)).where(*where)
    ).scalar() or 0
    rows = db.session.execute(
        db.select(model)
        .where(*where)
        .order_by(model.created_at.desc(), model.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()

    return {
        "rows": [row.to_dict() for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "table": table.key,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Assign
# ═════════════════════════════════════════════════════════════════════════════

def _validate_secondary(field: str, value: int, tenant_id: int) -> None:
    """Reject a secondary id that does not belong to the target tenant."""
    if field == "workspaceId":
        owner = db.session.execute(
            db.select(Workspace.tenant_id).where(Workspace.id == value)
        ).scalar_one_or_none()
    elif field == "clientId":
        owner = db.session.execute(
            db.select(Client.tenant_id).where(Client.id == value)
        ).scalar_one_or_none()
    elif field == "projectId":
        owner = db.session.execute(
            db.select(Project.tenant_id).where(Project.id == value)
        ).scalar_one_or_none()
    else:  # sectionId: owned through its project
        owner = db.session.execute(
            db.select(Project.tenant_id)
            .join(Section, Section.project_id == Project.id)
            .where(Section.id == value)
        ).scalar_one_or_none()

    if owner != tenant_id:
        raise ValidationError(
            f"{field} {value} not found or does not belong to tenant {tenant_id}",
            details={field: value, "tenantId": tenant_id},
        )


def assign(table_name: Any, row_id: Any, assign_to: Any, *, actor_user_id: int | None = None) -> dict:
    """Move a quarantined row to a real tenant (plus optional secondary keys)."""
    table = normalize_table(table_name)
    row_id = parse_row_id(row_id)
    if not isinstance(assign_to, dict):
        raise ValidationError("assignTo must be an object", details={"assignTo": "required"})
    target_tenant_id = parse_row_id(assign_to.get("tenantId"), "assignTo.tenantId")

    secondary: dict[str, int] = {}
    for field in SECONDARY_FIELDS:
        if assign_to.get(field) is None:
            continue
        if field not in table.secondary:
            raise ValidationError(
                f"{field} cannot be assigned on table {table.key}",
                details={field: "not applicable"},
            )
        secondary[field] = parse_row_id(assign_to[field], f"assignTo.{field}")

    quarantine_id = _require_quarantine_tenant()
    if target_tenant_id == quarantine_id:
        raise ValidationError("Target tenant is the quarantine tenant", details={"tenantId": target_tenant_id})

    target = db.session.get(Tenant, target_tenant_id)
    if target is None:
        raise NotFoundError(resource="Tenant", resource_id=target_tenant_id)

    for field, value in secondary.items():
        _validate_secondary(field, value, target_tenant_id)

    if "sectionId" in secondary and "projectId" in secondary:
        section_project = db.session.execute(
            db.select(Section.project_id).where(Section.id == secondary["sectionId"])
        ).scalar_one()
        if section_project != secondary["projectId"]:
            raise ValidationError(
                "sectionId does not belong to projectId",
                details={"sectionId": secondary["sectionId"], "projectId": secondary["projectId"]},
            )

    model = table.model
    values = {"tenant_id": target_tenant_id}
    values.update({table.secondary[f]: v for f, v in secondary.items()})

    try:
        result = db.session.execute(
            db.update(model)
            .where(model.id == row_id, model.tenant_id == quarantine_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise NotFoundError(resource=table.label, resource_id=row_id, detail="in quarantine")

        write_audit(
            tenant_id=target_tenant_id,
            event_type="quarantine_assigned",
            message=f"Assigned {table.key} #{row_id} from quarantine to tenant {target.name}",
            actor_user_id=actor_user_id,
            metadata={
                "table": table.key,
                "row_id": row_id,
                "previous_tenant_id": quarantine_id,
                "new_tenant_id": target_tenant_id,
                "assigned": dict(secondary),
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Assigned quarantined %s #%d to tenant #%d", table.key, row_id, target_tenant_id,
        extra={"table": table.key, "row_id": row_id, "tenant_id": target_tenant_id,
               "actor_user_id": actor_user_id, "event_type": "quarantine_assigned"},
    )
    return {"success": True, "assigned": True, "table": table.key, "id": row_id, "tenant_id": target_tenant_id}


# ═════════════════════════════════════════════════════════════════════════════
# Archive / Delete
# ═════════════════════════════════════════════════════════════════════════════

def archive(table_name: Any, row_id: Any, *, actor_user_id: int | None = None) -> dict:
    """Deactivate a quarantined user. Other tables answer with a non-error refusal."""
    table = normalize_table(table_name)
    row_id = parse_row_id(row_id)
    quarantine_id = _require_quarantine_tenant()

    if table.key != "user":
        return {
            "success": False,
            "archived": False,
            "message": (
                f"Archive not supported for {table.key}. Use 'assign' to move it to a "
                f"proper tenant or 'delete' with the required confirmation."
            ),
        }

    model = table.model
    try:
        result = db.session.execute(
            db.update(model)
            .where(model.id == row_id, model.tenant_id == quarantine_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise NotFoundError(resource=table.label, resource_id=row_id, detail="in quarantine")
        write_audit(
            tenant_id=quarantine_id,
            event_type="quarantine_archived",
            message=f"Archived user #{row_id} in quarantine",
            actor_user_id=actor_user_id,
            metadata={"table": table.key, "row_id": row_id},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Archived quarantined user #%d", row_id,
        extra={"table": table.key, "row_id": row_id, "actor_user_id": actor_user_id,
               "event_type": "quarantine_archived"},
    )
    return {"success": True, "archived": True, "message": "User deactivated"}


def _blocking_dependents(table: QuarantineTable, row_id: int) -> dict[str, int]:
    def _count(model, *where) -> int:
        return db.session.execute(db.select(db.func.count(model.id)).where(*where)).scalar() or 0

    if table.key == "project":
        deps = {
            "tasks": _count(Task, Task.project_id == row_id),
            "sections": _count(Section, Section.project_id == row_id),
        }
    elif table.key == "task":
        deps = {"subtasks": _count(Task, Task.parent_task_id == row_id)}
    elif table.key == "user":
        # Rows whose user FK would cascade or be nulled by the delete
        deps = {
            "workspace_memberships": _count(WorkspaceMember, WorkspaceMember.user_id == row_id),
            "projects": _count(Project, Project.created_by == row_id),
            "tasks": _count(Task, Task.created_by == row_id),
            "audit_events": _count(AuditEvent, AuditEvent.actor_user_id == row_id),
        }
    else:
        deps = {}
    return {k: v for k, v in deps.items() if v}


def delete(table_name: Any, row_id: Any, *, actor_user_id: int | None = None) -> dict:
    """Permanently delete one quarantined row. Never cascades."""
    table = normalize_table(table_name)
    row_id = parse_row_id(row_id)
    quarantine_id = _require_quarantine_tenant()
    _quarantined_row(table, row_id, quarantine_id)

    blocking = _blocking_dependents(table, row_id)
    if blocking:
        raise ConflictError(
            resource=table.label,
            resource_id=row_id,
            reason="has dependent " + ", ".join(blocking),
            details=blocking,
        )

    model = table.model
    try:
        result = db.session.execute(
            db.delete(model)
            .where(model.id == row_id, model.tenant_id == quarantine_id)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise NotFoundError(resource=table.label, resource_id=row_id, detail="in quarantine")
        write_audit(
            tenant_id=quarantine_id,
            event_type="quarantine_deleted",
            message=f"Permanently deleted {table.key} #{row_id} from quarantine",
            actor_user_id=actor_user_id,
            metadata={"table": table.key, "row_id": row_id},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.warning(
        "Deleted quarantined %s #%d", table.key, row_id,
        extra={"table": table.key, "row_id": row_id, "actor_user_id": actor_user_id,
               "event_type": "quarantine_deleted"},
    )
    return {"success": True, "deleted": True}
