"""Read-only tenant integrity checks (report-only, never remediates)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import aliased

from tenantguard.models import db
from tenantguard.models.auth import Tenant, User, UserRole
from tenantguard.models.project import Client, Project, Task
from tenantguard.models.workspace import Team, Workspace
from tenantguard.services.quarantine_resolver import QuarantineTenantResolver

SAMPLE_LIMIT = 5

BLOCKER = "blocker"
WARN = "warn"
INFO = "info"


def _issue(code: str, severity: str, description: str, count: int, sample_ids: list) -> dict[str, Any]:
    return {
        "code": code,
        "severity": severity,
        "description": description,
        "count": int(count),
        "sample_ids": list(sample_ids)[:SAMPLE_LIMIT],
    }


def _count_and_sample(id_column, *where, joins=()) -> tuple[int, list]:
    """Exact count plus up to SAMPLE_LIMIT ids for one predicate."""
    count_stmt = db.select(db.func.count(id_column))
    sample_stmt = db.select(id_column)
    for target, onclause in joins:
        count_stmt = count_stmt.join(target, onclause)
        sample_stmt = sample_stmt.join(target, onclause)
    count = db.session.execute(count_stmt.where(*where)).scalar() or 0
    if not count:
        return 0, []
    samples = db.session.execute(
        sample_stmt.where(*where).order_by(id_column).limit(SAMPLE_LIMIT)
    ).scalars().all()
    return count, samples


def _mismatch(child, child_fk, parent) -> tuple[int, list]:
    """Rows whose resolved tenant differs from the resolved tenant of their parent."""
    parent_alias = aliased(parent)
    return _count_and_sample(
        child.id,
        child.tenant_id.is_not(None),
        parent_alias.tenant_id.is_not(None),
        child.tenant_id != parent_alias.tenant_id,
        joins=((parent_alias, child_fk == parent_alias.id),),
    )


# ── Cross-tenant mismatches (blocker) ────────────────────────────────────────

def _cross_tenant_checks() -> list[dict]:
    checks = (
        ("TASK_PROJECT_TENANT_MISMATCH", Task, Task.project_id, Project,
         "Tasks whose tenant differs from their project's tenant"),
        ("PROJECT_CLIENT_TENANT_MISMATCH", Project, Project.client_id, Client,
         "Projects whose tenant differs from their client's tenant"),
        ("TEAM_WORKSPACE_TENANT_MISMATCH", Team, Team.workspace_id, Workspace,
         "Teams whose tenant differs from their workspace's tenant"),
        ("PROJECT_WORKSPACE_TENANT_MISMATCH", Project, Project.workspace_id, Workspace,
         "Projects whose tenant differs from their workspace's tenant"),
    )
    issues = []
    for code, child, fk, parent, description in checks:
        count, samples = _mismatch(child, fk, parent)
        if count:
            issues.append(_issue(code, BLOCKER, description, count, samples))
    return issues


# ── Missing attribution (warn) ───────────────────────────────────────────────

def _missing_checks() -> list[dict]:
    checks = (
        ("USERS_MISSING_TENANT", User.id,
         (User.tenant_id.is_(None), User.role != UserRole.SUPER_USER),
         "Non-super users without a tenant"),
        ("PROJECTS_MISSING_WORKSPACE", Project.id,
         (Project.workspace_id.is_(None),),
         "Projects without a workspace"),
        ("PROJECTS_MISSING_TENANT", Project.id,
         (Project.tenant_id.is_(None),),
         "Projects without a tenant"),
        ("TASKS_MISSING_TENANT", Task.id,
         (Task.tenant_id.is_(None),),
         "Tasks without a tenant"),
        ("TEAMS_MISSING_TENANT", Team.id,
         (Team.tenant_id.is_(None),),
         "Teams without a tenant"),
    )
    issues = []
    for code, id_column, where, description in checks:
        count, samples = _count_and_sample(id_column, *where)
        if count:
            issues.append(_issue(code, WARN, description, count, samples))
    return issues


# ── Primary workspace invariant (warn) ───────────────────────────────────────

def _primary_workspace_checks() -> list[dict]:
    issues = []

    multiple = db.session.execute(
        db.select(Workspace.tenant_id)
        .where(Workspace.is_primary.is_(True), Workspace.tenant_id.is_not(None))
        .group_by(Workspace.tenant_id)
        .having(db.func.count(Workspace.id) > 1)
        .order_by(Workspace.tenant_id)
    ).scalars().all()
    if multiple:
        issues.append(_issue(
            "MULTIPLE_PRIMARY_WORKSPACES", WARN,
            "Tenants with more than one primary workspace",
            len(multiple), multiple,
        ))

    has_primary = (
        db.select(Workspace.id)
        .where(Workspace.tenant_id == Tenant.id, Workspace.is_primary.is_(True))
        .exists()
    )
    count, samples = _count_and_sample(Tenant.id, ~has_primary)
    if count:
        issues.append(_issue(
            "TENANTS_WITHOUT_PRIMARY_WORKSPACE", WARN,
            "Tenants with no primary workspace", count, samples,
        ))
    return issues


# ── Quarantine backlog (info) ────────────────────────────────────────────────

def _quarantine_checks() -> list[dict]:
    quarantine_id = QuarantineTenantResolver().resolve_if_exists()
    if quarantine_id is None:
        return []

    total = 0
    samples: list[str] = []
    for table, model in (("project", Project), ("task", Task), ("team", Team), ("user", User)):
        count, ids = _count_and_sample(model.id, model.tenant_id == quarantine_id)
        total += count
        samples.extend(f"{table}:{row_id}" for row_id in ids)

    if not total:
        return []
    return [_issue(
        "QUARANTINE_ROWS_PENDING", INFO,
        "Rows held by the quarantine tenant awaiting an operator decision",
        total, samples,
    )]


def run_integrity_checks() -> dict[str, Any]:
    """
    Run the fixed battery of tenant integrity checks.

    Checks:
    - Cross-tenant mismatches (blocker)
    - Missing tenant / workspace attribution (warn)
    - Primary-workspace invariant (warn)
    - Quarantine backlog (info)

    Only issues with a non-zero count are reported; an empty list means a
    clean store. Totals are sums of issue counts.
    """
    issues = [
        *_cross_tenant_checks(),
        *_missing_checks(),
        *_primary_workspace_checks(),
        *_quarantine_checks(),
    ]

    def _total(severity: str | None = None) -> int:
        return sum(i["count"] for i in issues if severity is None or i["severity"] == severity)

    return {
        "issues": issues,
        "total_issues": _total(),
        "blocker_count": _total(BLOCKER),
        "warn_count": _total(WARN),
        "info_count": _total(INFO),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
