"""
Reconciliation Pass — attributes every tenant-scoped row to one tenant.

Entity types are processed in the fixed dependency order

    project → task → team → user

so that a task sees its project's freshly inferred tenant and a user's
"projects I created" signal sees resolved data. Each row with a null
``tenant_id`` is either inferred (see ``ownership_inference``) or sent to
the quarantine tenant.

Modes:
    scan   — no writes; the quarantine tenant is never created and a
             placeholder id stands in for it.
    apply  — one conditional UPDATE per row (``... AND tenant_id IS NULL``),
             committed individually so a pass can stop at any row boundary.
             The quarantine tenant is created on the first unresolvable row.

Both modes share the same in-pass overlay, so their counts agree for a
static snapshot. A second apply over unchanged data selects nothing and
writes nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from tenantguard.core.exceptions import ValidationError
from tenantguard.models import db
from tenantguard.models.audit import write_audit
from tenantguard.models.auth import User, UserRole
from tenantguard.models.project import Client, Project, ProjectStatus, Task, TaskStatus
from tenantguard.models.workspace import Team
from tenantguard.services.ownership_inference import (
    Inference,
    OwnershipLookups,
    infer_project_tenant,
    infer_task_tenant,
    infer_team_tenant,
    infer_user_tenant,
)
from tenantguard.services.quarantine_resolver import (
    DRY_RUN_QUARANTINE_PLACEHOLDER,
    QuarantineTenantResolver,
)

logger = logging.getLogger(__name__)

SCAN = "scan"
APPLY = "apply"
MODES = (SCAN, APPLY)

# HTTP spelling of scan mode
MODE_ALIASES = {"dry_run": SCAN, "scan": SCAN, "apply": APPLY}

SAMPLE_AMBIGUOUS_LIMIT = 50
ERROR_SAMPLE_LIMIT = 10


def normalize_mode(raw: str | None) -> str:
    mode = MODE_ALIASES.get((raw or "").strip().lower())
    if mode is None:
        raise ValidationError(
            "mode must be 'dry_run' or 'apply'",
            details={"mode": raw},
        )
    return mode


# ── Report ───────────────────────────────────────────────────────────────────

@dataclass
class TypeReport:
    total_missing: int = 0
    inferred_count: int = 0
    quarantined_count: int = 0
    already_resolved_count: int = 0
    sample_ambiguous_ids: list[int] = field(default_factory=list)
    writes: int = 0
    skipped: int = 0
    errors: int = 0
    error_samples: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_missing": self.total_missing,
            "inferred_count": self.inferred_count,
            "quarantined_count": self.quarantined_count,
            "already_resolved_count": self.already_resolved_count,
            "sample_ambiguous_ids": list(self.sample_ambiguous_ids),
            "writes": self.writes,
            "skipped": self.skipped,
            "errors": self.errors,
            "error_samples": list(self.error_samples),
        }


# ── Per-type wiring ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EntityPlan:
    """How one entity type is selected, inferred and quarantined."""

    key: str
    model: Any
    columns: tuple[str, ...]
    infer: Callable[[Any, OwnershipLookups], Inference]
    quarantine_values: dict = field(default_factory=dict)
    exempt: Any = None  # extra WHERE clause limiting the rows considered

    def scope(self, stmt):
        if self.exempt is not None:
            stmt = stmt.where(self.exempt)
        return stmt


ENTITY_PLANS: tuple[EntityPlan, ...] = (
    EntityPlan(
        key="project",
        model=Project,
        columns=("id", "workspace_id", "client_id", "created_by"),
        infer=infer_project_tenant,
        quarantine_values={"status": ProjectStatus.ARCHIVED},
    ),
    EntityPlan(
        key="task",
        model=Task,
        columns=("id", "project_id", "created_by"),
        infer=infer_task_tenant,
        quarantine_values={"status": TaskStatus.ARCHIVED},
    ),
    EntityPlan(
        key="team",
        model=Team,
        columns=("id", "workspace_id"),
        infer=infer_team_tenant,
    ),
    EntityPlan(
        key="user",
        model=User,
        columns=("id", "email"),
        infer=infer_user_tenant,
        quarantine_values={"is_active": False},
        exempt=User.role != UserRole.SUPER_USER,
    ),
)

ENTITY_ORDER = tuple(plan.key for plan in ENTITY_PLANS)


# ═════════════════════════════════════════════════════════════════════════════
# Pass
# ═════════════════════════════════════════════════════════════════════════════

class ReconciliationPass:
    """One invocation of the reconciliation engine.

    Owns its lookup cache and quarantine resolver; build a new instance per
    run. Safety gating is the caller's job (blueprint or CLI).
    """

    def __init__(self, mode: str, *, actor_user_id: int | None = None) -> None:
        if mode not in MODES:
            raise ValidationError(f"Unknown reconciliation mode: {mode}")
        self.mode = mode
        self.actor_user_id = actor_user_id
        self.lookups = OwnershipLookups()
        self.resolver = QuarantineTenantResolver()
        self.reports: dict[str, TypeReport] = {}

    @property
    def is_apply(self) -> bool:
        return self.mode == APPLY

    def run(self) -> dict:
        started_at = datetime.now(timezone.utc)
        logger.info("Reconciliation pass started", extra={"mode": self.mode, "actor_user_id": self.actor_user_id})

        for plan in ENTITY_PLANS:
            self.reports[plan.key] = self._process(plan)

        totals = self._totals()
        if self.is_apply and totals["writes"] > 0:
            self._record_audit(totals)

        logger.info(
            "Reconciliation pass finished: missing=%d inferred=%d quarantined=%d writes=%d errors=%d",
            totals["total_missing"], totals["inferred_count"], totals["quarantined_count"],
            totals["writes"], totals["errors"],
            extra={"mode": self.mode, "actor_user_id": self.actor_user_id},
        )

        return {
            "mode": self.mode,
            "order": list(ENTITY_ORDER),
            "quarantine_tenant_id": self._reported_quarantine_id(),
            "per_type": {key: report.to_dict() for key, report in self.reports.items()},
            "totals": totals,
            "started_at": started_at.isoformat(),
            "finished_at": datetime.now(timezone.utc).isoformat(),
        }

    # ── per type ─────────────────────────────────────────────────────────

    def _process(self, plan: EntityPlan) -> TypeReport:
        model = plan.model
        report = TypeReport()

        report.already_resolved_count = db.session.execute(
            plan.scope(db.select(db.func.count(model.id)).where(model.tenant_id.is_not(None)))
        ).scalar() or 0

        rows = db.session.execute(
            plan.scope(
                db.select(*(getattr(model, c) for c in plan.columns))
                .where(model.tenant_id.is_(None))
                .order_by(model.id)
            )
        ).all()
        report.total_missing = len(rows)

        for row in rows:
            inference = plan.infer(row, self.lookups)
            if inference.resolved:
                report.inferred_count += 1
                target = inference.tenant_id
                values = {"tenant_id": target}
            else:
                report.quarantined_count += 1
                if len(report.sample_ambiguous_ids) < SAMPLE_AMBIGUOUS_LIMIT:
                    report.sample_ambiguous_ids.append(row.id)
                try:
                    target = self._quarantine_target()
                except SQLAlchemyError as exc:
                    db.session.rollback()
                    self._record_error(plan, row.id, exc, report)
                    continue
                values = {"tenant_id": target, **plan.quarantine_values}

            if plan.key == "project":
                self.lookups.record_project(row.id, target)

            if self.is_apply:
                self._write_row(plan, row.id, values, report)

        logger.info(
            "Reconciled %s: missing=%d inferred=%d quarantined=%d",
            plan.key, report.total_missing, report.inferred_count, report.quarantined_count,
            extra={"table": plan.key, "mode": self.mode},
        )
        return report

    def _quarantine_target(self):
        if self.is_apply:
            return self.resolver.resolve_or_create()
        return self.resolver.resolve_if_exists() or DRY_RUN_QUARANTINE_PLACEHOLDER

    def _write_row(self, plan: EntityPlan, row_id: int, values: dict, report: TypeReport) -> None:
        """Conditional single-row update; its own transaction."""
        model = plan.model
        try:
            result = db.session.execute(
                db.update(model)
                .where(model.id == row_id, model.tenant_id.is_(None))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            self._record_error(plan, row_id, exc, report)
            return

        if result.rowcount:
            report.writes += 1
        else:
            # Claimed by a concurrent writer between read and write
            report.skipped += 1

    def _record_error(self, plan: EntityPlan, row_id: int, exc: Exception, report: TypeReport) -> None:
        """Count a store failure against one row; the pass moves on to the next."""
        report.errors += 1
        if len(report.error_samples) < ERROR_SAMPLE_LIMIT:
            report.error_samples.append({"id": row_id, "error": type(exc).__name__})
        logger.warning(
            "Reconciliation failed for %s #%d: %s", plan.key, row_id, exc,
            extra={"table": plan.key, "row_id": row_id, "mode": self.mode},
        )

    # ── summary ──────────────────────────────────────────────────────────

    def _totals(self) -> dict:
        keys = ("total_missing", "inferred_count", "quarantined_count", "writes", "skipped", "errors")
        return {k: sum(getattr(r, k) for r in self.reports.values()) for k in keys}

    def _reported_quarantine_id(self):
        tenant_id = self.resolver.resolve_if_exists()
        if tenant_id is None and not self.is_apply:
            return DRY_RUN_QUARANTINE_PLACEHOLDER
        return tenant_id

    def _record_audit(self, totals: dict) -> None:
        write_audit(
            tenant_id=self.resolver.resolve_if_exists(),
            event_type="tenantid_backfill_applied",
            message=(
                f"Tenant id backfill applied: {totals['inferred_count']} inferred, "
                f"{totals['quarantined_count']} quarantined, {totals['writes']} rows written"
            ),
            actor_user_id=self.actor_user_id,
            metadata={
                "order": list(ENTITY_ORDER),
                "per_type": {
                    key: {
                        "total_missing": r.total_missing,
                        "inferred_count": r.inferred_count,
                        "quarantined_count": r.quarantined_count,
                        "writes": r.writes,
                    }
                    for key, r in self.reports.items()
                },
                "totals": totals,
            },
        )
        db.session.commit()


def run_reconciliation(mode: str, *, actor_user_id: int | None = None) -> dict:
    """Run one pass in *mode* (``scan`` or ``apply``) and return its report."""
    return ReconciliationPass(mode, actor_user_id=actor_user_id).run()


# ── Scan (counts only) ───────────────────────────────────────────────────────

def scan_missing_tenant_ids(*, backfill_allowed: bool) -> dict:
    """Count null tenant ids per table, with advisory notes. Never writes."""

    def _missing(model, *extra) -> int:
        stmt = db.select(db.func.count(model.id)).where(model.tenant_id.is_(None), *extra)
        return db.session.execute(stmt).scalar() or 0

    counts = {
        "users": _missing(User, User.role != UserRole.SUPER_USER),
        "projects": _missing(Project),
        "tasks": _missing(Task),
        "teams": _missing(Team),
    }
    clients = _missing(Client)
    total = sum(counts.values())
    quarantine_tenant_id = QuarantineTenantResolver().resolve_if_exists()

    notes = []
    if total == 0:
        notes.append("All tenant-scoped rows are attributed; nothing to backfill.")
    if clients:
        notes.append(f"{clients} client(s) without a tenant are reported only and never remediated.")
    if total and not backfill_allowed:
        notes.append("Backfill is disabled. Set BACKFILL_TENANT_IDS_ALLOWED=true to enable apply mode.")
    if total and quarantine_tenant_id is None:
        notes.append("No quarantine tenant exists yet; apply mode creates it on the first unresolvable row.")

    return {
        "missing": {**counts, "clients": clients},
        "total_missing": total,
        "quarantine_tenant_id": quarantine_tenant_id,
        "backfill_allowed": backfill_allowed,
        "notes": notes,
    }
