"""Reconciliation pass: dependency order, idempotency, quarantine fallback."""

import pytest
from sqlalchemy.exc import OperationalError

from tenantguard.models import db as _db
from tenantguard.models.audit import AuditEvent
from tenantguard.models.auth import Tenant, TenantStatus, User
from tenantguard.models.project import Project, ProjectStatus, Task, TaskStatus
from tenantguard.models.workspace import Team, Workspace
from tenantguard.services.quarantine_resolver import (
    DRY_RUN_QUARANTINE_PLACEHOLDER,
    QUARANTINE_TENANT_SLUG,
    QUARANTINE_WORKSPACE_NAME,
    QuarantineTenantResolver,
)
from tenantguard.services.reconciliation_service import (
    APPLY,
    ENTITY_PLANS,
    SCAN,
    ReconciliationPass,
    TypeReport,
    normalize_mode,
    run_reconciliation,
    scan_missing_tenant_ids,
)
from tenantguard.core.exceptions import ValidationError


def _quarantine_tenant():
    return Tenant.query.filter_by(slug=QUARANTINE_TENANT_SLUG).first()


def _counts(report):
    return {
        key: (r["total_missing"], r["inferred_count"], r["quarantined_count"])
        for key, r in report["per_type"].items()
    }


# ── Dependency order ─────────────────────────────────────────────────────


def test_task_inherits_project_resolved_in_same_pass(seed):
    t1 = seed.tenant()
    w1 = seed.workspace(t1)
    project = seed.project(workspace=w1)
    task = seed.task(project=project)

    report = run_reconciliation(APPLY)

    assert _db.session.get(Project, project.id).tenant_id == t1.id
    assert _db.session.get(Task, task.id).tenant_id == t1.id
    assert report["per_type"]["project"]["quarantined_count"] == 0
    assert report["per_type"]["task"]["quarantined_count"] == 0
    assert report["per_type"]["task"]["inferred_count"] == 1
    assert _quarantine_tenant() is None


def test_order_is_project_task_team_user(seed):
    report = run_reconciliation(SCAN)
    assert report["order"] == ["project", "task", "team", "user"]
    assert list(report["per_type"]) == ["project", "task", "team", "user"]


def test_only_tenant_id_is_written_on_resolution(seed):
    t1 = seed.tenant()
    w1 = seed.workspace(t1)
    c1 = seed.client_row(t1)
    project = seed.project(workspace=w1, client=c1)

    run_reconciliation(APPLY)

    row = _db.session.get(Project, project.id)
    assert (row.tenant_id, row.workspace_id, row.client_id) == (t1.id, w1.id, c1.id)
    assert row.status == ProjectStatus.ACTIVE


def test_user_sees_project_resolved_earlier_in_pass(seed):
    t1 = seed.tenant()
    user = seed.user()
    seed.project(workspace=seed.workspace(t1), creator=user)

    run_reconciliation(APPLY)

    assert _db.session.get(User, user.id).tenant_id == t1.id


# ── Quarantine fallback ──────────────────────────────────────────────────


def test_user_without_signals_is_quarantined_and_deactivated(seed):
    user = seed.user()

    report = run_reconciliation(APPLY)

    quarantine = _quarantine_tenant()
    assert quarantine is not None
    assert quarantine.status == TenantStatus.INACTIVE
    row = _db.session.get(User, user.id)
    assert row.tenant_id == quarantine.id
    assert row.is_active is False
    assert report["per_type"]["user"]["sample_ambiguous_ids"] == [user.id]
    assert report["quarantine_tenant_id"] == quarantine.id


@pytest.mark.parametrize("first,second", [(0, 1), (1, 0)])
def test_user_in_two_tenants_is_always_quarantined(seed, first, second):
    tenants = [seed.tenant(), seed.tenant()]
    workspaces = [seed.workspace(tenants[0]), seed.workspace(tenants[1])]
    user = seed.user()
    seed.member(workspaces[first], user)
    seed.member(workspaces[second], user)

    run_reconciliation(APPLY)

    row = _db.session.get(User, user.id)
    assert row.tenant_id == _quarantine_tenant().id
    assert row.tenant_id not in {t.id for t in tenants}


def test_quarantined_project_and_task_are_archived(seed):
    project = seed.project()
    orphan_task = seed.task()
    child_task = seed.task(project=project)

    report = run_reconciliation(APPLY)

    quarantine_id = _quarantine_tenant().id
    assert _db.session.get(Project, project.id).status == ProjectStatus.ARCHIVED
    assert _db.session.get(Task, orphan_task.id).status == TaskStatus.ARCHIVED
    # Inherits the quarantined project's tenant through the normal chain
    child = _db.session.get(Task, child_task.id)
    assert child.tenant_id == quarantine_id
    assert child.status == TaskStatus.TODO
    assert report["per_type"]["task"]["inferred_count"] == 1
    assert report["per_type"]["task"]["quarantined_count"] == 1


def test_quarantined_team_keeps_its_fields(seed):
    team = seed.team()
    run_reconciliation(APPLY)
    assert _db.session.get(Team, team.id).tenant_id == _quarantine_tenant().id


def test_quarantine_tenant_created_once_with_workspace(seed):
    seed.team()
    seed.team()
    seed.user()

    run_reconciliation(APPLY)

    assert Tenant.query.filter_by(slug=QUARANTINE_TENANT_SLUG).count() == 1
    quarantine = _quarantine_tenant()
    workspaces = Workspace.query.filter_by(tenant_id=quarantine.id).all()
    assert [(w.name, w.is_primary) for w in workspaces] == [(QUARANTINE_WORKSPACE_NAME, True)]


def test_super_users_are_exempt(seed, super_operator):
    report = run_reconciliation(APPLY)

    assert report["per_type"]["user"]["total_missing"] == 0
    assert _db.session.get(User, super_operator.id).tenant_id is None
    assert _quarantine_tenant() is None


def test_ambiguous_samples_are_capped(seed):
    for _ in range(55):
        seed.team()

    report = run_reconciliation(SCAN)

    team = report["per_type"]["team"]
    assert team["quarantined_count"] == 55
    assert len(team["sample_ambiguous_ids"]) == 50


# ── Scan mode ────────────────────────────────────────────────────────────


def test_scan_never_writes_or_creates_quarantine(seed):
    user = seed.user()
    project = seed.project(workspace=seed.workspace(seed.tenant()))

    report = run_reconciliation(SCAN)

    assert report["mode"] == SCAN
    assert report["quarantine_tenant_id"] == DRY_RUN_QUARANTINE_PLACEHOLDER
    assert report["totals"]["writes"] == 0
    assert _quarantine_tenant() is None
    assert _db.session.get(User, user.id).tenant_id is None
    assert _db.session.get(Project, project.id).tenant_id is None
    assert AuditEvent.query.count() == 0


def test_scan_and_apply_agree_then_apply_is_idempotent(seed):
    t1 = seed.tenant()
    w1 = seed.workspace(t1)
    p_ok = seed.project(workspace=w1)
    seed.task(project=p_ok)
    p_bad = seed.project()
    seed.task(project=p_bad)
    seed.team(workspace=w1)
    seed.team()
    lone = seed.user()
    creator = seed.user()
    seed.project(creator=creator, client=seed.client_row(t1))

    scan = run_reconciliation(SCAN)
    first = run_reconciliation(APPLY)
    second = run_reconciliation(APPLY)

    assert _counts(scan) == _counts(first)
    assert first["totals"]["writes"] == first["totals"]["total_missing"]
    assert second["totals"]["total_missing"] == 0
    assert second["totals"]["writes"] == 0
    assert AuditEvent.query.filter_by(event_type="tenantid_backfill_applied").count() == 1
    assert _db.session.get(User, creator.id).tenant_id == t1.id
    assert _db.session.get(User, lone.id).tenant_id == _quarantine_tenant().id


def test_scan_with_existing_quarantine_reports_real_id(seed):
    seed.user()
    run_reconciliation(APPLY)
    seed.team()

    report = run_reconciliation(SCAN)
    assert report["quarantine_tenant_id"] == _quarantine_tenant().id


# ── Accounting & audit ───────────────────────────────────────────────────


def test_row_claimed_concurrently_counts_as_skipped(seed):
    t1 = seed.tenant()
    team = seed.team()
    team_plan = next(p for p in ENTITY_PLANS if p.key == "team")

    # Another writer resolves the row between selection and update
    team.tenant_id = t1.id
    _db.session.commit()

    report = TypeReport()
    ReconciliationPass(APPLY)._write_row(team_plan, team.id, {"tenant_id": 999}, report)

    assert (report.writes, report.skipped, report.errors) == (0, 1, 0)
    assert _db.session.get(Team, team.id).tenant_id == t1.id


def test_store_failure_creating_quarantine_only_fails_that_row(seed, monkeypatch):
    t1 = seed.tenant()
    team = seed.team(workspace=seed.workspace(t1))
    user = seed.user()

    def _unavailable(self):
        raise OperationalError("INSERT INTO tenants", {}, Exception("database is locked"))

    monkeypatch.setattr(QuarantineTenantResolver, "resolve_or_create", _unavailable)

    report = run_reconciliation(APPLY)

    assert report["per_type"]["team"]["writes"] == 1
    user_report = report["per_type"]["user"]
    assert user_report["errors"] == 1
    assert user_report["writes"] == 0
    assert user_report["error_samples"] == [{"id": user.id, "error": "OperationalError"}]
    assert report["totals"]["errors"] == 1
    assert _db.session.get(Team, team.id).tenant_id == t1.id
    assert _db.session.get(User, user.id).tenant_id is None


def test_apply_without_quarantine_records_platform_event(seed, super_operator):
    t1 = seed.tenant()
    seed.team(workspace=seed.workspace(t1))

    run_reconciliation(APPLY, actor_user_id=super_operator.id)

    event = AuditEvent.query.filter_by(event_type="tenantid_backfill_applied").one()
    assert event.tenant_id is None
    assert event.actor_user_id == super_operator.id
    assert event.event_metadata["totals"]["writes"] == 1


def test_apply_with_nothing_to_do_records_no_event(seed):
    report = run_reconciliation(APPLY)
    assert report["totals"]["writes"] == 0
    assert AuditEvent.query.count() == 0


def test_apply_event_is_filed_under_quarantine_tenant(seed):
    seed.user()
    run_reconciliation(APPLY)
    event = AuditEvent.query.filter_by(event_type="tenantid_backfill_applied").one()
    assert event.tenant_id == _quarantine_tenant().id


# ── Mode parsing & scan counts ───────────────────────────────────────────


@pytest.mark.parametrize("raw,expected", [("dry_run", SCAN), ("APPLY", APPLY), ("scan", SCAN)])
def test_normalize_mode(raw, expected):
    assert normalize_mode(raw) == expected


def test_normalize_mode_rejects_unknown():
    with pytest.raises(ValidationError):
        normalize_mode("force")


def test_scan_missing_counts_and_notes(seed, super_operator):
    seed.user()
    seed.project()
    seed.client_row()

    report = scan_missing_tenant_ids(backfill_allowed=False)

    assert report["missing"] == {"users": 1, "projects": 1, "tasks": 0, "teams": 0, "clients": 1}
    assert report["total_missing"] == 2
    assert report["quarantine_tenant_id"] is None
    assert any("BACKFILL_TENANT_IDS_ALLOWED" in note for note in report["notes"])
    assert any("quarantine tenant" in note for note in report["notes"])


def test_scan_missing_all_clear(seed):
    seed.project(seed.tenant())
    report = scan_missing_tenant_ids(backfill_allowed=True)
    assert report["total_missing"] == 0
    assert report["notes"] == ["All tenant-scoped rows are attributed; nothing to backfill."]
