"""Integrity checker battery."""

from tenantguard.services.integrity_service import SAMPLE_LIMIT, run_integrity_checks
from tenantguard.services.reconciliation_service import APPLY, run_reconciliation


def _by_code(report):
    return {issue["code"]: issue for issue in report["issues"]}


def test_clean_store_reports_no_issues(seed, super_operator):
    t1 = seed.tenant()
    w1 = seed.workspace(t1, is_primary=True)
    seed.user(t1)
    project = seed.project(t1, workspace=w1, client=seed.client_row(t1))
    seed.task(t1, project=project)
    seed.team(t1, workspace=w1)

    report = run_integrity_checks()

    assert report["issues"] == []
    assert report["total_issues"] == 0
    assert "timestamp" in report


def test_cross_tenant_mismatches_are_blockers(seed):
    t1, t2 = seed.tenant(), seed.tenant()
    seed.workspace(t1, is_primary=True)
    seed.workspace(t2, is_primary=True)
    w1 = seed.workspace(t1)
    project = seed.project(t1, workspace=w1, client=seed.client_row(t2))
    seed.task(t2, project=project)
    seed.team(t2, workspace=w1)
    seed.project(t2, workspace=w1)

    issues = _by_code(run_integrity_checks())

    for code in (
        "TASK_PROJECT_TENANT_MISMATCH",
        "PROJECT_CLIENT_TENANT_MISMATCH",
        "TEAM_WORKSPACE_TENANT_MISMATCH",
        "PROJECT_WORKSPACE_TENANT_MISMATCH",
    ):
        assert issues[code]["severity"] == "blocker"
        assert issues[code]["count"] == 1


def test_missing_tenant_is_a_warning_not_a_blocker(seed, super_operator):
    user = seed.user()
    seed.project()

    report = run_integrity_checks()
    issues = _by_code(report)

    assert issues["USERS_MISSING_TENANT"]["severity"] == "warn"
    assert issues["USERS_MISSING_TENANT"]["sample_ids"] == [user.id]
    assert issues["PROJECTS_MISSING_TENANT"]["count"] == 1
    assert issues["PROJECTS_MISSING_WORKSPACE"]["count"] == 1
    assert report["blocker_count"] == 0


def test_counts_are_exact_and_samples_capped(seed):
    ids = [seed.team().id for _ in range(SAMPLE_LIMIT + 3)]

    issue = _by_code(run_integrity_checks())["TEAMS_MISSING_TENANT"]

    assert issue["count"] == SAMPLE_LIMIT + 3
    assert issue["sample_ids"] == ids[:SAMPLE_LIMIT]


def test_primary_workspace_invariant(seed):
    t1, t2 = seed.tenant(), seed.tenant()
    seed.workspace(t1, is_primary=True)
    seed.workspace(t1, is_primary=True)
    seed.workspace(t2)

    issues = _by_code(run_integrity_checks())

    assert issues["MULTIPLE_PRIMARY_WORKSPACES"]["sample_ids"] == [t1.id]
    assert issues["TENANTS_WITHOUT_PRIMARY_WORKSPACE"]["sample_ids"] == [t2.id]


def test_quarantine_backlog_stays_visible(seed):
    user = seed.user()
    run_reconciliation(APPLY)

    report = run_integrity_checks()
    issue = _by_code(report)["QUARANTINE_ROWS_PENDING"]

    assert issue["severity"] == "info"
    assert issue["count"] == 1
    assert issue["sample_ids"] == [f"user:{user.id}"]
    assert report["info_count"] == 1
    assert "USERS_MISSING_TENANT" not in _by_code(report)


def test_integrity_checks_never_write(seed):
    seed.user()
    before = run_integrity_checks()
    after = run_integrity_checks()
    assert before["issues"] == after["issues"]
