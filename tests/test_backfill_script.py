import importlib

import pytest

from tenantguard.core.exceptions import ForbiddenError
from tenantguard.models import db as _db
from tenantguard.models.auth import Tenant
from tenantguard.models.workspace import Team
from tenantguard.services.quarantine_resolver import QUARANTINE_TENANT_SLUG


def test_backfill_dry_run_does_not_persist(seed, capsys):
    team = seed.team()

    mod = importlib.import_module("scripts.backfill_tenant_ids")
    result = mod.backfill_tenant_ids(apply=False)

    assert result["mode"] == "scan"
    assert result["per_type"]["team"]["quarantined_count"] == 1
    assert _db.session.get(Team, team.id).tenant_id is None
    assert Tenant.query.filter_by(slug=QUARANTINE_TENANT_SLUG).count() == 0
    assert "[SUMMARY] mode=scan" in capsys.readouterr().out


def test_backfill_apply_refused_without_flag(seed):
    team = seed.team()

    mod = importlib.import_module("scripts.backfill_tenant_ids")
    with pytest.raises(ForbiddenError):
        mod.backfill_tenant_ids(apply=True)

    assert _db.session.get(Team, team.id).tenant_id is None


def test_backfill_apply_is_idempotent(seed, safety_flags):
    safety_flags(BACKFILL_TENANT_IDS_ALLOWED=True)
    tenant = seed.tenant()
    team = seed.team(workspace=seed.workspace(tenant))

    mod = importlib.import_module("scripts.backfill_tenant_ids")

    first = mod.backfill_tenant_ids(apply=True)
    assert first["totals"]["writes"] == 1
    assert first["totals"]["errors"] == 0
    assert _db.session.get(Team, team.id).tenant_id == tenant.id

    second = mod.backfill_tenant_ids(apply=True)
    assert second["totals"]["total_missing"] == 0
    assert second["totals"]["writes"] == 0
