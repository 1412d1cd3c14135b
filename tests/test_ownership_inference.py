"""Ownership inference rules: pure signal chains and the user singleton rule."""

from types import SimpleNamespace

import pytest

from tenantguard.services.ownership_inference import (
    AMBIGUOUS,
    OwnershipLookups,
    first_signal,
    infer_project_tenant,
    infer_task_tenant,
    infer_team_tenant,
    infer_user_from_candidates,
    singleton_tenant,
)


class FakeLookups:
    """In-memory stand-in for OwnershipLookups."""

    def __init__(self, workspaces=None, clients=None, users=None, projects=None):
        self.workspaces = workspaces or {}
        self.clients = clients or {}
        self.users = users or {}
        self.projects = projects or {}

    def workspace_tenant(self, workspace_id):
        return self.workspaces.get(workspace_id)

    def client_tenant(self, client_id):
        return self.clients.get(client_id)

    def user_tenant(self, user_id):
        return self.users.get(user_id)

    def project_tenant(self, project_id):
        return self.projects.get(project_id)


def _project(workspace_id=None, client_id=None, created_by=None):
    return SimpleNamespace(id=1, workspace_id=workspace_id, client_id=client_id, created_by=created_by)


# ── singleton rule ──────────────────────────────────────────────────────


class TestSingletonTenant:
    def test_single_candidate_resolves(self):
        assert singleton_tenant({7}) == 7

    def test_no_candidates_is_ambiguous(self):
        assert singleton_tenant(set()) is None

    def test_two_candidates_is_ambiguous(self):
        assert singleton_tenant({7, 9}) is None

    @pytest.mark.parametrize("candidates", [[3, 4], [4, 3]])
    def test_order_never_matters(self, candidates):
        inference = infer_user_from_candidates(set(candidates))
        assert not inference.resolved
        assert inference.candidates == frozenset({3, 4})

    def test_user_single_candidate(self):
        inference = infer_user_from_candidates({5})
        assert inference.resolved
        assert inference.tenant_id == 5
        assert inference.source == "unique_candidate"


# ── signal chains ───────────────────────────────────────────────────────


class TestSignalChains:
    def test_first_signal_wins_not_combined(self):
        inference = first_signal([("a", None), ("b", 2), ("c", 3)])
        assert inference.tenant_id == 2
        assert inference.source == "b"

    def test_no_signal_is_ambiguous(self):
        assert first_signal([("a", None)]) is AMBIGUOUS

    def test_project_prefers_workspace_over_client_and_creator(self):
        lookups = FakeLookups(workspaces={10: 1}, clients={20: 2}, users={30: 3})
        inference = infer_project_tenant(_project(10, 20, 30), lookups)
        assert inference.tenant_id == 1
        assert inference.source == "workspace"

    def test_project_falls_back_to_client(self):
        lookups = FakeLookups(workspaces={10: None}, clients={20: 2}, users={30: 3})
        inference = infer_project_tenant(_project(10, 20, 30), lookups)
        assert (inference.tenant_id, inference.source) == (2, "client")

    def test_project_falls_back_to_creator(self):
        lookups = FakeLookups(users={30: 3})
        inference = infer_project_tenant(_project(None, None, 30), lookups)
        assert (inference.tenant_id, inference.source) == (3, "creator")

    def test_project_without_signals_is_ambiguous(self):
        assert not infer_project_tenant(_project(), FakeLookups()).resolved

    def test_task_prefers_project_over_creator(self):
        lookups = FakeLookups(projects={5: 1}, users={30: 2})
        task = SimpleNamespace(id=1, project_id=5, created_by=30)
        inference = infer_task_tenant(task, lookups)
        assert (inference.tenant_id, inference.source) == (1, "project")

    def test_task_uses_creator_when_project_unresolved(self):
        lookups = FakeLookups(projects={5: None}, users={30: 2})
        task = SimpleNamespace(id=1, project_id=5, created_by=30)
        assert infer_task_tenant(task, lookups).tenant_id == 2

    def test_team_only_uses_workspace(self):
        lookups = FakeLookups(workspaces={10: 4})
        assert infer_team_tenant(SimpleNamespace(id=1, workspace_id=10), lookups).tenant_id == 4
        assert not infer_team_tenant(SimpleNamespace(id=2, workspace_id=None), lookups).resolved

    def test_quarantine_signal_is_a_normal_resolution(self):
        quarantine_id = 99
        lookups = FakeLookups(workspaces={10: quarantine_id})
        inference = infer_team_tenant(SimpleNamespace(id=1, workspace_id=10), lookups)
        assert inference.tenant_id == quarantine_id


# ── store-backed lookups ────────────────────────────────────────────────


class TestOwnershipLookups:
    def test_user_candidates_collects_every_signal(self, seed):
        t1, t2, t3 = seed.tenant(), seed.tenant(), seed.tenant()
        user = seed.user(email="Dana@Example.test")
        seed.member(seed.workspace(t1), user)
        seed.invitation(t2, "dana@example.test")
        seed.project(t3, creator=user)

        assert OwnershipLookups().user_candidates(user.id, user.email) == {t1.id, t2.id, t3.id}

    def test_only_pending_invitations_count(self, seed):
        t1 = seed.tenant()
        user = seed.user(email="lee@example.test")
        seed.invitation(t1, "lee@example.test", status="revoked")

        assert OwnershipLookups().user_candidates(user.id, user.email) == set()

    def test_recorded_project_overrides_store(self, seed):
        t1 = seed.tenant()
        project = seed.project()
        lookups = OwnershipLookups()
        assert lookups.project_tenant(project.id) is None

        lookups.record_project(project.id, t1.id)
        assert lookups.project_tenant(project.id) == t1.id

    def test_fresh_lookups_do_not_share_state(self, seed):
        project = seed.project()
        first = OwnershipLookups()
        first.record_project(project.id, 123)
        assert OwnershipLookups().project_tenant(project.id) is None
