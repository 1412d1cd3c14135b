"""
Ownership Inference — derives a missing tenant id from related rows.

Per-type signal chains (first non-null signal wins, never combined):

    project  workspace.tenant_id → client.tenant_id → creator.tenant_id
    task     project.tenant_id (post-resolution) → creator.tenant_id
    team     workspace.tenant_id

Users are different: every reachable tenant is collected (workspace
memberships, pending invitations by email, projects the user created) and
only a singleton set resolves. Zero or several candidates is ambiguous and
goes to quarantine; there is no majority vote.

The ``infer_*`` functions are pure. ``OwnershipLookups`` is the store-backed
side: a memoising cache owned by one reconciliation pass, which also holds
the tenants resolved earlier in that pass so later types see them.
"""

from __future__ import annotations

from collections.abc import Iterable, Set
from dataclasses import dataclass, field
from typing import Any

from tenantguard.models import db
from tenantguard.models.auth import Invitation, InvitationStatus, User
from tenantguard.models.project import Client, Project
from tenantguard.models.workspace import Workspace, WorkspaceMember

# Tenant ids are ints; a scan pass may also carry its quarantine placeholder
TenantRef = Any


@dataclass(frozen=True)
class Inference:
    """Outcome of inferring one row's owner."""

    tenant_id: TenantRef | None
    source: str | None = None
    candidates: frozenset = field(default_factory=frozenset)

    @property
    def resolved(self) -> bool:
        return self.tenant_id is not None


AMBIGUOUS = Inference(tenant_id=None)


# ── Pure rules ───────────────────────────────────────────────────────────────

def first_signal(signals: Iterable[tuple[str, TenantRef | None]]) -> Inference:
    """Return the first non-null signal as the inference, else AMBIGUOUS."""
    for source, tenant_id in signals:
        if tenant_id is not None:
            return Inference(tenant_id=tenant_id, source=source)
    return AMBIGUOUS


def singleton_tenant(candidates: Set[TenantRef]) -> TenantRef | None:
    """The unique member of *candidates*, or None for zero or several."""
    if len(candidates) != 1:
        return None
    (only,) = candidates
    return only


def infer_project_tenant(project, lookups: "OwnershipLookups") -> Inference:
    return first_signal((
        ("workspace", lookups.workspace_tenant(project.workspace_id)),
        ("client", lookups.client_tenant(project.client_id)),
        ("creator", lookups.user_tenant(project.created_by)),
    ))


def infer_task_tenant(task, lookups: "OwnershipLookups") -> Inference:
    return first_signal((
        ("project", lookups.project_tenant(task.project_id)),
        ("creator", lookups.user_tenant(task.created_by)),
    ))


def infer_team_tenant(team, lookups: "OwnershipLookups") -> Inference:
    return first_signal((
        ("workspace", lookups.workspace_tenant(team.workspace_id)),
    ))


def infer_user_from_candidates(candidates: Set[TenantRef]) -> Inference:
    frozen = frozenset(candidates)
    tenant_id = singleton_tenant(frozen)
    if tenant_id is None:
        return Inference(tenant_id=None, candidates=frozen)
    return Inference(tenant_id=tenant_id, source="unique_candidate", candidates=frozen)


def infer_user_tenant(user, lookups: "OwnershipLookups") -> Inference:
    return infer_user_from_candidates(lookups.user_candidates(user.id, user.email))


# ── Store-backed lookups ─────────────────────────────────────────────────────

class OwnershipLookups:
    """Memoised foreign-key → tenant lookups for a single pass.

    Never shared between passes: a new pass builds a new instance, so
    nothing cached here can go stale across invocations.
    """

    def __init__(self) -> None:
        self._workspace: dict[int, Any] = {}
        self._client: dict[int, Any] = {}
        self._user: dict[int, Any] = {}
        self._project: dict[int, Any] = {}
        # Tenants decided during this pass; take precedence over the store
        self._resolved_projects: dict[int, TenantRef] = {}

    def _memo(self, cache: dict, model, row_id: int | None):
        if row_id is None:
            return None
        if row_id not in cache:
            cache[row_id] = db.session.execute(
                db.select(model.tenant_id).where(model.id == row_id)
            ).scalar_one_or_none()
        return cache[row_id]

    def workspace_tenant(self, workspace_id: int | None):
        return self._memo(self._workspace, Workspace, workspace_id)

    def client_tenant(self, client_id: int | None):
        return self._memo(self._client, Client, client_id)

    def user_tenant(self, user_id: int | None):
        return self._memo(self._user, User, user_id)

    def project_tenant(self, project_id: int | None):
        if project_id is not None and project_id in self._resolved_projects:
            return self._resolved_projects[project_id]
        return self._memo(self._project, Project, project_id)

    def record_project(self, project_id: int, tenant_id: TenantRef) -> None:
        """Make a project's newly decided tenant visible to later types."""
        self._resolved_projects[project_id] = tenant_id

    def user_candidates(self, user_id: int, email: str | None) -> set:
        """Every distinct tenant reachable from the user's relationships."""
        candidates: set = set()

        membership_tenants = db.session.execute(
            db.select(Workspace.tenant_id)
            .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
            .where(WorkspaceMember.user_id == user_id, Workspace.tenant_id.is_not(None))
        ).scalars().all()
        candidates.update(membership_tenants)

        if email:
            invitation_tenants = db.session.execute(
                db.select(Invitation.tenant_id).where(
                    db.func.lower(Invitation.email) == email.strip().lower(),
                    Invitation.status == InvitationStatus.PENDING,
                    Invitation.tenant_id.is_not(None),
                )
            ).scalars().all()
            candidates.update(invitation_tenants)

        created_project_ids = db.session.execute(
            db.select(Project.id).where(Project.created_by == user_id)
        ).scalars().all()
        for project_id in created_project_ids:
            tenant_id = self.project_tenant(project_id)
            if tenant_id is not None:
                candidates.add(tenant_id)

        return candidates
