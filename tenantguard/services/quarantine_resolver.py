"""
Quarantine Tenant Resolver.

The quarantine tenant is a reserved, inactive tenant (slug ``quarantine``)
that temporarily owns rows whose real owner cannot be determined. It is
located by slug so it survives re-creation, and it is created lazily:

    resolver = QuarantineTenantResolver()
    resolver.resolve_if_exists()   # read-only; None when absent
    resolver.resolve_or_create()   # creates tenant + sentinel workspace once

Dry-run paths only ever call ``resolve_if_exists``.
"""

import logging

from sqlalchemy.exc import IntegrityError

from tenantguard.models import db
from tenantguard.models.auth import Tenant, TenantStatus
from tenantguard.models.workspace import Workspace

logger = logging.getLogger(__name__)

QUARANTINE_TENANT_SLUG = "quarantine"
QUARANTINE_TENANT_NAME = "Quarantine / Legacy Data"
QUARANTINE_WORKSPACE_NAME = "Quarantine Workspace"

# Reported by scan-mode passes in place of an id that does not exist yet
DRY_RUN_QUARANTINE_PLACEHOLDER = "dry-run-quarantine-tenant"


class QuarantineTenantResolver:
    """Finds or lazily creates the quarantine tenant.

    An instance caches the id once it is known, so it should live no longer
    than one pass or one request.
    """

    def __init__(self) -> None:
        self._tenant_id: int | None = None
        self._workspace_id: int | None = None

    def resolve_if_exists(self) -> int | None:
        """Return the quarantine tenant id, or None. Never writes."""
        if self._tenant_id is None:
            self._tenant_id = db.session.execute(
                db.select(Tenant.id).where(Tenant.slug == QUARANTINE_TENANT_SLUG)
            ).scalar_one_or_none()
        return self._tenant_id

    def resolve_or_create(self) -> int:
        """Return the quarantine tenant id, creating tenant and workspace if needed.

        Commits its own writes. A concurrent creator losing the unique-slug
        race rolls back and reads the winner's row.
        """
        tenant_id = self.resolve_if_exists()
        if tenant_id is None:
            tenant = Tenant(
                name=QUARANTINE_TENANT_NAME,
                slug=QUARANTINE_TENANT_SLUG,
                status=TenantStatus.INACTIVE,
            )
            db.session.add(tenant)
            try:
                db.session.commit()
                tenant_id = tenant.id
                logger.info("Created quarantine tenant #%d", tenant_id, extra={"tenant_id": tenant_id})
            except IntegrityError:
                db.session.rollback()
                logger.info("Quarantine tenant created concurrently; reusing it")
                tenant_id = db.session.execute(
                    db.select(Tenant.id).where(Tenant.slug == QUARANTINE_TENANT_SLUG)
                ).scalar_one()
            self._tenant_id = tenant_id

        if self._workspace_id is None:
            self._workspace_id = self._ensure_workspace(tenant_id)
        return tenant_id

    def workspace_id(self) -> int | None:
        """Return the sentinel workspace id, or None. Never writes."""
        tenant_id = self.resolve_if_exists()
        if tenant_id is None:
            return None
        return db.session.execute(
            db.select(Workspace.id).where(
                Workspace.tenant_id == tenant_id,
                Workspace.name == QUARANTINE_WORKSPACE_NAME,
            ).limit(1)
        ).scalar_one_or_none()

    def _ensure_workspace(self, tenant_id: int) -> int:
        workspace_id = self.workspace_id()
        if workspace_id is not None:
            return workspace_id
        workspace = Workspace(tenant_id=tenant_id, name=QUARANTINE_WORKSPACE_NAME, is_primary=True)
        db.session.add(workspace)
        db.session.commit()
        logger.info("Created quarantine workspace #%d", workspace.id, extra={"tenant_id": tenant_id})
        return workspace.id
