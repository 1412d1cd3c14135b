"""Tenant id scan and backfill blueprint.

  GET  /api/v1/super/debug/tenantid/scan
  POST /api/v1/super/debug/tenantid/backfill?mode=dry_run|apply

``dry_run`` (the default) runs a scan-mode reconciliation pass and writes
nothing. ``apply`` must pass the backfill gate: BACKFILL_TENANT_IDS_ALLOWED
plus header ``X-Confirm-Backfill: APPLY_TENANTID_BACKFILL``.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, g, jsonify, request

from tenantguard.middleware.super_operator import require_super_operator
from tenantguard.services.reconciliation_service import (
    APPLY,
    normalize_mode,
    run_reconciliation,
    scan_missing_tenant_ids,
)
from tenantguard.services.safety_gate import (
    BACKFILL_APPLY_GATE,
    BACKFILL_FLAG,
    context_from_request,
)
from tenantguard.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

tenantid_bp = Blueprint("tenantid", __name__, url_prefix="/api/v1/super/debug")

register_error_handlers(tenantid_bp)


@tenantid_bp.route("/tenantid/scan", methods=["GET"])
@require_super_operator
def tenantid_scan():
    """Missing-tenant counts per table plus advisory notes."""
    report = scan_missing_tenant_ids(
        backfill_allowed=bool(current_app.config.get(BACKFILL_FLAG, False)),
    )
    return jsonify(report), 200


@tenantid_bp.route("/tenantid/backfill", methods=["POST"])
@require_super_operator
def tenantid_backfill():
    """Run a reconciliation pass. Query param: mode (dry_run | apply)."""
    mode = normalize_mode(request.args.get("mode") or "dry_run")
    if mode == APPLY:
        BACKFILL_APPLY_GATE.check(context_from_request(g.super_operator))
        logger.warning(
            "Tenant id backfill apply requested by user #%d", g.super_operator.id,
            extra={"actor_user_id": g.super_operator.id, "mode": mode},
        )

    report = run_reconciliation(mode, actor_user_id=g.super_operator.id)
    return jsonify(report), 200
