"""Quarantine Manager blueprint.

REST API for rows held by the quarantine tenant.

Endpoint groups:
  Read          GET  /api/v1/super/debug/quarantine/summary
                GET  /api/v1/super/debug/quarantine/list?table=&page=&limit=&q=
  Dispositions  POST /api/v1/super/debug/quarantine/assign
                POST /api/v1/super/debug/quarantine/archive
                POST /api/v1/super/debug/quarantine/delete

Every endpoint requires a super-operator. assign/archive additionally pass
the quarantine action gate (SUPER_DEBUG_ACTIONS_ALLOWED); delete passes the
delete gate (SUPER_DEBUG_DELETE_ALLOWED + X-Confirm-Delete header + body
confirmPhrase). Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import tenantguard.services.quarantine_service as qs
from tenantguard.middleware.super_operator import require_super_operator
from tenantguard.services.safety_gate import (
    QUARANTINE_ACTION_GATE,
    QUARANTINE_DELETE_GATE,
    context_from_request,
)
from tenantguard.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

quarantine_bp = Blueprint("quarantine", __name__, url_prefix="/api/v1/super/debug")

register_error_handlers(quarantine_bp)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ═════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════


@quarantine_bp.route("/quarantine/summary", methods=["GET"])
@require_super_operator
def quarantine_summary():
    """Per-table counts under the quarantine tenant (never creates it)."""
    return jsonify(qs.summary()), 200


@quarantine_bp.route("/quarantine/list", methods=["GET"])
@require_super_operator
def quarantine_list():
    """Paginated quarantined rows.

    Query params: table (required), page (default 1), limit (default 50,
    max 100), q (matches name/title/email or the literal id).
    """
    result = qs.list_rows(
        request.args.get("table"),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", qs.DEFAULT_PAGE_SIZE, type=int),
        q=request.args.get("q"),
    )
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════
# Dispositions
# ═════════════════════════════════════════════════════════════════════════


@quarantine_bp.route("/quarantine/assign", methods=["POST"])
@require_super_operator
def quarantine_assign():
    """Move a row out of quarantine.

    Body: {table, id, assignTo: {tenantId, workspaceId?, projectId?, clientId?, sectionId?}}
    """
    QUARANTINE_ACTION_GATE.check(context_from_request(g.super_operator))
    data = _body()
    result = qs.assign(
        data.get("table"), data.get("id"), data.get("assignTo"),
        actor_user_id=g.super_operator.id,
    )
    return jsonify(result), 200


@quarantine_bp.route("/quarantine/archive", methods=["POST"])
@require_super_operator
def quarantine_archive():
    """Deactivate a quarantined user. Body: {table, id}"""
    QUARANTINE_ACTION_GATE.check(context_from_request(g.super_operator))
    data = _body()
    result = qs.archive(data.get("table"), data.get("id"), actor_user_id=g.super_operator.id)
    return jsonify(result), 200


@quarantine_bp.route("/quarantine/delete", methods=["POST"])
@require_super_operator
def quarantine_delete():
    """Permanently delete a quarantined row. Body: {table, id, confirmPhrase}"""
    QUARANTINE_DELETE_GATE.check(context_from_request(g.super_operator))
    data = _body()
    result = qs.delete(data.get("table"), data.get("id"), actor_user_id=g.super_operator.id)
    return jsonify(result), 200
