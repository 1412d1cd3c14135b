"""Integrity checks and safety configuration blueprint (read-only).

  GET /api/v1/super/debug/integrity/checks
  GET /api/v1/super/debug/config

Issues are data, not errors: both endpoints answer 200 whatever they find.
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from tenantguard.middleware.super_operator import require_super_operator
from tenantguard.services.integrity_service import run_integrity_checks
from tenantguard.services.safety_gate import confirmation_phrases, flags_from_config
from tenantguard.utils.errors import register_error_handlers

integrity_bp = Blueprint("integrity", __name__, url_prefix="/api/v1/super/debug")

register_error_handlers(integrity_bp)


@integrity_bp.route("/integrity/checks", methods=["GET"])
@require_super_operator
def integrity_checks():
    return jsonify(run_integrity_checks()), 200


@integrity_bp.route("/config", methods=["GET"])
@require_super_operator
def safety_config():
    """Current safety flags and the confirmation phrases each gate expects."""
    return jsonify({
        "flags": flags_from_config(current_app.config),
        "confirm_phrases": confirmation_phrases(),
    }), 200
