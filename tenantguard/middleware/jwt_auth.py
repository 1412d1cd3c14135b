"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

Authentication itself belongs to the surrounding platform; this hook only
turns a bearer token into request context:

  Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_roles

A missing or invalid token leaves the context empty. Whether an empty
context is acceptable is decided per endpoint by ``require_super_operator``.
"""

import logging

import jwt as pyjwt
from flask import g, request

from tenantguard.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired bearer token on %s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid bearer token on %s", path)
            return

        try:
            g.jwt_user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            logger.warning("Bearer token without a numeric subject on %s", path)
            return
        g.jwt_roles = payload.get("roles", [])
