"""
Super-operator decorator — role precondition for the tenancy admin surface.

Authentication is the platform's job; this subsystem still asserts, on
every endpoint, that the caller is an active user holding the
``super_user`` role. Unlike tenant-facing permission checks there is no
fall-through for requests without a bearer token.

Usage:
    @bp.route("/quarantine/summary", methods=["GET"])
    @require_super_operator
    def quarantine_summary():
        ...
"""

import functools
import logging

from flask import g

from tenantguard.core.exceptions import ForbiddenError
from tenantguard.models import db
from tenantguard.models.auth import User, UserRole

logger = logging.getLogger(__name__)


def current_super_operator() -> User:
    """Return the authenticated super-operator or raise ForbiddenError."""
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is None:
        raise ForbiddenError("Super user access required", reason="unauthenticated")

    if UserRole.SUPER_USER not in (getattr(g, "jwt_roles", None) or []):
        logger.warning("User %d denied: token lacks super_user role", user_id)
        raise ForbiddenError("Super user access required", reason="token_role")

    user = db.session.get(User, user_id)
    if user is None or not user.is_super_user or not user.is_active:
        logger.warning("User %s denied: not an active super user", user_id)
        raise ForbiddenError("Super user access required", reason="user_role")
    return user


def require_super_operator(f):
    """Decorator: reject the request unless the caller is a super-operator.

    Sets ``g.super_operator`` to the User row for downstream audit writes.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.super_operator = current_super_operator()
        return f(*args, **kwargs)
    return decorated
