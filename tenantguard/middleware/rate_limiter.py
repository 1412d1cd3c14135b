"""
Rate limiting configuration for the tenancy admin blueprints.

The Limiter instance is created in tenantguard/__init__.py with no default
limits; this module applies the per-blueprint limits.

Usage:
    from tenantguard.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

ADMIN_BLUEPRINT_NAMES = ("quarantine", "tenantid", "integrity")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to the admin blueprints.

    Limits (per remote IP):
        - Write endpoints:  60/minute  (POST)
        - Read endpoints:   200/minute (GET)
        - Health check:     unlimited (no default limit is configured)

    Skipped when RATELIMIT_ENABLED is false (the testing config).
    """

    if not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (RATELIMIT_ENABLED=False)")
        return

    for bp_name in ADMIN_BLUEPRINT_NAMES:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, methods=["POST"])(bp)
            limiter.limit(READ_LIMIT, methods=["GET"])(bp)

    app.logger.info("Rate limiter configured: write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
