"""
Tenant Identity Reconciliation Engine
Blueprint registry.
"""

from tenantguard.blueprints.integrity_bp import integrity_bp
from tenantguard.blueprints.quarantine_bp import quarantine_bp
from tenantguard.blueprints.tenantid_bp import tenantid_bp

ADMIN_BLUEPRINTS = (quarantine_bp, tenantid_bp, integrity_bp)
