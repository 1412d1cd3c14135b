"""
Engine-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
map each to a single error code of the taxonomy:

    ValidationError  → VALIDATION_ERROR (400)
    NotFoundError    → NOT_FOUND        (404)
    ForbiddenError   → FORBIDDEN        (403)
    ConflictError    → CONFLICT         (409)

Usage:
    from tenantguard.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=42, detail="not in quarantine")
    raise ValidationError("table is required", details={"table": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a row, tenant or table does not exist, or is not in the
    state the caller expects (e.g. a row that is no longer quarantined).

    Args:
        resource: Human-readable entity name (e.g. "Project", "Tenant").
        resource_id: The PK that was looked up.
        detail: Optional qualifier appended to the message.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        detail: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if detail:
            msg += f" {detail}"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when a request is malformed or names an invalid target.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation is blocked by dependent rows.

    Args:
        resource: Model name of the row the operation targeted.
        resource_id: Its PK.
        reason: Why the operation is blocked.
        details: Optional counts of the blocking dependents.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None,
        reason: str,
        details: dict | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.details = details or {}
        super().__init__(f"Cannot modify {resource} id={resource_id}: {reason}")


class ForbiddenError(Exception):
    """Raised when the caller's role or a Safety Gate check fails.

    Every gate failure (flag disabled, confirmation missing, confirmation
    mismatched, caller not a super-operator) uses this one type so the
    error code alone does not reveal which check failed.
    """

    def __init__(self, message: str = "Forbidden", reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(message)
