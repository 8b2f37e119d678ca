"""
Platform-wide exception hierarchy.

Every service raises these types; blueprints register handlers against
them once (see ``practicehub.utils.errors.register_error_handlers``) and
get consistent HTTP status codes and machine-readable error codes.

    NotFoundError      → 404
    ValidationError    → 422  (business rule violated, never retried)
    DependencyError    → 422  (unmet prerequisite, carries violations)
    ConflictError      → 409  (stale version / already applied / duplicate)
    ReconciliationError → 500 (persistence failure, rolled back)

Usage:
    from practicehub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Customer", resource_id=42)
    raise ValidationError("Period is not ready to close", code=E.PERIOD_NOT_READY)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Security note: Used for BOTH genuinely missing records AND cross-tenant
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "Customer", "RetainerPeriod").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    code = "ERR_NOT_FOUND"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (e.g. invalid lifecycle edge, skipping a required checklist item,
    closing a period before its end date).

    Args:
        message: Human-readable explanation of what failed.
        code: Machine-readable code (``E.*`` constant) surfaced to the caller.
        details: Optional structured breakdown for API responses.
    """

    default_code = "ERR_VALIDATION_CONSTRAINT"

    def __init__(self, message: str, code: str | None = None, details: dict | None = None) -> None:
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)


class DependencyError(ValidationError):
    """A ValidationError naming one or more unmet prerequisites.

    Raised by gated writers when their final prerequisite check fails.
    ``violations`` holds the serialised violation list so the caller can
    surface each resolution hint and re-check after fixing.
    """

    default_code = "ERR_PREREQUISITE_UNMET"

    def __init__(
        self,
        message: str,
        violations: list[dict] | None = None,
        resolution: str | None = None,
        code: str | None = None,
    ) -> None:
        self.violations = violations or []
        self.resolution = resolution
        details = {"violations": self.violations}
        if resolution:
            details["resolution"] = resolution
        super().__init__(message, code=code, details=details)


class ConflictError(Exception):
    """Raised when a write loses against the current state of the row.

    Covers stale optimistic-lock versions, already-closed periods, duplicate
    live retainers and duplicate checklist instances. Callers must re-fetch
    and decide whether to retry; nothing is retried automatically.

    Maps to HTTP 409.
    """

    default_code = "ERR_CONFLICT_STATE"

    def __init__(self, message: str, code: str | None = None, details: dict | None = None) -> None:
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)


class ReconciliationError(Exception):
    """Persistence failed in the middle of a period close.

    The session has already been rolled back when this is raised, so no
    partial close is visible. Maps to HTTP 500.
    """

    code = "ERR_DATABASE"
