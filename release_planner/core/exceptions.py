"""
Release planner exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from release_planner.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Plan", resource_id=plan_id)
    raise ValidationError("Phase name is required", details={"phases[2].name": "required"})
"""


class NotFoundError(Exception):
    """Raised when a referenced plan, product, phase, reschedule or type does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Plan", "PlanPhase").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed body, caught in blueprint): the data
    was well-formed but violated a rule such as a version-increase invariant
    or an end date before the start date.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness constraint.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class ConcurrentModificationError(ConflictError):
    """Raised when the caller's optimistic-concurrency token is stale.

    The persisted ``updated_at`` is newer than the caller's last-known value
    beyond the configured clock-skew tolerance. Callers must re-fetch and
    resubmit; nothing retries automatically.
    """

    code = "ERR_CONFLICT_STATE"

    def __init__(self, resource: str = "Plan", resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.field = "updated_at"
        self.value = None
        Exception.__init__(
            self,
            f"{resource} was modified by another user. Please refresh and try again.",
        )
