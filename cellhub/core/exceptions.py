"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register one handler per type and
get consistent HTTP status codes everywhere (see
cellhub.blueprints.register_error_handlers).

Usage:
    from cellhub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Cell", resource_id=42)
    raise ValidationError("new_cell_name is required", details={"new_cell_name": "required"})

HTTP mapping:
    NotFoundError               404
    PermissionDeniedError       403
    InvalidStateError           409
    ConflictError               409
    ValidationError             422
    DependencyUnavailableError  503 (retryable)
    PartialFailureError         207
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-organization access.
    A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Cell", "MultiplicationProcess").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class PermissionDeniedError(Exception):
    """Raised when the actor's role does not allow the operation.

    Args:
        action: What was attempted (e.g. "approve multiplication").
        actor_id: The acting person, for logs.
    """

    def __init__(self, action: str, actor_id: int | None = None) -> None:
        self.action = action
        self.actor_id = actor_id
        super().__init__(f"Not allowed to {action}")


class InvalidStateError(Exception):
    """Raised when an operation is not allowed in the entity's current status."""

    def __init__(self, message: str, current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(message)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    The data was well-formed but violated a rule (missing plan field,
    zero or several new leaders, unknown criterion type ...). Raised before
    any write, so nothing is persisted.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on a unique-constraint clash or a lost compare-and-set race.

    Args:
        resource: Model name.
        field: The contested field (unique column, or "status" for CAS).
        value: The conflicting value (expected status for CAS).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        if field == "status":
            msg = f"{resource} is no longer in status {value!r}"
        else:
            msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class DependencyUnavailableError(Exception):
    """Raised when the store (or another collaborator) timed out or is unreachable.

    Callers may retry the whole operation.
    """

    retryable = True

    def __init__(self, message: str = "Storage temporarily unavailable") -> None:
        super().__init__(message)


class PartialFailureError(Exception):
    """Raised by batch writes when some rows were committed and others failed.

    Args:
        message: Summary.
        succeeded: Identifiers of rows that were written.
        failed: One entry per failed row: {"member_id": ..., "error": ...}.
    """

    def __init__(self, message: str, succeeded: list | None = None, failed: list | None = None) -> None:
        self.succeeded = succeeded or []
        self.failed = failed or []
        super().__init__(message)
