"""
Service-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

    ValidationError        -> 400  missing/malformed input, not retried
    ConflictError          -> 409  one-open-pass rule violated, re-check state first
    NotFoundError          -> 404  referenced id does not exist
    InvalidStateError      -> 409  operation not valid for the current lifecycle state
    StoreUnavailableError  -> 503  transient database failure, safe to retry with backoff

Usage:
    from gatepass.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Pass", resource_id=42)
    raise ValidationError("purpose is required", details={"purpose": "required"})
"""


class GatePassError(Exception):
    """Base class for all errors raised by the pass lifecycle services."""

    http_status = 500


class ValidationError(GatePassError):
    """Raised when request input is missing or malformed.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    http_status = 400

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(GatePassError):
    """Raised when a grant would give a subject a second open pass.

    Args:
        resource: Model name.
        field: The field carrying the conflicting value.
        value: The conflicting value.
        message: Optional override for the default message.
    """

    http_status = 409

    def __init__(
        self,
        resource: str,
        field: str,
        value: int | str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class NotFoundError(GatePassError):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable model name (e.g. "Pass", "LeaveWindow").
        resource_id: The PK that was looked up.
    """

    http_status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidStateError(GatePassError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    http_status = 409

    def __init__(self, resource: str, resource_id: int | str, current: str, action: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current
        self.action = action
        super().__init__(
            f"Cannot {action} {resource} id={resource_id} (status={current})"
        )


class StoreUnavailableError(GatePassError):
    """Raised when the database cannot be reached. Callers may retry with backoff."""

    http_status = 503

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        msg = f"Store unavailable during {operation}"
        if cause is not None:
            msg += f": {cause.__class__.__name__}"
        super().__init__(msg)
