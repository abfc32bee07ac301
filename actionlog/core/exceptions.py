"""
Service-layer exception hierarchy.

Services raise these; blueprints register one handler per type and map them
to HTTP status codes:

    NotFoundError        → 404
    ValidationError      → 422
    AuthorizationError   → 403
    StateConflictError   → 409
    ConflictError        → 409

Usage:
    from actionlog.core.exceptions import NotFoundError, AuthorizationError

    raise NotFoundError(resource="ActionLog", resource_id=42)
    raise AuthorizationError("Only the team leader may change the status")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model name (e.g. "ActionLog", "Delegation").
        resource_id: The PK that was looked up.
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
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(Exception):
    """Raised when the acting user may not perform the requested operation.

    No state is changed when this is raised. ``code`` is a short
    machine-readable reason the client can branch on.
    """

    def __init__(self, message: str, code: str = "FORBIDDEN") -> None:
        self.code = code
        super().__init__(message)


class StateConflictError(Exception):
    """Raised when an operation is not legal from the resource's current state.

    Args:
        message: Explanation including the current state.
        current_state: The state the resource was found in.
    """

    def __init__(self, message: str, current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")
