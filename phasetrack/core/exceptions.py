"""
Platform-wide exception hierarchy.

Services raise these typed errors; the API boundary maps them to HTTP status
codes once, in ``phasetrack.utils.errors.register_error_handlers``. Nothing
below the blueprint layer should build an HTTP response.

Usage:
    from phasetrack.core.exceptions import NotFoundError, InvalidTransition

    raise NotFoundError(resource="ProjectPhase", resource_id=42)
    raise InvalidTransition("approve", current="in_progress")
"""


class AppError(Exception):
    """Base class for every error the service layer raises on purpose.

    Subclasses set ``status_code`` and ``code``; ``details`` carries an
    optional structured payload for the response body.
    """

    status_code = 500
    code = "ERR_INTERNAL"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppError):
    """Input was well-formed JSON but violates a business rule or range check.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    status_code = 400
    code = "ERR_VALIDATION"


class AuthenticationError(AppError):
    """Missing, expired or invalid credentials."""

    status_code = 401
    code = "ERR_AUTHENTICATION"


class AuthorizationError(AppError):
    """The authenticated actor's role may not perform the operation."""

    status_code = 403
    code = "ERR_FORBIDDEN"

    def __init__(self, message: str = "Insufficient permissions", *,
                 operation: str | None = None, role: str | None = None) -> None:
        self.operation = operation
        self.role = role
        details = {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details)


class NotFoundError(AppError):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model name (e.g. "Project", "WorkLog").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    status_code = 404
    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidTransition(AppError):
    """A phase lifecycle action is not legal from the phase's current status."""

    status_code = 409
    code = "ERR_INVALID_TRANSITION"

    def __init__(self, action: str, current: str, reason: str | None = None) -> None:
        self.action = action
        self.current_status = current
        msg = f"Cannot '{action}' phase (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"action": action, "current_status": current})


class PhaseLocked(AppError):
    """Hours were logged against a phase that is not open for work."""

    status_code = 409
    code = "ERR_PHASE_LOCKED"

    def __init__(self, phase_id: int, status: str) -> None:
        self.phase_id = phase_id
        self.status = status
        super().__init__(
            f"Cannot log time on phase {phase_id} (status={status}). "
            "Phase must be ready, in progress, or submitted.",
            {"phase_id": phase_id, "status": status},
        )


class EarlyAccessUnavailable(AppError):
    """Early access cannot be granted or revoked in the phase's current state."""

    status_code = 409
    code = "ERR_EARLY_ACCESS"


class ConflictError(AppError):
    """The operation would break a uniqueness or referential rule.

    Args:
        resource: Model name.
        field: The field whose value conflicts.
        value: The conflicting value.
    """

    status_code = 409
    code = "ERR_CONFLICT"

    def __init__(self, resource: str, field: str, value=None, message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = message or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg, {"field": field})


class InternalError(AppError):
    """Unclassified server-side failure. The message never reaches the client."""

    status_code = 500
    code = "ERR_INTERNAL"
