"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class ConflictException(AppException):
    """Conflict exception.

    Raised when a compare-and-swap write loses against a concurrent change,
    or when a uniqueness constraint rejects an insert.
    """

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class InvalidTransitionException(AppException):
    """Requested status transition is not permitted.

    Carries the current and attempted status so callers can surface the
    rejection verbatim.
    """

    def __init__(self, current: str, target: str, role: str | None = None, detail: str | None = None):
        """Initialize with 409 status code."""
        self.current = current
        self.target = target
        self.role = role
        message = f"Cannot transition appointment from {current} to {target}"
        if role:
            message += f" as {role}"
        if detail:
            message += f": {detail}"
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class ExternalServiceException(AppException):
    """Store or user directory unavailable."""

    def __init__(self, message: str = "External service unavailable"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)


class NotificationFailure(Exception):
    """A best-effort email could not be sent.

    Never propagated to callers of a transition; collected and reported as a
    warning next to the committed result.
    """

    def __init__(self, appointment_id: int, effect: str, message: str):
        self.appointment_id = appointment_id
        self.effect = effect
        self.message = message
        super().__init__(message)
