class EventAppError(Exception):
    """Base class for errors surfaced to API callers as a status code plus message."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EventAppError):
    """Raised when input is missing or malformed."""
    status_code = 400


class AuthenticationError(EventAppError):
    """Raised when a credential is missing, invalid or expired."""
    status_code = 401


class AuthorizationError(EventAppError):
    """Raised when the acting user does not own the resource."""
    status_code = 403


class NotFoundError(EventAppError):
    status_code = 404


class ConflictError(EventAppError):
    """Raised on duplicate membership or duplicate account email."""
    status_code = 400


class CapacityError(EventAppError):
    status_code = 400


class TimingError(EventAppError):
    """Raised when feedback is submitted before the event has taken place."""
    status_code = 400


class ServerError(EventAppError):
    status_code = 500
