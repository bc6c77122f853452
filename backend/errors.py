# errors.py — Domain error taxonomy with HTTP status mapping
from typing import Optional


class TaskShareError(Exception):
    """Base class for errors that map onto a stable HTTP response."""

    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(TaskShareError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(TaskShareError):
    status_code = 401
    default_message = "Authentication required"


class NotFoundError(TaskShareError):
    status_code = 404
    default_message = "Not found"


class ConflictError(TaskShareError):
    status_code = 409
    default_message = "Resource already exists"


class UnexpectedError(TaskShareError):
    status_code = 500
    default_message = "An unexpected error occurred"
