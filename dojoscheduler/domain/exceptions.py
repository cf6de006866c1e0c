"""
Domain-specific exception hierarchy for the scheduler.

Every error carries a user-facing ``public_message`` and an optional
``private_message`` meant for logs only. ``kind`` lets callers tell
"pick another slot" apart from "try again later" without isinstance chains.
"""


class SchedulerError(Exception):
    """Base class for all application-level errors."""

    status_code = 500
    kind = "server"

    def __init__(self, public_message: str, private_message: str = ""):
        super().__init__(public_message)
        self.public_message = public_message
        self.private_message = private_message

    def __str__(self) -> str:
        if self.private_message:
            return f"{self.public_message} ({self.private_message})"
        return self.public_message


class InvalidRequestError(SchedulerError):
    """Raised when a request is malformed or the caller is not eligible."""

    status_code = 400
    kind = "validation"


class NotFoundError(SchedulerError):
    """Raised when a referenced entity does not exist."""

    status_code = 404
    kind = "not_found"


class ConflictError(SchedulerError):
    """Raised when an existence condition fails on a conditional write."""

    status_code = 409
    kind = "conflict"


class TransientStoreError(SchedulerError):
    """Raised when the store fails for infrastructure reasons."""

    status_code = 500
    kind = "transient"

    def __init__(self, private_message: str = "", public_message: str = "Temporary server error"):
        super().__init__(public_message, private_message)
