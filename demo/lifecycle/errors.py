"""Error taxonomy for grievance lifecycle operations.

Every error carries the HTTP status the transport layer should answer with
and a message that is safe to show to the caller.
"""


class GrievanceError(Exception):
    status_code = 500
    public_message = None

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    @property
    def detail(self) -> str:
        return self.public_message or self.message


class ValidationError(GrievanceError):
    """Bad input: empty title or description, invalid day count."""
    status_code = 400


class ForbiddenError(GrievanceError):
    """Action blocked by a lifecycle rule, e.g. the dispute threshold."""
    status_code = 403


class NotFoundError(GrievanceError):
    status_code = 404

    def __init__(self, message: str = "Grievance not found"):
        super().__init__(message)


class ConflictError(GrievanceError):
    """The record changed between read and write."""
    status_code = 409

    def __init__(self, message: str = "Grievance was modified concurrently, please retry"):
        super().__init__(message)


class TransientError(GrievanceError):
    """Store or network failure. The message is logged, never returned."""
    status_code = 500
    public_message = "Server error"

    def __init__(self, message: str = "", pending=None):
        super().__init__(message)
        # A timed-out store call keeps running; this future resolves when it ends.
        self.pending = pending
