"""
Error taxonomy for the field-service core.

Validation errors are raised before any write. Backend errors wrap
failures reported by the data backend; ``transient`` marks failures worth
retrying (connection drops, timeouts).
"""


class FieldServiceError(Exception):
    """Base class for all errors raised by the core"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FieldServiceError):
    """Input rejected before any write was attempted"""


class InvalidTransitionError(ValidationError):
    """Requested status change is not allowed from the current status"""


class BackendError(FieldServiceError):
    """Read or write failure reported by the data backend"""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class RecordNotFoundError(BackendError):
    """No row matched the given identity"""


class ConflictError(BackendError):
    """Unique constraint violation"""


class DataNotReadyError(FieldServiceError):
    """No session yet, or the initial bulk load is still running"""
