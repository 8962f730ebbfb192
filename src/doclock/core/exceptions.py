"""Custom exceptions for doclock.

All exception classes carry a short message plus optional details so log
lines and CLI output stay actionable.
"""


class DocLockError(Exception):
    """Base exception for all doclock errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(DocLockError):
    """Exception raised for configuration-related errors.

    Examples:
        - Unknown store backend
        - Owner token equal to the free sentinel
        - Empty target set
    """

    def __init__(self, message: str, field: str | None = None, details: str | None = None):
        self.field = field
        super().__init__(message, details)


class StoreUnavailable(DocLockError):
    """Exception raised when a document store call cannot complete.

    Wraps driver and network failures. ``operation`` names the store call
    that failed (``update_many``, ``bulk_write``, ``find`` or ``seed``); the
    log context of the caller tells which protocol phase issued it.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: str | None = None,
        original_error: Exception | None = None,
    ):
        self.operation = operation
        self.original_error = original_error
        super().__init__(message, details)

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"during {self.operation}")
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)


class PartialMutationAnomaly(DocLockError):
    """Raised when fewer records were updated than were confirmed locked.

    This should never happen while the caller holds every lock, so it
    points at a logic error or a broken ownership invariant.

    Attributes:
        expected: Number of records locked for the attempt
        actual: Number of records the payload write reported as updated
    """

    def __init__(self, expected: int, actual: int, owner_token: str | None = None):
        self.expected = expected
        self.actual = actual
        self.owner_token = owner_token

        message = f"Payload write updated {actual} of {expected} locked records"
        details = f"owner {owner_token}" if owner_token else None
        super().__init__(message, details)


class LockAcquisitionTimeout(DocLockError):
    """Raised when the retry loop is cancelled or runs out of time or attempts.

    Attributes:
        attempts: Number of lock attempts made before giving up
        elapsed_seconds: Wall time spent in the retry loop
        reason: What stopped the loop (cancelled, deadline, max_attempts)
    """

    def __init__(self, attempts: int, elapsed_seconds: float, reason: str = "cancelled"):
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
        self.reason = reason

        message = f"Gave up acquiring record locks after {attempts} attempt(s)"
        details = f"{reason} after {elapsed_seconds:.2f}s"
        super().__init__(message, details)
