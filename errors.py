class AuthError(Exception):
    """Authentication failure with a machine readable ``kind``."""

    def __init__(self, message: str, kind: str = "invalid_credentials") -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind


class ValidationError(ValueError):
    """Raised for input rejected locally before any store call."""


class RemoteError(Exception):
    """The remote store rejected a read or write."""

    def __init__(self, message: str, status: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class PartialWriteError(RemoteError):
    """A multi step save failed after the workout row was created."""

    def __init__(self, message: str, workout_id: int | None = None) -> None:
        super().__init__(message, status=500)
        self.workout_id = workout_id


class IndexOutOfRange(IndexError):
    pass


class TimedOut(Exception):
    """A remote call did not finish within the configured timeout."""
