"""
Error Types for the Face Login Engine

Recoverable failures (NoFaceDetected, ProviderUnavailable, NoTemplate) are
raised by the provider and the store and converted by the session into
typed attempt outcomes. The remaining errors indicate a misconfigured
deployment (DimensionMismatch) or a host calling the session in the wrong
order (InvalidTransition, AttemptInProgress) and are raised to the caller.
"""


class FaceLoginError(Exception):
    """Base class for all face login errors."""


class NoFaceDetected(FaceLoginError):
    """The embedding provider found no face in the submitted image."""

    def __init__(self, message: str = "No face detected in image"):
        super().__init__(message)


class ProviderUnavailable(FaceLoginError):
    """The embedding provider could not run (missing backend, model load error...)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NoTemplate(FaceLoginError):
    """No enrolled template is stored."""

    def __init__(self, message: str = "No enrolled face template found"):
        super().__init__(message)


class DimensionMismatch(FaceLoginError):
    """
    Stored and fresh embeddings have different lengths.

    This means the embedding provider was swapped for an incompatible one
    after enrollment. It is never reported as a denial.
    """

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: stored={expected}, fresh={actual}"
        )
        self.expected = expected
        self.actual = actual


class SessionUsageError(FaceLoginError):
    """Base class for errors caused by the host driving the session incorrectly."""


class InvalidTransition(SessionUsageError):
    """The requested operation is not allowed in the current session state."""

    def __init__(self, operation: str, state):
        super().__init__(f"Cannot {operation} while session is {state}")
        self.operation = operation
        self.state = state


class AttemptInProgress(SessionUsageError):
    """A capture was submitted while another attempt is still processing."""

    def __init__(self, message: str = "An attempt is already being processed"):
        super().__init__(message)
