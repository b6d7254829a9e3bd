"""
Exception hierarchy for the relay kernel.
"""


class LobsterError(Exception):
    """Base class for all relay kernel errors."""


class ConfigurationError(LobsterError):
    """A collaborator or setting required at bootstrap is missing."""


class ValidationError(LobsterError):
    """A message packet is malformed and must not enter the queue."""


class RateLimitExceeded(LobsterError):
    """A channel sent more messages than its window allows."""

    def __init__(self, message: str, retry_after_seconds: int):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class TransientRemoteError(LobsterError):
    """A remote call failed in a way that is worth retrying."""


class RemoteRequestError(LobsterError):
    """A remote call was rejected; retrying it will not help."""


class RetryExhausted(LobsterError):
    """
    All retry attempts for an operation failed.

    Attributes:
        last_error: The exception raised by the final attempt.
        attempts: Number of attempts made.
    """

    def __init__(self, message: str, last_error: BaseException, attempts: int):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class QueueIOError(LobsterError):
    """A durable queue read or move failed."""


class SessionPersistError(LobsterError):
    """The session snapshot could not be written to disk."""
