"""Error kinds raised by the image backup engine.

All errors derive from `ImageBackupError` so the orchestrator can record them per
scaling group. `ConfigurationError` is the only kind that aborts an entire invocation.
"""

__all__ = [
    "ImageBackupError",
    "ConfigurationError",
    "ResourceNotFoundError",
    "RemoteOperationFailedError",
    "PollError",
    "PollTimeoutError",
    "PollFailedError",
]

from typing import Any, Optional

from aibs_informatics_core.exceptions import ApplicationException


class ImageBackupError(ApplicationException):
    pass


class ConfigurationError(ImageBackupError):
    """Required configuration is missing or invalid."""


class ResourceNotFoundError(ImageBackupError):
    """A scaling group, in-service instance or image could not be found."""


class RemoteOperationFailedError(ImageBackupError):
    """A provider call returned an error.

    Attributes:
        operation: Name of the gateway operation that failed.
        region: Region the call was scoped to.
        error_code: Provider error code, if one was returned.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        region: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.region = region
        self.error_code = error_code


class PollError(ImageBackupError):
    def __init__(self, message: str, last_status: Any = None, attempts: int = 0):
        super().__init__(message)
        self.last_status = last_status
        self.attempts = attempts


class PollTimeoutError(PollError):
    """Terminal state was not reached within the attempt budget."""


class PollFailedError(PollError):
    """The polled resource reached a terminal failure state."""
