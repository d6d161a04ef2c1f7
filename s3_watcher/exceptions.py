"""
Error taxonomy for the S3 folder watcher.

Fatal errors terminate the watch session. Upload errors are task-local:
they are captured in an UploadOutcome and never leave the upload thread.
"""
from typing import Optional


class S3WatcherError(Exception):
    """Base class for all watcher errors."""

    subsystem = "watcher"
    fatal = False


class ConfigurationError(S3WatcherError):
    """Raised when the configuration cannot be loaded or is invalid."""

    subsystem = "config"
    fatal = True

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "Invalid configuration")


class WatchSetupError(S3WatcherError):
    """The watch directory is missing or cannot be watched."""

    subsystem = "watcher"
    fatal = True


class WatchRuntimeError(S3WatcherError):
    """The OS notification channel failed and could not be re-established."""

    subsystem = "watcher"
    fatal = True


class UploadError(S3WatcherError):
    """Base class for task-local upload failures."""

    subsystem = "uploader"
    kind = "UploadError"


class SourceUnavailable(UploadError):
    """The source file vanished or could not be read before upload."""

    kind = "SourceUnavailable"


class TransferError(UploadError):
    """I/O or transport failure while sending data to the store."""

    kind = "TransferError"

    def __init__(self, message: str, transient: bool = False, code: Optional[str] = None):
        super().__init__(message)
        self.transient = transient
        self.code = code


class ObjectTooLarge(TransferError):
    """The object exceeds the store ceiling for the chosen strategy. Never retried."""

    kind = "ObjectTooLarge"

    def __init__(self, message: str, code: Optional[str] = "EntityTooLarge"):
        super().__init__(message, transient=False, code=code)


class UploadCancelled(UploadError):
    """The session was cancelled before the upload could run."""

    kind = "UploadCancelled"


class ConfirmationTimeout(S3WatcherError):
    """The uploaded object did not become visible in time. Warning only."""

    subsystem = "uploader"
    kind = "ConfirmationTimeout"
