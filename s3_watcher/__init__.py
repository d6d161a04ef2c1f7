"""
S3 Folder Watcher - uploads files written to a local directory to an S3 bucket.
"""

from .services.watch_session import WatchSession
from .models.config import WatchConfig, S3Config
from .models.data_models import ChangeEvent, OperationKind, UploadOutcome, UploadTask, UploadStrategy

__version__ = "1.0.0"
__all__ = [
    "WatchSession",
    "WatchConfig",
    "S3Config",
    "ChangeEvent",
    "OperationKind",
    "UploadOutcome",
    "UploadTask",
    "UploadStrategy"
]
