"""
Models package for the S3 folder watcher.
"""
from .data_models import ChangeEvent, OperationKind, UploadOutcome, UploadStrategy, UploadTask
from .config import S3Config, WatchConfig

__all__ = [
    'ChangeEvent',
    'OperationKind',
    'UploadOutcome',
    'UploadStrategy',
    'UploadTask',
    'S3Config',
    'WatchConfig'
]
