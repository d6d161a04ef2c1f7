# Services package
from .event_source import EventSource
from .event_router import EventRouter, should_forward
from .dispatcher import UploadDispatcher, build_destination_key, classify
from .uploader import UploadExecutor
from .watch_session import WatchSession

__all__ = [
    'EventSource',
    'EventRouter',
    'should_forward',
    'UploadDispatcher',
    'build_destination_key',
    'classify',
    'UploadExecutor',
    'WatchSession'
]
