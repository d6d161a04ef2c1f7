"""
Directory change source for the S3 folder watcher.

Wraps a watchdog Observer on a single directory (non-recursive by default)
and turns raw filesystem notifications into ChangeEvents delivered to a
callback on the observer thread.
"""
import os
import threading
from typing import Callable, Optional

from loguru import logger
from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from ..exceptions import WatchRuntimeError, WatchSetupError
from ..models.data_models import ChangeEvent, OperationKind


class ChangeEventHandler(FileSystemEventHandler):
    """Watchdog handler that normalizes file events into ChangeEvents."""

    def __init__(self, on_event: Callable[[ChangeEvent], None]):
        super().__init__()
        self._on_event = on_event

    def _emit(self, kind: OperationKind, path) -> None:
        event = ChangeEvent(operation_kind=kind, path=os.fsdecode(path))
        try:
            self._on_event(event)
        except Exception:
            logger.exception(f"Error delivering change event {event}")

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._emit(OperationKind.CREATE, event.src_path)

    def on_modified(self, event: FileModifiedEvent) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._emit(OperationKind.WRITE, event.src_path)

    def on_deleted(self, event: FileDeletedEvent) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._emit(OperationKind.REMOVE, event.src_path)

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._emit(OperationKind.RENAME, event.src_path)


class EventSource:
    """
    Watches one directory and feeds ChangeEvents to a callback.

    The observer is supervised: when its threads die unexpectedly the watch
    is re-established up to ``max_restarts`` times before a WatchRuntimeError
    is raised from ``supervise``.

    Usage:
        source = EventSource("/data/outgoing", router.route)
        source.start()
        source.supervise(stop_event)
        source.stop()
    """

    def __init__(
        self,
        directory: str,
        on_event: Callable[[ChangeEvent], None],
        recursive: bool = False,
        max_restarts: int = 3,
        restart_delay: float = 1.0,
        poll_interval: float = 1.0,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.directory = directory
        self._recursive = recursive
        self._max_restarts = max_restarts
        self._restart_delay = restart_delay
        self._poll_interval = poll_interval
        self._observer_factory = observer_factory
        self._handler = ChangeEventHandler(on_event)
        self._observer: Optional[Observer] = None
        self._lock = threading.Lock()
        self._stopped = False
        self.restarts = 0

    # ---- lifecycle ----

    def start(self) -> None:
        """
        Start watching the directory.

        Raises:
            WatchSetupError: If the directory is missing or cannot be watched
        """
        with self._lock:
            self._stopped = False
            self._observer = self._start_observer()
        logger.info(f"Watching '{self.directory}' (recursive={self._recursive})")

    def _start_observer(self) -> Observer:
        if not os.path.isdir(self.directory):
            raise WatchSetupError(f"Watch directory does not exist: {self.directory}")

        observer = self._observer_factory()
        try:
            observer.schedule(self._handler, self.directory, recursive=self._recursive)
            observer.start()
        except OSError as e:
            self._release(observer)
            raise WatchSetupError(f"Cannot watch {self.directory}: {e}") from e
        return observer

    @staticmethod
    def _release(observer: Observer) -> None:
        try:
            observer.stop()
            if observer.is_alive():
                observer.join(timeout=5)
        except Exception as e:
            logger.warning(f"Error releasing directory watch: {e}")

    def stop(self) -> None:
        """Stop watching and release the OS watch handle. Safe to call twice."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            observer, self._observer = self._observer, None
        if observer is not None:
            self._release(observer)
        logger.info("Directory watch stopped")

    @property
    def is_running(self) -> bool:
        """Return whether the observer and all of its emitters are alive."""
        observer = self._observer
        if observer is None or not observer.is_alive():
            return False
        return all(emitter.is_alive() for emitter in observer.emitters)

    # ---- supervision ----

    def supervise(self, stop_event: threading.Event) -> None:
        """
        Block until ``stop_event`` is set, re-establishing a failed watch.

        Raises:
            WatchRuntimeError: If the watch cannot be re-established
        """
        while not stop_event.wait(self._poll_interval):
            if self._stopped or self.is_running:
                continue
            logger.error(f"Directory watch on '{self.directory}' failed, reconnecting")
            self._restart(stop_event)

    def _restart(self, stop_event: threading.Event) -> None:
        with self._lock:
            failed, self._observer = self._observer, None
        if failed is not None:
            self._release(failed)

        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_restarts + 1):
            if stop_event.wait(self._restart_delay):
                return
            try:
                observer = self._start_observer()
            except WatchSetupError as e:
                last_error = e
                logger.warning(f"Watch restart attempt {attempt}/{self._max_restarts} failed: {e}")
                continue
            with self._lock:
                if self._stopped:
                    self._release(observer)
                    return
                self._observer = observer
            self.restarts += 1
            logger.info(f"Directory watch re-established on attempt {attempt}")
            return

        raise WatchRuntimeError(
            f"Directory watch on '{self.directory}' lost after "
            f"{self._max_restarts} restart attempts: {last_error}"
        )
