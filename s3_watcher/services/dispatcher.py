"""
Upload dispatcher: turns filtered change events into classified upload tasks
and launches each one on its own thread without waiting for it.
"""
import os
import posixpath
import threading
from concurrent.futures import Future, wait
from typing import Iterable, List, Optional, Set

from loguru import logger

from ..exceptions import SourceUnavailable
from ..models.config import WatchConfig
from ..models.data_models import ChangeEvent, UploadOutcome, UploadStrategy, UploadTask
from .uploader import UploadExecutor


def build_destination_key(prefix: str, path: str) -> str:
    """
    Build the object key for a file: the key prefix joined with its base name.

    Only the base filename is used, so absolute and relative spellings of the
    same file give the same key.
    """
    filename = os.path.basename(path)
    if not prefix:
        return filename
    return posixpath.normpath(posixpath.join(prefix, filename)).lstrip('/')


def classify(size_bytes: int, threshold: int) -> Optional[UploadStrategy]:
    """
    Pick the upload strategy for a file size.

    Returns:
        None for empty files, MULTIPART above the threshold, SINGLE otherwise
    """
    if size_bytes == 0:
        return None
    if size_bytes > threshold:
        return UploadStrategy.MULTIPART
    return UploadStrategy.SINGLE


def _completed(outcome: UploadOutcome) -> Future:
    future = Future()
    future.set_result(outcome)
    return future


class UploadDispatcher:
    """Consumes filtered events and fans uploads out to tracked threads."""

    def __init__(self, config: WatchConfig, executor: UploadExecutor):
        self.config = config
        self.executor = executor
        self._in_flight: Set[Future] = set()
        self._lock = threading.Lock()
        self.dispatched = 0
        self.skipped = 0
        self.failed = 0

    def prepare(self, event: ChangeEvent) -> UploadTask:
        """
        Resolve, stat and classify the file behind an event.

        Returns:
            UploadTask for the file; its strategy is None for empty files

        Raises:
            SourceUnavailable: If the path cannot be resolved or stat'ed
        """
        try:
            source_path = os.path.abspath(event.path)
        except (OSError, ValueError) as e:
            raise SourceUnavailable(f"Unable to get absolute path for {event.path}: {e}") from e

        try:
            size_bytes = os.stat(source_path).st_size
        except (OSError, ValueError) as e:
            raise SourceUnavailable(f"Unable to get file info for {source_path}: {e}") from e

        return UploadTask(
            source_path=source_path,
            destination_key=build_destination_key(self.config.key_prefix, source_path),
            size_bytes=size_bytes,
            strategy=classify(size_bytes, self.config.size_threshold)
        )

    def dispatch(self, event: ChangeEvent) -> Future:
        """
        Launch the upload for one event without waiting for it.

        Returns:
            Future resolving to the event's UploadOutcome; already resolved
            for skipped files and task-local failures
        """
        try:
            task = self.prepare(event)
        except SourceUnavailable as e:
            self.failed += 1
            logger.warning(f"Dropping event for {event.path}: {e}")
            return _completed(UploadOutcome.failed(event.path, e))

        if task.strategy is None:
            self.skipped += 1
            logger.info(f"Skipping empty file {os.path.basename(task.source_path)}")
            return _completed(UploadOutcome(
                source_path=task.source_path,
                destination_key=task.destination_key,
                success=True,
                skipped=True
            ))

        future = Future()
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._forget)

        thread = threading.Thread(
            target=self._run_task,
            args=(task, future),
            daemon=True,
            name=f"Upload-{os.path.basename(task.source_path)}"
        )
        try:
            thread.start()
        except RuntimeError as e:
            self.failed += 1
            logger.error(f"Could not start upload thread for {task.source_path}: {e}")
            future.set_result(UploadOutcome.failed(task.source_path, e,
                                                   destination_key=task.destination_key,
                                                   strategy=task.strategy))
            return future
        self.dispatched += 1
        return future

    def _run_task(self, task: UploadTask, future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            outcome = self.executor.upload(task)
        except Exception as e:
            logger.exception(f"Upload task crashed for {task.source_path}")
            outcome = UploadOutcome.failed(task.source_path, e,
                                           destination_key=task.destination_key,
                                           strategy=task.strategy)
        future.set_result(outcome)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._in_flight.discard(future)

    def run(self, events: Iterable[ChangeEvent]) -> None:
        """Dispatch every event until the sequence ends."""
        logger.info("Upload dispatcher started")
        for event in events:
            try:
                self.dispatch(event)
            except Exception:
                logger.exception(f"Error dispatching event {event}")
        logger.info(f"Upload dispatcher stopped - dispatched: {self.dispatched}, "
                    f"skipped: {self.skipped}, failed: {self.failed}")

    @property
    def in_flight(self) -> List[Future]:
        with self._lock:
            return list(self._in_flight)

    def drain(self, timeout: Optional[float] = None) -> List[Future]:
        """
        Wait for all in-flight uploads to finish.

        Returns:
            Futures still pending when the timeout expired
        """
        pending = self.in_flight
        if not pending:
            return []
        logger.info(f"Waiting for {len(pending)} in-flight upload(s)")
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} upload(s) still running after drain timeout")
        return list(not_done)
