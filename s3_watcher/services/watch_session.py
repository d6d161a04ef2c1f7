"""
Watch session orchestrator: wires the directory watch, the event router, the
upload dispatcher and the upload executor together and owns their lifecycle.
"""
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from ..clients.s3_manager import S3Manager
from ..exceptions import WatchSetupError
from ..models.config import WatchConfig
from .dispatcher import UploadDispatcher
from .event_router import EventRouter
from .event_source import EventSource
from .uploader import UploadExecutor


class WatchSession:
    """
    One watch-and-upload session over a single directory.

    Threads: the watchdog observer (event source and filter), one dispatcher
    thread, and one thread per in-flight upload.
    """

    def __init__(self, config: WatchConfig, s3_manager: Optional[S3Manager] = None,
                 source_factory: Callable[..., EventSource] = EventSource):
        """
        Initialize the session with configuration.

        Args:
            config: Immutable watch configuration shared by all components
            s3_manager: Store client; created from ``config.s3`` when omitted
            source_factory: Factory for the directory event source
        """
        self.config = config
        self.s3_manager = s3_manager or S3Manager(
            config.s3,
            max_retries=config.max_retries + 1,
            backoff_factor=config.retry_backoff
        )

        self.stop_event = threading.Event()
        self.cancel_event = threading.Event()

        self.router = EventRouter(config.allowed_operations, maxsize=config.channel_size)
        self.executor = UploadExecutor(self.s3_manager, config, self.cancel_event)
        self.dispatcher = UploadDispatcher(config, self.executor)
        self.source = source_factory(
            config.watch_directory,
            self.router.route,
            recursive=config.recursive,
            max_restarts=config.max_watch_restarts,
            restart_delay=config.watch_restart_delay
        )

        self._dispatch_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._shut_down = False

        logger.info("WatchSession initialized successfully")

    def start(self) -> None:
        """
        Start the dispatcher thread and the directory watch.

        Raises:
            WatchSetupError: If the directory cannot be watched
        """
        allowed = ", ".join(sorted(kind.value for kind in self.config.allowed_operations))
        logger.info(f"Starting S3 folder watcher - directory: {self.config.watch_directory}, "
                    f"bucket: {self.config.bucket}, prefix: '{self.config.key_prefix}', "
                    f"threshold: {self.config.size_threshold} bytes, events: {allowed}")

        self._dispatch_thread = threading.Thread(
            target=self.dispatcher.run,
            args=(self.router.events(),),
            daemon=True,
            name="UploadDispatcher"
        )
        self._dispatch_thread.start()

        try:
            self.source.start()
        except WatchSetupError as e:
            logger.error(f"Watch setup failed: {e}")
            self.shutdown()
            raise

    def run(self, drain_timeout: Optional[float] = None) -> None:
        """
        Watch until ``stop`` is called or a fatal watch error occurs.

        In-flight uploads are drained before returning, on every exit path.
        """
        self.start()
        try:
            self.source.supervise(self.stop_event)
        finally:
            self.shutdown(drain_timeout=drain_timeout)

    def stop(self) -> None:
        """Request a graceful stop of ``run``."""
        logger.info("Stop requested")
        self.stop_event.set()

    def shutdown(self, cancel_pending: bool = False,
                 drain_timeout: Optional[float] = None) -> List[Future]:
        """
        Stop accepting events, release the watch and drain uploads.

        Args:
            cancel_pending: Set the shared cancellation signal so uploads that
                have not started transferring give up
            drain_timeout: Seconds to wait for in-flight uploads

        Returns:
            Futures of uploads still running after the drain timeout
        """
        with self._lock:
            if self._shut_down:
                return self.dispatcher.in_flight
            self._shut_down = True

        self.stop_event.set()
        self.source.stop()
        self.router.close()
        if self._dispatch_thread is not None:
            self._dispatch_thread.join()

        if cancel_pending:
            self.cancel_event.set()

        pending = self.dispatcher.drain(drain_timeout)
        logger.info(f"Watch session stopped - {self.stats()}")
        return pending

    def stats(self) -> Dict[str, Any]:
        """Snapshot of session counters."""
        return {
            'events_accepted': self.router.accepted,
            'events_rejected': self.router.rejected,
            'uploads_dispatched': self.dispatcher.dispatched,
            'files_skipped': self.dispatcher.skipped,
            'tasks_failed_before_upload': self.dispatcher.failed,
            'uploads_in_flight': len(self.dispatcher.in_flight),
            'watch_restarts': self.source.restarts
        }
