"""
Upload executor: transfers one file to the store and confirms it landed.
"""
import threading
import time
from typing import Optional

from loguru import logger

from ..clients.s3_manager import S3Manager
from ..exceptions import (
    ConfirmationTimeout,
    ObjectTooLarge,
    SourceUnavailable,
    UploadCancelled,
    UploadError,
)
from ..models.config import WatchConfig
from ..models.data_models import UploadOutcome, UploadStrategy, UploadTask


class UploadExecutor:
    """
    Runs single-request or multipart uploads for UploadTasks.

    ``upload`` never raises: every failure is local to the task and is
    reported through the returned UploadOutcome.
    """

    def __init__(self, s3_manager: S3Manager, config: WatchConfig,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize the executor.

        Args:
            s3_manager: Store client used for put/multipart/head operations
            config: Shared read-only watch configuration
            cancel_event: Session-wide cancellation signal
        """
        self.s3_manager = s3_manager
        self.config = config
        self.cancel_event = cancel_event or threading.Event()

    def upload(self, task: UploadTask) -> UploadOutcome:
        """
        Transfer the task's file and wait for the object to become visible.

        Args:
            task: Classified upload task

        Returns:
            UploadOutcome describing success, failure or warnings
        """
        outcome = UploadOutcome(
            source_path=task.source_path,
            destination_key=task.destination_key,
            strategy=task.strategy
        )
        started = time.monotonic()
        logger.info(f"Uploading {task.strategy.value} {task.source_path} "
                    f"({task.size_bytes} bytes) to {self.config.bucket}:{task.destination_key}")

        try:
            if self.cancel_event.is_set():
                raise UploadCancelled(f"Upload of {task.source_path} cancelled before start")
            self._check_ceiling(task)
            outcome.attempts = self._transfer(task)
        except UploadError as e:
            outcome.error_kind = e.kind
            outcome.error_message = str(e)
            logger.error(f"Upload failed for {task.source_path} -> {task.destination_key}: "
                         f"{e.kind}: {e}")
            return outcome
        except Exception as e:
            outcome.error_kind = type(e).__name__
            outcome.error_message = str(e)
            logger.exception(f"Unexpected error uploading {task.source_path}")
            return outcome

        outcome.success = True
        outcome.confirmed = self._confirm(task, outcome)
        logger.info(f"Successfully uploaded {task.source_path} to "
                    f"{self.config.bucket}:{task.destination_key} "
                    f"in {time.monotonic() - started:.2f}s")
        return outcome

    def _check_ceiling(self, task: UploadTask) -> None:
        if task.strategy is UploadStrategy.MULTIPART:
            ceiling = self.config.multipart_max_size
        else:
            ceiling = self.config.single_put_max_size
        if task.size_bytes > ceiling:
            raise ObjectTooLarge(
                f"{task.source_path} is {task.size_bytes} bytes, above the "
                f"{task.strategy.value} upload limit of {ceiling} bytes"
            )

    def _transfer(self, task: UploadTask) -> int:
        """Send the file using the task's strategy and return the attempts used."""
        try:
            body = open(task.source_path, 'rb')
        except OSError as e:
            raise SourceUnavailable(f"Couldn't open {task.source_path} to upload: {e}") from e

        with body:
            if task.strategy is UploadStrategy.MULTIPART:
                result = self.s3_manager.multipart_upload(
                    task.destination_key,
                    body,
                    part_size=self.config.part_size,
                    concurrency=self.config.multipart_concurrency,
                    max_retries=self.config.max_retries + 1
                )
            else:
                result = self.s3_manager.put_object(
                    task.destination_key,
                    body,
                    max_retries=self.config.max_retries + 1
                )
        return result.get('attempts', 1)

    def _confirm(self, task: UploadTask, outcome: UploadOutcome) -> bool:
        """Wait for the object to be visible. A timeout is only a warning."""
        try:
            visible = self.s3_manager.object_exists(task.destination_key,
                                                    timeout=self.config.confirm_timeout)
        except Exception as e:
            visible = False
            logger.warning(f"Existence check failed for {task.destination_key}: {e}")

        if not visible:
            warning = ConfirmationTimeout(
                f"Object {task.destination_key} not visible after {self.config.confirm_timeout}s"
            )
            outcome.warnings.append(f"{warning.kind}: {warning}")
            logger.warning(f"Failed attempt to wait for object {task.destination_key} to exist")
        return visible
