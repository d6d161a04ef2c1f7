"""
Event filter and hand-off channel between the directory watch and the dispatcher.
"""
import queue
import threading
from typing import AbstractSet, Iterator

from loguru import logger

from ..models.data_models import ChangeEvent, OperationKind

_CLOSED = object()


def should_forward(event: ChangeEvent, allowed_kinds: AbstractSet[OperationKind]) -> bool:
    """Return True when the event's operation kind is in the allow-list."""
    return event.operation_kind in allowed_kinds


class EventRouter:
    """
    Forwards allowed ChangeEvents, in arrival order, onto a bounded channel.

    A full channel blocks the producer instead of dropping events, so a slow
    consumer stalls the watch rather than losing upload triggers.
    """

    def __init__(self, allowed_kinds: AbstractSet[OperationKind], maxsize: int = 1024):
        self.allowed_kinds = frozenset(allowed_kinds)
        self._channel = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._closed = False
        self.accepted = 0
        self.rejected = 0

    def route(self, event: ChangeEvent) -> bool:
        """
        Forward the event if allowed.

        Returns:
            bool: True if the event was forwarded, False if dropped
        """
        if not should_forward(event, self.allowed_kinds):
            self.rejected += 1
            logger.debug(f"Filtered out {event.operation_kind.value} event for {event.path}")
            return False

        # Held across the put so no event can land behind the close marker.
        with self._lock:
            if self._closed:
                logger.debug(f"Router closed, ignoring {event.operation_kind.value} {event.path}")
                return False
            self._channel.put(event)
            self.accepted += 1
        logger.debug(f"Accepted {event.operation_kind.value} event for {event.path}")
        return True

    def close(self) -> None:
        """Mark the end of the event sequence. Only the first call has an effect."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._channel.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of events waiting in the channel."""
        return self._channel.qsize()

    def events(self) -> Iterator[ChangeEvent]:
        """Yield forwarded events until the router is closed."""
        while True:
            item = self._channel.get()
            if item is _CLOSED:
                return
            yield item

    __iter__ = events
