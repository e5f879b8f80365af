"""
Watch event streams.

A Watch is an async iterator of WatchEvent notifications. Delivery is
at-least-once and unordered across kinds; within one watch, events come out
in the order they were put in.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ipclaim.utils.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """Watch notification types."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class WatchEvent:
    """
    A single notification carrying the full object.

    Attributes:
        type: Kind of change
        obj: Object state after the change (last known state for DELETED)
    """
    type: EventType
    obj: Any


_CLOSED = object()


class Watch:
    """Async iterator over the events of one watch subscription."""

    def __init__(self, kind: str, maxsize: int = 0):
        self.kind = kind
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, event: WatchEvent) -> None:
        """Deliver an event. Events for a closed watch are discarded."""
        if self._closed:
            return
        self._queue.put_nowait(event)

    def stop(self) -> None:
        """
        Close the watch.

        Pending events are discarded and a consumer blocked in iteration
        wakes up and finishes.
        """
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        logger.debug("Watch stopped", kind=self.kind)

    def __aiter__(self) -> "Watch":
        return self

    async def __anext__(self) -> WatchEvent:
        if self._closed:
            raise StopAsyncIteration
        event: Optional[Any] = await self._queue.get()
        if event is _CLOSED or self._closed:
            raise StopAsyncIteration
        return event
