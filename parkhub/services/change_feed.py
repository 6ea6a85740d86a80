# parkhub/services/change_feed.py
"""
In-process change feed. SpaceLifecycleService publishes every committed
transition here; the SSE stream router (and anything else) subscribes.

Transitions run in FastAPI's thread pool or the sweep thread, so the
asyncio bridge hands changes to the event loop with call_soon_threadsafe.
"""

import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from parkhub.models.enums import SpaceStatus, TransitionKind
from parkhub.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SpaceChange:
    space_number: str
    kind: TransitionKind
    previous_status: SpaceStatus
    status: SpaceStatus
    updated_at: datetime

    def to_dict(self) -> dict:
        return {
            "space_number": self.space_number,
            "kind": self.kind.value,
            "previous_status": self.previous_status.value,
            "status": self.status.value,
            "updated_at": self.updated_at.isoformat(),
        }


Subscriber = Callable[[SpaceChange], None]


class SpaceChangeFeed:
    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, change: SpaceChange):
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(change)
            except Exception as e:
                # A broken observer must not affect the transition or the others
                logger.warning(f"[FEED] Subscriber {callback!r} failed on {change.space_number}: {e}")


class AsyncQueueSubscriber:
    """Bridges feed callbacks (any thread) into an asyncio.Queue owned by `loop`."""

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int = 100):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def __call__(self, change: SpaceChange):
        self.loop.call_soon_threadsafe(self._put, change)

    def _put(self, change: SpaceChange):
        try:
            self.queue.put_nowait(change)
        except asyncio.QueueFull:
            logger.warning(f"[FEED] Stream queue full. Dropping change for {change.space_number}")

    async def get(self, timeout: Optional[float] = None) -> Optional[SpaceChange]:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
