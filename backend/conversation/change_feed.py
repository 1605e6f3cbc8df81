from __future__ import annotations

import asyncio
import logging
import threading
from typing import Hashable

logger = logging.getLogger(__name__)


class FeedListener:
    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop
        self.queue: asyncio.Queue[bool] = asyncio.Queue()

    def wake(self, closing: bool = False) -> bool:
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, closing)
        except RuntimeError:
            # Owning loop already closed.
            return False
        return True


class ChangeFeed:
    """Per-scope change notifications for live history subscriptions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[Hashable, set[FeedListener]] = {}

    def register(self, scope: Hashable) -> FeedListener:
        listener = FeedListener(asyncio.get_running_loop())
        with self._lock:
            self._listeners.setdefault(scope, set()).add(listener)
        return listener

    def unregister(self, scope: Hashable, listener: FeedListener) -> None:
        with self._lock:
            listeners = self._listeners.get(scope)
            if not listeners:
                return
            listeners.discard(listener)
            if not listeners:
                del self._listeners[scope]

    def listener_count(self, scope: Hashable) -> int:
        with self._lock:
            return len(self._listeners.get(scope, ()))

    def publish(self, scope: Hashable) -> None:
        with self._lock:
            listeners = list(self._listeners.get(scope, ()))
        for listener in listeners:
            if not listener.wake():
                logger.debug("dropping listener with closed loop for %s", scope)
                self.unregister(scope, listener)
