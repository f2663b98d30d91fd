"""Fan-out of session snapshots to watchers."""

import asyncio
import logging
from typing import Optional

from ota_updater.models.session import SessionSnapshot


class Watcher:
    """One subscription to the notification channel.

    Each watcher owns its queue, so a slow consumer only delays itself.
    Iterating yields snapshots until the watcher is closed.
    """

    def __init__(
        self,
        channel: "NotificationChannel",
        baseline: SessionSnapshot,
        max_backlog: int,
    ):
        self._channel = channel
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[Optional[SessionSnapshot]] = asyncio.Queue()
        self._max_backlog = max_backlog
        self._closed = False
        self._overflowed = False
        self._queue.put_nowait(baseline)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def overflowed(self) -> bool:
        """True if the watcher was closed because it fell too far behind."""
        return self._overflowed

    def offer(self, snapshot: SessionSnapshot) -> bool:
        """Queue a snapshot without waiting.

        Returns:
            False if the watcher is closed or was just closed for overflow
        """
        if self._closed:
            return False
        if self._queue.qsize() >= self._max_backlog:
            self._channel.logger.warning(
                f"Watcher backlog exceeded {self._max_backlog} snapshots, "
                f"closing watcher"
            )
            self._overflowed = True
            self.close()
            return False
        self._queue.put_nowait(snapshot)
        return True

    async def next(self, timeout: Optional[float] = None) -> Optional[SessionSnapshot]:
        """Wait for the next snapshot.

        Args:
            timeout: Seconds to wait, None waits forever

        Returns:
            Next snapshot, or None once the watcher is closed

        Raises:
            asyncio.TimeoutError: If nothing arrived within timeout
        """
        if self._closed and self._queue.empty():
            return None
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def close(self) -> None:
        """Unregister and end the stream. Idempotent; event loop thread only."""
        if self._closed:
            return
        self._closed = True
        self._channel._discard(self)
        # Already queued snapshots are still delivered before the end marker
        self._queue.put_nowait(None)

    def close_threadsafe(self) -> None:
        """Close from any thread (e.g. a signal handler)."""
        self._loop.call_soon_threadsafe(self.close)

    def __aiter__(self):
        return self

    async def __anext__(self) -> SessionSnapshot:
        snapshot = await self.next()
        if snapshot is None:
            raise StopAsyncIteration
        return snapshot


class NotificationChannel:
    """Delivers every published snapshot to every registered watcher, in order."""

    def __init__(self, max_backlog: int = 256):
        self.logger = logging.getLogger("ota_updater.notification")
        self.max_backlog = max_backlog
        self._watchers: set[Watcher] = set()
        self._latest: Optional[SessionSnapshot] = None

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    def subscribe(self, baseline: Optional[SessionSnapshot] = None) -> Watcher:
        """Register a watcher; its first event is the current snapshot.

        Args:
            baseline: Snapshot to deliver first (defaults to the last published)

        Raises:
            RuntimeError: If no snapshot was ever published and none is given
        """
        baseline = baseline or self._latest
        if baseline is None:
            raise RuntimeError("No snapshot published yet")
        watcher = Watcher(self, baseline, self.max_backlog)
        self._watchers.add(watcher)
        self.logger.debug(f"Watcher subscribed ({len(self._watchers)} active)")
        return watcher

    def publish(self, snapshot: SessionSnapshot) -> None:
        """Offer a snapshot to all watchers. Never blocks."""
        self._latest = snapshot
        for watcher in list(self._watchers):
            watcher.offer(snapshot)

    def close_all(self) -> None:
        """End every watcher's stream (service shutdown)."""
        for watcher in list(self._watchers):
            watcher.close()
        self.logger.info("All watchers closed")

    def _discard(self, watcher: Watcher) -> None:
        self._watchers.discard(watcher)
        self.logger.debug(f"Watcher released ({len(self._watchers)} active)")
