"""
StatePublishCoordinator — coalesces bursts of state changes.

Every media or volume change (re)arms a 100 ms timer; only when the timer
fires is the full state written.  A scrubbing volume slider in Home
Assistant therefore costs one publish, not one per step.
"""

import asyncio
import logging

logger = logging.getLogger("media-bridge.ha")

DEBOUNCE_SECONDS = 0.1


class StatePublishCoordinator:
    def __init__(self, publisher, tracker, volume_monitor,
                 debounce: float = DEBOUNCE_SECONDS):
        self._publisher = publisher
        self.debounce = debounce
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = [
            tracker.add_listener(self._on_change),
            volume_monitor.add_listener(self._on_change),
        ]

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def _on_change(self, _value):
        self.schedule_publish()

    def schedule_publish(self):
        """(Re)start the debounce timer."""
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.debounce, self._fire)

    def _fire(self):
        self._handle = None
        task = asyncio.ensure_future(self.publish_now())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def publish_now(self):
        try:
            await self._publisher.publish_state()
        except Exception:
            logger.exception("State publish failed")

    def close(self):
        """Cancel a pending timer and stop observing the producers."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
