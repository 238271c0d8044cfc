"""
VolumeMonitor — polls the system volume endpoint and caches the reading.

Writes (set_volume, mute) go straight through to the adapter and update the
cached reading immediately, so a read right after a write never sees the
stale pre-write value while waiting for the next poll.
"""

import asyncio
import logging
import math

from .lib.errors import VolumeUnavailable
from .lib.models import VolumeReading
from .lib.volume_adapters import VolumeAdapter

logger = logging.getLogger("media-bridge.volume")

POLL_INTERVAL = 0.5  # seconds
VOLUME_STEP = 0.05

# Adapters raise VolumeUnavailable; OSError and decode errors are treated alike
ENDPOINT_ERRORS = (VolumeUnavailable, OSError, ValueError)


def clamp(level: float) -> float:
    return max(0.0, min(1.0, float(level)))


class VolumeMonitor:
    def __init__(self, adapter: VolumeAdapter, poll_interval: float = POLL_INTERVAL):
        self._adapter = adapter
        self.poll_interval = poll_interval
        self._reading = VolumeReading()
        self._poll_task: asyncio.Task | None = None
        self._listeners: list = []

    @property
    def reading(self) -> VolumeReading:
        return self._reading

    @property
    def level(self) -> float:
        return self._reading.level

    @property
    def muted(self) -> bool:
        return self._reading.muted

    @property
    def available(self) -> bool:
        return self._reading.available

    def add_listener(self, callback):
        """Register ``callback(VolumeReading)``; returns an unsubscribe function."""
        self._listeners.append(callback)
        return lambda: self.remove_listener(callback)

    def remove_listener(self, callback):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _update(self, level: float | None = None, muted: bool | None = None,
                available: bool = True):
        old = self._reading
        new = VolumeReading(
            level=old.level if level is None else level,
            muted=old.muted if muted is None else muted,
            available=available,
        )
        self._reading = new
        if (new.level, new.muted) != (old.level, old.muted):
            logger.debug("Volume: %d%% (muted: %s)", round(new.level * 100), new.muted)
            for listener in list(self._listeners):
                try:
                    listener(new)
                except Exception:
                    logger.exception("Volume listener failed")

    def _mark_unavailable(self, action: str, error: Exception):
        if self._reading.available:
            logger.error("Failed to %s: %s", action, error)
        self._reading = VolumeReading(self._reading.level, self._reading.muted, False)

    # -- polling --

    async def start_polling(self):
        if self._poll_task is not None:
            return
        logger.info("Starting volume polling every %.1fs", self.poll_interval)
        await self.refresh()
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop_polling(self):
        task = self._poll_task
        self._poll_task = None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _poll_loop(self):
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.refresh()
            except Exception:
                logger.exception("Volume poll failed")

    async def refresh(self):
        """Read the endpoint once and publish any change."""
        try:
            level, muted = await self._adapter.read()
        except ENDPOINT_ERRORS as e:
            self._mark_unavailable("read volume", e)
            return
        if not self._reading.available:
            logger.info("Volume endpoint available again")
        self._update(clamp(level), muted)

    # -- writes --

    async def set_volume(self, level: float):
        if not math.isfinite(level):
            logger.warning("Ignoring non-finite volume level %r", level)
            return
        clamped = clamp(level)
        try:
            await self._adapter.set_volume(clamped)
        except ENDPOINT_ERRORS as e:
            self._mark_unavailable("set volume", e)
            return
        self._update(level=clamped)

    async def increase(self):
        await self.set_volume(self._reading.level + VOLUME_STEP)

    async def decrease(self):
        await self.set_volume(self._reading.level - VOLUME_STEP)

    async def set_mute(self, muted: bool):
        try:
            await self._adapter.set_muted(muted)
        except ENDPOINT_ERRORS as e:
            self._mark_unavailable("set mute", e)
            return
        self._update(muted=muted)

    async def toggle_mute(self):
        await self.set_mute(not self._reading.muted)
