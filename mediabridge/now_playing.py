# mediabridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
NowPlayingTracker — turns the media-control stream into MediaState snapshots.

Runs ``media-control stream --no-diff``, which prints one JSON object per
line:

    {"type": "data", "diff": false,
     "payload": {"bundleIdentifier": "com.spotify.client", "title": "...",
                 "artist": "...", "duration": 215.3, "elapsedTime": 12.0,
                 "playing": true, "artworkData": "<base64>",
                 "artworkMIMEType": "image/jpeg"}}

Each decoded line becomes a MediaState; listeners only hear about snapshots
that differ from the previous one.  When the helper crashes the tracker goes
idle and restarts it after RESTART_DELAY seconds.  A clean exit goes idle
without a restart.
"""

import asyncio
import json
import logging

from .lib.errors import HelperUnavailable, MalformedPayload
from .lib.models import MediaState
from .lib.process import HELPER_PATHS, ExternalProcessStream, find_executable

logger = logging.getLogger("media-bridge.media")

STREAM_ARGS = ["stream", "--no-diff"]
RESTART_DELAY = 2.0

_STRING_FIELDS = ("bundleIdentifier", "title", "artist", "album",
                  "artworkData", "artworkMIMEType")
_NUMBER_FIELDS = ("duration", "elapsedTime")


def decode_line(line: str) -> MediaState:
    """Decode one media-control output line.

    Raises MalformedPayload when the line is not a well-formed envelope.
    """
    try:
        output = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedPayload(f"invalid JSON: {e}") from e

    if not isinstance(output, dict):
        raise MalformedPayload("expected a JSON object")
    if not isinstance(output.get("type"), str) or not isinstance(output.get("diff"), bool):
        raise MalformedPayload("missing 'type' or 'diff'")
    payload = output.get("payload")
    if not isinstance(payload, dict):
        raise MalformedPayload("missing 'payload' object")

    for key in _STRING_FIELDS:
        value = payload.get(key)
        if value is not None and not isinstance(value, str):
            raise MalformedPayload(f"'{key}' is not a string")
    for key in _NUMBER_FIELDS:
        value = payload.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise MalformedPayload(f"'{key}' is not a number")
    playing = payload.get("playing")
    if playing is not None and not isinstance(playing, bool):
        raise MalformedPayload("'playing' is not a boolean")

    return MediaState.from_payload(payload)


class NowPlayingTracker:
    """Owns the media-control stream and the current MediaState."""

    def __init__(self, binary_path: str | None = None, *, search_paths=None,
                 stream_factory=ExternalProcessStream,
                 restart_delay: float = RESTART_DELAY):
        self._search_paths = list(search_paths if search_paths is not None else HELPER_PATHS)
        self.binary_path = binary_path or find_executable(self._search_paths)
        self._stream_factory = stream_factory
        self.restart_delay = restart_delay

        self._current = MediaState.IDLE
        self._stream: ExternalProcessStream | None = None
        self._stream_task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None
        self._listeners: list = []
        self._missing_reported = False

        self.running = False
        self.error: Exception | None = None

    @property
    def is_available(self) -> bool:
        return self.binary_path is not None

    @property
    def current_state(self) -> MediaState:
        return self._current

    @property
    def restart_pending(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    # -- listeners --

    def add_listener(self, callback):
        """Register ``callback(MediaState)``; returns an unsubscribe function."""
        self._listeners.append(callback)
        return lambda: self.remove_listener(callback)

    def remove_listener(self, callback):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, state: MediaState):
        if state == self._current:
            return
        self._current = state
        track = " - ".join(v for v in (state.title, state.artist) if v) or "No track"
        logger.debug("Media state: %s - %s", state.state.value, track)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Media state listener failed")

    # -- lifecycle --

    async def start(self) -> bool:
        """Start streaming Now Playing updates. Returns False if the helper is missing."""
        if self.binary_path is None:
            self.error = HelperUnavailable(self._search_paths)
            if not self._missing_reported:
                self._missing_reported = True
                logger.error("%s", self.error)
            return False

        if self.running:
            return True

        self._cancel_restart()
        logger.info("Starting media-control stream from %s", self.binary_path)
        stream = self._stream_factory()
        self._stream = stream
        self.running = True
        self.error = None
        self._stream_task = asyncio.create_task(self._consume(stream))
        return True

    async def stop(self):
        """Cancel the stream and any pending restart, then go idle."""
        self._cancel_restart()

        task = self._stream_task
        self._stream_task = None
        if self._stream is not None:
            self._stream.terminate()
            self._stream = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self.running:
            logger.info("Stopped media-control stream")
        self.running = False
        self._emit(MediaState.IDLE)

    async def restart(self) -> bool:
        await self.stop()
        return await self.start()

    # -- stream handling --

    async def _consume(self, stream: ExternalProcessStream):
        error = None
        try:
            async for line in stream.start(self.binary_path, STREAM_ARGS):
                self._handle_line(line)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        self._stream_ended(stream, error)

    def _handle_line(self, line: str):
        if not line.strip():
            return
        try:
            state = decode_line(line)
        except MalformedPayload as e:
            logger.warning("Dropping media-control line (%s): %.200s", e, line)
            return
        self._emit(state)

    def _stream_ended(self, stream: ExternalProcessStream, error: Exception | None):
        if stream is not self._stream:
            return
        self._stream = None
        self._stream_task = None
        self.running = False

        if error is not None:
            logger.error("media-control stream failed: %s", error)
            self.error = error
            self._schedule_restart()
        else:
            logger.info("media-control stream ended")

        self._emit(MediaState.IDLE)

    def _schedule_restart(self):
        self._cancel_restart()
        logger.info("Restarting media-control in %.1fs", self.restart_delay)
        self._restart_task = asyncio.create_task(self._restart_after(self.restart_delay))

    async def _restart_after(self, delay: float):
        await asyncio.sleep(delay)
        self._restart_task = None
        await self.start()

    def _cancel_restart(self):
        task = self._restart_task
        self._restart_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
