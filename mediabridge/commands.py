# mediabridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Inbound command handling.

CommandRouter turns (topic, payload) pairs from the broker into PlayerCommands:

  <base>/set_volume   bare float, e.g. "0.42"            → volume_set(0.42)
  <base>/command      "play" | "pause" | "playpause" | "next" | "previous"
                      or, for older automations, JSON tried in this order:
                        1. {"volume_level": 0.42}             → volume_set
                        2. {"command": "media_stop", "value": ...}
                        3. {"volume_mute": true}  (any command name as key)
                      or a bare command name, e.g. "media_stop"

CommandExecutor runs them: volume commands against the VolumeMonitor,
playback commands through the media-control helper.  After every routed
command the state is republished once the action has had time to settle.
"""

import asyncio
import json
import logging
import math

from .lib.errors import ExecutorUnavailable, StreamFailure
from .lib.models import CommandResponse, PlayerCommand
from .lib.process import run_process

logger = logging.getLogger("media-bridge.ha")

SETTLE_DELAY = 0.1  # seconds between executing a command and republishing

# Literal payloads Home Assistant sends on the command topic
TOKENS = {
    "play": PlayerCommand.PLAY,
    "pause": PlayerCommand.PAUSE,
    "playpause": PlayerCommand.PLAY_PAUSE,
    "next": PlayerCommand.NEXT,
    "previous": PlayerCommand.PREVIOUS,
}

_COMMANDS_BY_NAME = {command.value: command for command in PlayerCommand}


def _is_number(value) -> bool:
    # json.loads accepts NaN and Infinity
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def parse_volume(payload: str) -> float | None:
    """Parse a bare float payload; None if it is not a finite number."""
    try:
        level = float(payload)
    except (TypeError, ValueError):
        return None
    return level if math.isfinite(level) else None


def parse_command_payload(payload: str):
    """Parse a non-token command payload into ``(command, value)`` or None.

    The JSON shapes are checked in priority order; the first match wins.
    """
    try:
        data = json.loads(payload)
    except ValueError:
        data = None

    if not isinstance(data, dict):
        command = _COMMANDS_BY_NAME.get(payload)
        return (command, None) if command else None

    level = data.get("volume_level")
    if _is_number(level):
        return PlayerCommand.VOLUME_SET, float(level)

    name = data.get("command")
    if isinstance(name, str) and name in _COMMANDS_BY_NAME:
        return _COMMANDS_BY_NAME[name], data.get("value")

    for command in PlayerCommand:
        if command.value in data:
            return command, data[command.value]

    return None


class CommandExecutor:
    """Executes PlayerCommands against the volume monitor and the helper."""

    def __init__(self, volume_monitor, helper_path: str | None, runner=run_process):
        self._volume = volume_monitor
        self.helper_path = helper_path
        self._runner = runner

    async def execute(self, command: PlayerCommand, value=None) -> CommandResponse:
        logger.info("Executing command: %s", command.value)
        if command.is_volume_command:
            return await self._execute_volume(command, value)
        return await self._execute_media(command)

    async def _execute_volume(self, command: PlayerCommand, value) -> CommandResponse:
        if command is PlayerCommand.VOLUME_SET:
            if not _is_number(value):
                return CommandResponse.failure(command, "Invalid volume level")
            await self._volume.set_volume(float(value))
        elif command is PlayerCommand.VOLUME_UP:
            await self._volume.increase()
        elif command is PlayerCommand.VOLUME_DOWN:
            await self._volume.decrease()
        elif command is PlayerCommand.VOLUME_MUTE:
            await self._volume.toggle_mute()
        return CommandResponse.ok(command)

    async def _execute_media(self, command: PlayerCommand) -> CommandResponse:
        if self.helper_path is None:
            return CommandResponse.failure(command, str(ExecutorUnavailable()))

        subcommand = command.helper_subcommand
        if subcommand is None:
            return CommandResponse.failure(
                command, f"No media-control mapping for {command.value}")

        try:
            await self._runner(self.helper_path, [subcommand])
        except StreamFailure as e:
            return CommandResponse.failure(command, str(e))
        return CommandResponse.ok(command)


class CommandRouter:
    """Classifies inbound broker messages and dispatches them."""

    def __init__(self, config, executor: CommandExecutor, republish,
                 settle_delay: float = SETTLE_DELAY):
        self._config = config
        self._executor = executor
        self._republish = republish
        self.settle_delay = settle_delay
        self._tasks: set[asyncio.Task] = set()

    def update_configuration(self, config):
        self._config = config

    def classify(self, topic: str, payload: str):
        """Return ``(command, value)`` for a message, or None to drop it."""
        if topic == self._config.volume_command_topic:
            level = parse_volume(payload)
            if level is None:
                logger.warning("Ignoring malformed volume payload: %r", payload)
                return None
            return PlayerCommand.VOLUME_SET, level

        if topic != self._config.command_topic:
            logger.debug("Ignoring message on unrelated topic %s", topic)
            return None

        command = TOKENS.get(payload.lower())
        if command is not None:
            return command, None

        routed = parse_command_payload(payload)
        if routed is None:
            logger.warning("Unknown command: %s", payload)
        return routed

    async def handle_message(self, topic: str, payload: str):
        """Broker message handler; returns the dispatch task, if any."""
        logger.info("Received command on %s: %s", topic, payload)
        routed = self.classify(topic, payload)
        if routed is None:
            return None
        command, value = routed
        task = asyncio.create_task(self._dispatch(command, value))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def execute(self, command: PlayerCommand, value=None) -> CommandResponse:
        """Run a command directly (local API) with the same republish behaviour."""
        return await self._dispatch(command, value)

    async def _dispatch(self, command: PlayerCommand, value) -> CommandResponse:
        try:
            response = await self._executor.execute(command, value)
        except Exception as e:
            logger.exception("Command %s raised", command.value)
            response = CommandResponse.failure(command, str(e))

        if response.success:
            logger.debug("Command executed: %s", command.value)
        else:
            logger.warning("Command failed: %s (%s)", command.value, response.error)

        # Let the player react before reading state back
        await asyncio.sleep(self.settle_delay)
        try:
            await self._republish()
        except Exception:
            logger.exception("Republish after %s failed", command.value)
        return response

    async def close(self):
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
