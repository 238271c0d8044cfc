"""
ALSA volume adapter — system volume via amixer.

Reads and writes the playback level and switch of one simple mixer control
(Master by default) on the default card, or on ALSA_CARD when set.

    amixer sget Master
      Front Left: Playback 42597 [65%] [on]

Override the card/control with volume.card / volume.control in config.json
or the ALSA_CARD / ALSA_CONTROL env vars.
"""

import asyncio
import logging
import os
import re

from ..errors import VolumeUnavailable
from .base import VolumeAdapter

logger = logging.getLogger("media-bridge.volume.alsa")

DEFAULT_CONTROL = "Master"

_PERCENT_RE = re.compile(r"\[(\d+(?:\.\d+)?)%\]")
_SWITCH_RE = re.compile(r"\[(on|off)\]")


def parse_amixer(output: str) -> tuple[float, bool]:
    """Return (level 0..1, muted) from ``amixer sget`` output.

    Multi-channel controls report the first channel.
    """
    level = None
    muted = False
    for line in output.splitlines():
        if level is None:
            match = _PERCENT_RE.search(line)
            if match:
                level = float(match.group(1)) / 100
                switch = _SWITCH_RE.search(line)
                muted = bool(switch and switch.group(1) == "off")
    if level is None:
        raise VolumeUnavailable("amixer output has no volume level")
    return level, muted


class AlsaVolume(VolumeAdapter):
    """Volume control via the ALSA simple mixer."""

    name = "alsa"

    def __init__(self, card: str | None = None, control: str | None = None):
        self._card = card or os.getenv("ALSA_CARD")
        self._control = control or os.getenv("ALSA_CONTROL", DEFAULT_CONTROL)

    async def _amixer(self, *args) -> str:
        """Run an amixer command and return stdout."""
        cmd = ["amixer"]
        if self._card:
            cmd += ["-c", self._card]
        cmd += list(args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except FileNotFoundError as e:
            raise VolumeUnavailable("amixer not found — install alsa-utils") from e
        except OSError as e:
            raise VolumeUnavailable(f"could not run amixer: {e}") from e
        if proc.returncode != 0:
            raise VolumeUnavailable(
                f"amixer failed (rc={proc.returncode}): {stderr.decode(errors='replace').strip()}")
        return stdout.decode(errors="replace")

    async def read(self) -> tuple[float, bool]:
        return parse_amixer(await self._amixer("sget", self._control))

    async def get_volume(self) -> float:
        level, _ = await self.read()
        return level

    async def get_muted(self) -> bool:
        _, muted = await self.read()
        return muted

    async def set_volume(self, level: float) -> None:
        await self._amixer("-q", "sset", self._control, f"{round(level * 100)}%")
        logger.debug("-> ALSA volume: %d%%", round(level * 100))

    async def set_muted(self, muted: bool) -> None:
        await self._amixer("-q", "sset", self._control, "mute" if muted else "unmute")
        logger.debug("-> ALSA %s", "muted" if muted else "unmuted")
