"""
macOS volume adapter — system output volume via osascript.

    $ osascript -e "get volume settings"
    output volume:42, input volume:50, alert volume:100, output muted:false
"""

import asyncio
import logging
import re

from ..errors import VolumeUnavailable
from .base import VolumeAdapter

logger = logging.getLogger("media-bridge.volume.macos")

_VOLUME_RE = re.compile(r"output volume:\s*(\d+|missing value)")
_MUTED_RE = re.compile(r"output muted:\s*(true|false|missing value)")


def parse_volume_settings(output: str) -> tuple[float, bool]:
    """Return (level 0..1, muted) from ``get volume settings`` output."""
    volume = _VOLUME_RE.search(output)
    if not volume or volume.group(1) == "missing value":
        # Output devices without a software volume (e.g. HDMI) report "missing value"
        raise VolumeUnavailable("output device has no volume control")
    muted = _MUTED_RE.search(output)
    return int(volume.group(1)) / 100, bool(muted and muted.group(1) == "true")


class MacVolume(VolumeAdapter):
    """Volume control via AppleScript's volume settings."""

    name = "macos"

    async def _osascript(self, script: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                "osascript", "-e", script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except FileNotFoundError as e:
            raise VolumeUnavailable("osascript not found") from e
        except OSError as e:
            raise VolumeUnavailable(f"could not run osascript: {e}") from e
        if proc.returncode != 0:
            raise VolumeUnavailable(
                f"osascript failed (rc={proc.returncode}): {stderr.decode(errors='replace').strip()}")
        return stdout.decode(errors="replace").strip()

    async def read(self) -> tuple[float, bool]:
        return parse_volume_settings(await self._osascript("get volume settings"))

    async def get_volume(self) -> float:
        level, _ = await self.read()
        return level

    async def get_muted(self) -> bool:
        _, muted = await self.read()
        return muted

    async def set_volume(self, level: float) -> None:
        await self._osascript(f"set volume output volume {round(level * 100)}")

    async def set_muted(self, muted: bool) -> None:
        await self._osascript(f"set volume output muted {'true' if muted else 'false'}")
