"""
Pluggable system volume endpoints.

The factory function ``create_volume_adapter`` reads config.json and returns
the correct adapter.

Supported types:
  - ``macos`` – CoreAudio output volume via osascript (default on macOS)
  - ``alsa``  – ALSA simple mixer via amixer (default elsewhere)
"""

import logging
import sys

from ..config import cfg
from .alsa import AlsaVolume
from .base import VolumeAdapter
from .macos import MacVolume

logger = logging.getLogger("media-bridge.volume")

__all__ = [
    "VolumeAdapter",
    "AlsaVolume",
    "MacVolume",
    "create_volume_adapter",
]


def create_volume_adapter() -> VolumeAdapter:
    """Create the right volume adapter based on config.json.

    Reads from config.json "volume" section:
      type     – "macos" or "alsa"; defaults to the running platform
      card     – ALSA card (alsa only, default: system default card)
      control  – ALSA mixer control (alsa only, default "Master")
    """
    vol_type = cfg("volume", "type")
    if vol_type is None:
        vol_type = "macos" if sys.platform == "darwin" else "alsa"
    vol_type = str(vol_type).lower()

    if vol_type == "macos":
        logger.info("Volume adapter: macOS output volume")
        return MacVolume()
    card = cfg("volume", "card")
    control = cfg("volume", "control")
    logger.info("Volume adapter: ALSA %s on card %s",
                control or "Master", card or "default")
    return AlsaVolume(card, control)
