# mediabridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Home Assistant MQTT discovery and state publishing.

The discovery document follows the hass-mqtt-mediaplayer schema
(https://github.com/arctixdev/hass-mqtt-mediaplayer): one retained state
topic per attribute and a shared command topic with literal payloads.

    homeassistant/media_player/<unique_id>/config   discovery (retained)
    <base>/state|title|artist|album|duration|...    state (retained)
    <base>/command, <base>/set_volume               commands (subscribed)
"""

import asyncio
import json
import logging
import platform
import sys
from datetime import datetime, timezone

from .lib.config import Configuration
from .lib.models import MediaState, VolumeReading

logger = logging.getLogger("media-bridge.ha")

MANUFACTURER = "Apple"

# Attributes with a <base>/<attribute> state topic
STATE_ATTRIBUTES = ("state", "title", "artist", "album", "duration",
                    "position", "volume", "albumart", "mediatype")

# Command name -> literal payload sent on <base>/command
COMMAND_PAYLOADS = {
    "play": "play",
    "pause": "pause",
    "playpause": "playpause",
    "next": "next",
    "previous": "previous",
}


async def host_model() -> str:
    """Hardware model, e.g. 'MacBookPro18,3' on macOS or 'x86_64' elsewhere."""
    if sys.platform == "darwin":
        try:
            proc = await asyncio.create_subprocess_exec(
                "sysctl", "-n", "hw.model",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.debug("sysctl hw.model failed: %s", e)
            return platform.machine() or "unknown"
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=2)
        except asyncio.TimeoutError:
            logger.debug("sysctl hw.model timed out")
            proc.kill()
        else:
            model = stdout.decode(errors="replace").strip()
            if proc.returncode == 0 and model:
                return model
    return platform.machine() or "unknown"


def os_version() -> str:
    if sys.platform == "darwin":
        return f"macOS {platform.mac_ver()[0]}"
    return f"{platform.system()} {platform.release()}"


def build_discovery_document(config: Configuration, model: str, sw_version: str) -> dict:
    """Discovery config for a hass-mqtt-mediaplayer entity."""
    base = config.base_topic
    doc = {
        "name": config.effective_device_name,
        "unique_id": config.unique_id,
        "availability": {
            "topic": config.availability_topic,
            "payload_available": "online",
            "payload_not_available": "offline",
        },
        "command_volume_topic": config.volume_command_topic,
        "device": {
            "identifiers": [config.unique_id],
            "name": config.effective_device_name,
            "model": model,
            "manufacturer": MANUFACTURER,
            "sw_version": sw_version,
        },
    }
    for attribute in STATE_ATTRIBUTES:
        doc[f"state_{attribute}_topic"] = f"{base}/{attribute}"
    for name, payload in COMMAND_PAYLOADS.items():
        doc[f"command_{name}_topic"] = config.command_topic
        doc[f"command_{name}_payload"] = payload
    return doc


def discovery_json(document: dict) -> str:
    """Serialize with sorted keys so the retained payload is reproducible."""
    return json.dumps(document, sort_keys=True, separators=(",", ":"))


def state_messages(media: MediaState, volume: VolumeReading) -> list[tuple[str, str]]:
    """(attribute, payload) pairs for one full state publish, in publish order."""
    messages = [
        ("state", media.state.value),
        ("title", media.title or ""),
        ("artist", media.artist or ""),
        ("album", media.album or ""),
        ("duration", str(int(media.duration or 0))),
        ("position", str(int(media.position or 0))),
        ("volume", f"{volume.level:.2f}"),
        ("mediatype", "music" if media.has_track else ""),
    ]
    if media.artwork:
        messages.append(("albumart", media.artwork))
    return messages


class DiscoveryPublisher:
    """Publishes the discovery document and per-attribute state topics."""

    def __init__(self, connection, tracker, volume_monitor, config: Configuration):
        self._connection = connection
        self._tracker = tracker
        self._volume = volume_monitor
        self._config = config
        self._model: str | None = None
        self.discovery_published = False
        self.last_published_at: datetime | None = None

    @property
    def config(self) -> Configuration:
        return self._config

    def update_configuration(self, config: Configuration):
        self._config = config

    async def build_document(self) -> dict:
        if self._model is None:
            self._model = await host_model()
        return build_discovery_document(self._config, self._model, os_version())

    async def publish_discovery(self):
        if not self._connection.is_connected:
            logger.warning("Cannot publish discovery — not connected")
            return

        payload = discovery_json(await self.build_document())
        logger.info("Publishing Home Assistant discovery to %s", self._config.discovery_topic)
        logger.debug("Discovery config JSON: %s", payload)
        await self._connection.publish(self._config.discovery_topic, payload, retain=True, qos=1)
        self.discovery_published = True

        await self.publish_state()

    async def remove_discovery(self):
        if not self._connection.is_connected:
            return
        logger.info("Removing Home Assistant discovery config")
        await self._connection.publish(self._config.discovery_topic, "", retain=True)
        self.discovery_published = False

    async def publish_state(self, media: MediaState | None = None,
                            volume: VolumeReading | None = None):
        """Write every state topic (retained) from the current snapshots."""
        if not self._connection.is_connected:
            return

        media = media if media is not None else self._tracker.current_state
        volume = volume if volume is not None else self._volume.reading

        for attribute, payload in state_messages(media, volume):
            await self._connection.publish(self._config.topic(attribute), payload, retain=True)

        logger.debug("Published state: %s, title: %s", media.state.value, media.title)
        self.last_published_at = datetime.now(timezone.utc)
