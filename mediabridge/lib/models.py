# mediabridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Value types shared by the bridge services.

MediaState snapshots are immutable and compare equal when every media field
matches (the capture timestamp is ignored), which is what the tracker relies
on to suppress duplicate updates.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class PlayerState(str, Enum):
    """Home Assistant media_player states."""

    PLAYING = "playing"
    PAUSED = "paused"
    IDLE = "idle"
    OFF = "off"
    UNAVAILABLE = "unavailable"


# Bundle id -> display name for apps commonly seen in Now Playing
KNOWN_APPS = {
    "com.spotify.client": "Spotify",
    "com.apple.Music": "Apple Music",
    "com.apple.podcasts": "Podcasts",
    "com.tidal.desktop": "TIDAL",
    "tv.plex.desktop": "Plex",
    "com.plexamp.Plexamp": "Plexamp",
    "com.google.Chrome": "Chrome",
    "org.mozilla.firefox": "Firefox",
    "com.apple.Safari": "Safari",
    "com.brave.Browser": "Brave",
    "com.microsoft.edgemac": "Edge",
    "com.apple.TV": "Apple TV",
    "com.netflix.Netflix": "Netflix",
    "tv.twitch.android": "Twitch",
    "com.amazon.aiv.AIVApp": "Prime Video",
}


def app_name_from_bundle_id(bundle_id: str | None) -> str | None:
    """'com.spotify.client' -> 'Spotify', 'org.videolan.vlc' -> 'Vlc'."""
    if not bundle_id:
        return None
    if bundle_id in KNOWN_APPS:
        return KNOWN_APPS[bundle_id]
    last = bundle_id.split(".")[-1]
    return last.capitalize() if last else None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MediaState:
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    duration: float | None = None
    position: float | None = None
    playing: bool = False
    bundle_id: str | None = None
    app_name: str | None = None
    artwork: str | None = None          # base64 text as sent by the helper
    artwork_mime_type: str | None = None
    timestamp: datetime = field(default_factory=_utcnow, compare=False)

    @property
    def state(self) -> PlayerState:
        if self.bundle_id is None and self.title is None:
            return PlayerState.IDLE
        return PlayerState.PLAYING if self.playing else PlayerState.PAUSED

    @property
    def has_track(self) -> bool:
        return self.title is not None or self.artist is not None

    @property
    def entity_picture(self) -> str | None:
        if not self.artwork or not self.artwork_mime_type:
            return None
        return f"data:{self.artwork_mime_type};base64,{self.artwork}"

    @classmethod
    def from_payload(cls, payload: dict) -> "MediaState":
        """Project a helper ``payload`` object into a snapshot.

        Absent keys mean "unknown" and map to None.
        """
        playing = payload.get("playing")
        return cls(
            title=payload.get("title"),
            artist=payload.get("artist"),
            album=payload.get("album"),
            duration=_as_float(payload.get("duration")),
            position=_as_float(payload.get("elapsedTime")),
            playing=bool(playing) if playing is not None else False,
            bundle_id=payload.get("bundleIdentifier"),
            app_name=app_name_from_bundle_id(payload.get("bundleIdentifier")),
            artwork=payload.get("artworkData"),
            artwork_mime_type=payload.get("artworkMIMEType"),
        )

    def to_home_assistant(self, volume_level: float, is_muted: bool) -> dict:
        """Snapshot in Home Assistant media_player attribute names."""
        data = {
            "state": self.state.value,
            "volume_level": volume_level,
            "is_volume_muted": is_muted,
        }
        if self.title is not None:
            data["media_title"] = self.title
        if self.artist is not None:
            data["media_artist"] = self.artist
        if self.album is not None:
            data["media_album_name"] = self.album
        if self.app_name is not None:
            data["app_name"] = self.app_name
        if self.duration is not None:
            data["media_duration"] = int(self.duration)
        if self.position is not None:
            data["media_position"] = int(self.position)
            data["media_position_updated_at"] = self.timestamp.isoformat()
        if self.entity_picture is not None:
            data["entity_picture"] = self.entity_picture
        if self.has_track:
            data["media_content_type"] = "music"
        return data


MediaState.IDLE = MediaState()


def _as_float(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class VolumeReading:
    level: float = 0.0
    muted: bool = False
    available: bool = True


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionState:
    """Broker connection state; ``reason`` is only set for ERROR."""

    status: ConnectionStatus
    reason: str | None = None

    @classmethod
    def error(cls, reason: str) -> "ConnectionState":
        return cls(ConnectionStatus.ERROR, reason)

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED

    @property
    def is_error(self) -> bool:
        return self.status is ConnectionStatus.ERROR

    @property
    def description(self) -> str:
        return {
            ConnectionStatus.DISCONNECTED: "Disconnected",
            ConnectionStatus.CONNECTING: "Connecting...",
            ConnectionStatus.CONNECTED: "Connected",
            ConnectionStatus.DISCONNECTING: "Disconnecting...",
        }.get(self.status) or f"Error: {self.reason}"


ConnectionState.DISCONNECTED = ConnectionState(ConnectionStatus.DISCONNECTED)
ConnectionState.CONNECTING = ConnectionState(ConnectionStatus.CONNECTING)
ConnectionState.CONNECTED = ConnectionState(ConnectionStatus.CONNECTED)
ConnectionState.DISCONNECTING = ConnectionState(ConnectionStatus.DISCONNECTING)


class PlayerCommand(str, Enum):
    """Commands Home Assistant can send, by their service names."""

    PLAY = "media_play"
    PAUSE = "media_pause"
    PLAY_PAUSE = "media_play_pause"
    STOP = "media_stop"
    NEXT = "media_next_track"
    PREVIOUS = "media_previous_track"
    VOLUME_SET = "volume_set"
    VOLUME_UP = "volume_up"
    VOLUME_DOWN = "volume_down"
    VOLUME_MUTE = "volume_mute"

    @property
    def is_volume_command(self) -> bool:
        return self in _VOLUME_COMMANDS

    @property
    def is_media_command(self) -> bool:
        return not self.is_volume_command

    @property
    def helper_subcommand(self) -> str | None:
        """Argument passed to media-control, None for volume commands."""
        return _HELPER_SUBCOMMANDS.get(self)


_VOLUME_COMMANDS = frozenset({
    PlayerCommand.VOLUME_SET,
    PlayerCommand.VOLUME_UP,
    PlayerCommand.VOLUME_DOWN,
    PlayerCommand.VOLUME_MUTE,
})

_HELPER_SUBCOMMANDS = {
    PlayerCommand.PLAY: "play",
    PlayerCommand.PAUSE: "pause",
    PlayerCommand.PLAY_PAUSE: "toggle-play-pause",
    # media-control has no stop
    PlayerCommand.STOP: "pause",
    PlayerCommand.NEXT: "next",
    PlayerCommand.PREVIOUS: "previous",
}


@dataclass(frozen=True)
class CommandResponse:
    command: PlayerCommand
    success: bool
    error: str | None = None

    @classmethod
    def ok(cls, command: PlayerCommand) -> "CommandResponse":
        return cls(command, True)

    @classmethod
    def failure(cls, command: PlayerCommand, error: str) -> "CommandResponse":
        return cls(command, False, error)
