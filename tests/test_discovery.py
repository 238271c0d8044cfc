"""
Discovery document and state topic publishing.
"""

import asyncio
import json
import platform
import sys

import pytest
from conftest import FakeConnection, StreamFactory

from mediabridge.discovery import (
    DiscoveryPublisher,
    build_discovery_document,
    discovery_json,
    host_model,
    state_messages,
)
from mediabridge.lib.models import MediaState, VolumeReading
from mediabridge.now_playing import NowPlayingTracker
from mediabridge.volume import VolumeMonitor

SONG = MediaState(title="Song", artist="Band", album="Album", duration=215.7,
                  position=12.4, playing=True, bundle_id="com.spotify.client",
                  app_name="Spotify")


@pytest.fixture
def publisher(config, fake_connection, volume_adapter):
    tracker = NowPlayingTracker("/opt/homebrew/bin/media-control", stream_factory=StreamFactory())
    publisher = DiscoveryPublisher(fake_connection, tracker, VolumeMonitor(volume_adapter), config)
    publisher._model = "MacBookPro18,3"
    return publisher


class TestDiscoveryDocument:
    def test_topics_and_payloads(self, config):
        doc = build_discovery_document(config, "Macmini9,1", "macOS 14.5")
        assert doc["name"] == "Office Mac"
        assert doc["unique_id"] == "mac_media_player_office_mac"
        assert doc["state_state_topic"] == "mac_media_player/state"
        assert doc["state_albumart_topic"] == "mac_media_player/albumart"
        assert doc["command_play_topic"] == "mac_media_player/command"
        assert doc["command_play_payload"] == "play"
        assert doc["command_playpause_payload"] == "playpause"
        assert doc["command_volume_topic"] == "mac_media_player/set_volume"
        assert doc["availability"] == {
            "topic": "mac_media_player/available",
            "payload_available": "online",
            "payload_not_available": "offline",
        }

    def test_device_block(self, config):
        device = build_discovery_document(config, "Macmini9,1", "macOS 14.5")["device"]
        assert device == {
            "identifiers": ["mac_media_player_office_mac"],
            "name": "Office Mac",
            "model": "Macmini9,1",
            "manufacturer": "Apple",
            "sw_version": "macOS 14.5",
        }

    def test_json_is_sorted_and_compact(self, config):
        doc = build_discovery_document(config, "Macmini9,1", "macOS 14.5")
        payload = discovery_json(doc)
        assert payload == discovery_json(dict(reversed(list(doc.items()))))
        assert ": " not in payload
        assert list(json.loads(payload)) == sorted(doc)


class TestStateMessages:
    def test_track(self):
        messages = dict(state_messages(SONG, VolumeReading(0.4, False)))
        assert messages == {
            "state": "playing",
            "title": "Song",
            "artist": "Band",
            "album": "Album",
            "duration": "215",
            "position": "12",
            "volume": "0.40",
            "mediatype": "music",
        }

    def test_idle_publishes_blanks(self):
        messages = dict(state_messages(MediaState.IDLE, VolumeReading(1.0, False)))
        assert messages["state"] == "idle"
        assert messages["title"] == ""
        assert messages["duration"] == "0"
        assert messages["volume"] == "1.00"
        assert "albumart" not in messages

    def test_artwork_included(self):
        art = MediaState(title="Song", artwork="aGVsbG8=", artwork_mime_type="image/jpeg")
        messages = state_messages(art, VolumeReading())
        assert messages[-1] == ("albumart", "aGVsbG8=")


async def test_publish_discovery_then_state(publisher, fake_connection):
    await publisher.publish_discovery()

    topic, payload, retain, qos = fake_connection.published[0]
    assert topic == "homeassistant/media_player/mac_media_player_office_mac/config"
    assert retain and qos == 1
    assert json.loads(payload)["device"]["model"] == "MacBookPro18,3"
    assert publisher.discovery_published
    assert "mac_media_player/state" in fake_connection.topics()


async def test_publish_state_is_retained(publisher, fake_connection):
    await publisher.publish_state(SONG, VolumeReading(0.25, True))

    assert fake_connection.payloads_for("mac_media_player/title") == ["Song"]
    assert fake_connection.payloads_for("mac_media_player/volume") == ["0.25"]
    assert all(retain for _, _, retain, _ in fake_connection.published)
    assert publisher.last_published_at is not None


async def test_nothing_published_while_disconnected(config, volume_adapter):
    connection = FakeConnection(connected=False)
    tracker = NowPlayingTracker("/opt/homebrew/bin/media-control", stream_factory=StreamFactory())
    publisher = DiscoveryPublisher(connection, tracker, VolumeMonitor(volume_adapter), config)

    await publisher.publish_discovery()
    await publisher.publish_state()

    assert connection.published == []
    assert not publisher.discovery_published


async def test_remove_discovery(publisher, fake_connection):
    await publisher.publish_discovery()
    await publisher.remove_discovery()

    topic, payload, retain, _ = fake_connection.published[-1]
    assert topic.endswith("/config")
    assert payload == ""
    assert retain
    assert not publisher.discovery_published


# =============================================================================
# Host model
# =============================================================================


class SysctlProcess:
    def __init__(self, stdout=b"", returncode=0):
        self._stdout = stdout
        self.returncode = returncode

    async def communicate(self):
        return self._stdout, b""


@pytest.fixture
def sysctl(monkeypatch):
    calls = []
    result = {"value": SysctlProcess(b"Macmini9,1\n")}

    async def fake_exec(*cmd, **kwargs):
        calls.append(list(cmd))
        if isinstance(result["value"], Exception):
            raise result["value"]
        return result["value"]

    monkeypatch.setattr(sys, "platform", "darwin")
    monkeypatch.setattr(platform, "machine", lambda: "arm64")
    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    return calls, result


async def test_host_model_reads_sysctl(sysctl):
    calls, _ = sysctl
    assert await host_model() == "Macmini9,1"
    assert calls == [["sysctl", "-n", "hw.model"]]


@pytest.mark.parametrize("outcome", [
    FileNotFoundError("sysctl"),
    SysctlProcess(b"", returncode=1),
])
async def test_host_model_falls_back_to_machine(sysctl, outcome):
    _, result = sysctl
    result["value"] = outcome
    assert await host_model() == "arm64"


async def test_host_model_skips_sysctl_off_macos(sysctl, monkeypatch):
    calls, _ = sysctl
    monkeypatch.setattr(sys, "platform", "linux")
    assert await host_model() == "arm64"
    assert calls == []


async def test_model_is_resolved_once(publisher, fake_connection, sysctl):
    calls, _ = sysctl
    publisher._model = None

    await publisher.publish_discovery()
    await publisher.publish_discovery()

    assert len(calls) == 1
    assert json.loads(fake_connection.published[0][1])["device"]["model"] == "Macmini9,1"
