"""
MediaBridge wiring and the local HTTP API.
"""

import json

import pytest
from aiohttp.test_utils import TestClient, TestServer
from conftest import ClientFactory, FakeStream, RecordingSleep, StreamFactory, helper_line, settle

from mediabridge.bridge import MediaBridge, create_app
from mediabridge.commands import CommandExecutor
from mediabridge.lib import config as config_module
from mediabridge.lib.config import Configuration
from mediabridge.lib.transport import BrokerConnection
from mediabridge.now_playing import NowPlayingTracker
from mediabridge.volume import VolumeMonitor

HELPER = "/opt/homebrew/bin/media-control"


class NullRunner:
    def __init__(self):
        self.calls = []

    async def __call__(self, executable, args=()):
        self.calls.append(list(args))
        return ""


@pytest.fixture
def clients():
    return ClientFactory()


@pytest.fixture
def runner():
    return NullRunner()


@pytest.fixture
async def bridge(config, volume_adapter, clients, runner):
    streams = StreamFactory(FakeStream([helper_line(title="Song", artist="Band", playing=True)], hold=True))
    tracker = NowPlayingTracker(HELPER, stream_factory=streams)
    monitor = VolumeMonitor(volume_adapter)
    bridge = MediaBridge(
        config,
        tracker=tracker,
        volume_monitor=monitor,
        connection=BrokerConnection(client_factory=clients, sleep=RecordingSleep()),
        executor=CommandExecutor(monitor, HELPER, runner=runner),
    )
    bridge.router.settle_delay = 0
    yield bridge
    await bridge.stop()


@pytest.fixture
async def client(bridge):
    app = create_app(bridge, manage_lifecycle=False)
    async with TestClient(TestServer(app)) as client:
        yield client


async def test_start_connects_and_publishes_discovery(bridge, clients):
    await bridge.start()
    await settle()

    published = [topic for topic, *_ in clients.last.published]
    assert bridge.connection.is_connected
    assert published[0] == "mac_media_player/available"
    assert "homeassistant/media_player/mac_media_player_office_mac/config" in published
    assert "mac_media_player/title" in published


async def test_media_change_reaches_broker(bridge, clients):
    await bridge.start()
    await settle()
    bridge.coordinator.debounce = 0
    await bridge.volume.set_volume(0.8)
    await settle()

    volume = [p for t, p, *_ in clients.last.published if t == "mac_media_player/volume"]
    assert volume[-1] == "0.80"


async def test_inbound_command_runs_helper(bridge, clients, runner):
    await bridge.start()
    await settle()

    clients.last.deliver("mac_media_player/command", "next")
    await settle()

    assert runner.calls == [["next"]]


async def test_stop_announces_offline(bridge, clients):
    await bridge.start()
    await settle()
    await bridge.stop()

    assert clients.last.published[-1] == ("mac_media_player/available", "offline", 1, True)
    assert not bridge.tracker.running


async def test_status(client, bridge):
    await bridge.tracker.start()
    await settle()

    resp = await client.get("/status")
    assert resp.status == 200
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    data = await resp.json()
    assert data["connection"]["state"] == "disconnected"
    assert data["helper"]["running"] is True
    assert data["media"]["media_title"] == "Song"
    assert data["topics"]["command"] == "mac_media_player/command"


async def test_command_endpoint(client, bridge, runner):
    resp = await client.post("/command", json={"command": "volume_set", "value": 0.4})
    assert resp.status == 200
    assert (await resp.json()) == {"status": "ok", "command": "volume_set"}
    assert bridge.volume.level == 0.4

    resp = await client.post("/command", json={"command": "media_stop"})
    assert (await resp.json())["status"] == "ok"
    assert runner.calls == [["pause"]]


async def test_command_failure_is_reported(client):
    resp = await client.post("/command", json={"command": "volume_set", "value": "loud"})
    data = await resp.json()
    assert data["status"] == "error"
    assert data["error"] == "Invalid volume level"


@pytest.mark.parametrize("body, message", [
    ("not json", "Invalid JSON"),
    ("[1, 2]", "Expected a JSON object"),
    (json.dumps({"command": "rewind"}), "Unknown command: rewind"),
])
async def test_command_rejects_bad_requests(client, body, message):
    resp = await client.post("/command", data=body, headers={"Content-Type": "application/json"})
    assert resp.status == 400
    assert (await resp.json())["message"] == message


async def test_connect_and_disconnect_endpoints(client, bridge):
    resp = await client.post("/connect")
    assert resp.status == 200
    await settle()
    assert bridge.connection.is_connected

    resp = await client.post("/disconnect")
    assert (await resp.json()) == {"status": "ok", "connection": "Disconnected"}


async def test_restart_endpoint(client, bridge):
    resp = await client.post("/restart")
    assert (await resp.json()) == {"status": "ok", "running": True}


async def test_reload_picks_up_new_broker(client, bridge, tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"mqtt": {"host": "10.0.0.9", "base_topic": "den"}}))
    monkeypatch.setenv("MEDIABRIDGE_CONFIG", str(path))
    monkeypatch.setattr(config_module, "_config", None)

    resp = await client.post("/reload")
    assert (await resp.json()) == {"status": "ok", "changed": True}
    assert bridge.config.host == "10.0.0.9"
    assert bridge.publisher.config.command_topic == "den/command"

    resp = await client.post("/reload")
    assert (await resp.json())["changed"] is False
    monkeypatch.setattr(config_module, "_config", None)


async def test_options_preflight(client):
    resp = await client.options("/command")
    assert resp.status == 200
    assert "POST" in resp.headers["Access-Control-Allow-Methods"]


async def test_connect_endpoint_reports_invalid_config(client, bridge, clients):
    bridge.config = Configuration(host="", port=1883)

    resp = await client.post("/connect")

    assert (await resp.json()) == {"status": "error", "connection": "Error: invalid configuration"}
    assert clients.clients == []
