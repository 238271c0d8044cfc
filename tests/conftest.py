import asyncio
import json

import aiomqtt
import pytest

from mediabridge.lib.config import Configuration
from mediabridge.lib.errors import VolumeUnavailable
from mediabridge.lib.volume_adapters import VolumeAdapter

# ============================================================================
# Helpers
# ============================================================================


async def settle(rounds: int = 20):
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def helper_line(**payload) -> str:
    """One media-control stream line with the given payload fields."""
    return json.dumps({"type": "data", "diff": False, "payload": payload})


# ============================================================================
# Fakes
# ============================================================================


class FakeVolumeAdapter(VolumeAdapter):
    name = "fake"

    def __init__(self, level=0.5, muted=False):
        self.level = level
        self.muted = muted
        self.fail = False
        self.writes = []

    async def get_volume(self):
        if self.fail:
            raise VolumeUnavailable("endpoint gone")
        return self.level

    async def get_muted(self):
        if self.fail:
            raise VolumeUnavailable("endpoint gone")
        return self.muted

    async def set_volume(self, level):
        if self.fail:
            raise VolumeUnavailable("endpoint gone")
        self.writes.append(("volume", level))
        self.level = level

    async def set_muted(self, muted):
        if self.fail:
            raise VolumeUnavailable("endpoint gone")
        self.writes.append(("muted", muted))
        self.muted = muted


class FakeConnection:
    """Stands in for BrokerConnection when only publishing matters."""

    def __init__(self, connected=True):
        self.is_connected = connected
        self.published = []

    async def publish(self, topic, message, retain=False, qos=0):
        self.published.append((topic, message, retain, qos))
        return self.is_connected

    def topics(self):
        return [topic for topic, *_ in self.published]

    def payloads_for(self, topic):
        return [message for t, message, *_ in self.published if t == topic]


class FakeStream:
    """ExternalProcessStream replacement yielding scripted lines."""

    def __init__(self, lines=(), error=None, hold=False):
        self.lines = list(lines)
        self.error = error
        self.hold = hold
        self.started_with = None
        self.terminated = False

    def start(self, executable, args=()):
        self.started_with = (executable, list(args))
        return self._lines()

    async def _lines(self):
        for line in self.lines:
            yield line
            await asyncio.sleep(0)
        if self.hold:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error

    def terminate(self):
        self.terminated = True


class StreamFactory:
    """Hands out scripted FakeStreams in order and counts spawns."""

    def __init__(self, *streams):
        self.streams = list(streams)
        self.spawned = []

    def __call__(self):
        stream = self.streams.pop(0) if self.streams else FakeStream(hold=True)
        self.spawned.append(stream)
        return stream


class FakeMessage:
    def __init__(self, topic, payload):
        self.topic = aiomqtt.Topic(topic)
        self.payload = payload.encode() if isinstance(payload, str) else payload


class FakeMqttClient:
    """aiomqtt.Client stand-in: async context manager + message iterator."""

    def __init__(self, config, will, reject=None):
        self.config = config
        self.will = will
        self.reject = reject
        self.published = []
        self.subscribed = []
        self.closed = False
        self._queue = asyncio.Queue()

    async def __aenter__(self):
        if self.reject is not None:
            raise self.reject
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    async def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))

    async def subscribe(self, topic, qos=0):
        self.subscribed.append((topic, qos))

    def deliver(self, topic, payload):
        self._queue.put_nowait(FakeMessage(topic, payload))

    def drop(self, reason="Connection lost"):
        self._queue.put_nowait(aiomqtt.MqttError(reason))

    @property
    def messages(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._queue.get()
            if isinstance(item, Exception):
                raise item
            yield item


class ClientFactory:
    """Client factory for BrokerConnection; ``rejections`` fail handshakes in order."""

    def __init__(self, rejections=()):
        self.rejections = list(rejections)
        self.clients = []

    def __call__(self, config, will):
        reject = self.rejections.pop(0) if self.rejections else None
        client = FakeMqttClient(config, will, reject)
        self.clients.append(client)
        return client

    @property
    def last(self):
        return self.clients[-1]


class RecordingSleep:
    """asyncio.sleep replacement that records delays and returns at once."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def config():
    return Configuration(
        host="broker.local",
        port=1883,
        base_topic="mac_media_player",
        discovery_prefix="homeassistant",
        device_name="Office Mac",
        hostname="Office Mac",
        process_id=4242,
    )


@pytest.fixture
def volume_adapter():
    return FakeVolumeAdapter()


@pytest.fixture
def fake_connection():
    return FakeConnection()
