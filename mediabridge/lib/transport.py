# mediabridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
MQTT broker connection for the media bridge.

Owns one aiomqtt session at a time and drives the connection state machine:

    disconnected --connect()--> connecting --ack--> connected
    connecting --rejected--> error(reason)
    connected --transport drop--> error(reason)
    error(reason) --scheduled retry--> connecting
    any --disconnect()--> disconnecting --> disconnected

Reconnects back off exponentially (1s, 2s, 4s ... capped at 300s) and give
up after MAX_RETRIES consecutive failures with error("max retries").  The
broker is handed a retained "offline" last-will on the availability topic so
Home Assistant marks the player unavailable when the bridge dies uncleanly.

Usage:
    connection = BrokerConnection()
    connection.set_message_handler(router.handle_message)
    connection.set_connect_handler(discovery.publish_discovery)
    await connection.connect(config)
    await connection.publish(config.topic("title"), "Song", retain=True)
    await connection.disconnect()
"""

import asyncio
import logging
import ssl

import aiomqtt

from .config import Configuration
from .errors import ConfigurationInvalid, TransportFailure
from .models import ConnectionState, ConnectionStatus

logger = logging.getLogger("media-bridge.mqtt")

KEEPALIVE = 60
RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 300.0
MAX_RETRIES = 10

ONLINE = "online"
OFFLINE = "offline"


def reconnect_delay(retry_count: int,
                    base: float = RECONNECT_BASE_DELAY,
                    maximum: float = RECONNECT_MAX_DELAY) -> float:
    """Delay before reconnect attempt number ``retry_count + 1``."""
    return min(base * (2 ** retry_count), maximum)


def _default_client_factory(config: Configuration, will: aiomqtt.Will) -> aiomqtt.Client:
    kwargs = {}
    if config.use_tls:
        # Brokers on a LAN commonly run self-signed certificates
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        kwargs["tls_context"] = context
        kwargs["tls_insecure"] = True
    return aiomqtt.Client(
        hostname=config.host,
        port=config.effective_port,
        identifier=config.client_id,
        username=config.username or None,
        password=config.password or None,
        keepalive=KEEPALIVE,
        will=will,
        **kwargs,
    )


class BrokerConnection:
    """Connection to the MQTT broker with reconnect and availability handling."""

    def __init__(self, client_factory=None, sleep=asyncio.sleep):
        self._client_factory = client_factory or _default_client_factory
        self._sleep = sleep
        self._state = ConnectionState.DISCONNECTED
        self._config: Configuration | None = None
        self._client = None
        self._session_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self.retry_count = 0
        self.last_error: TransportFailure | None = None

        self._message_handler = None
        self._connect_handler = None
        self._disconnect_handler = None
        self._state_listeners: list = []

    # -- observable state --

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def config(self) -> Configuration | None:
        return self._config

    def _set_state(self, state: ConnectionState):
        if state == self._state:
            return
        self._state = state
        logger.debug("MQTT state -> %s", state.description)
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")

    def add_state_listener(self, callback):
        """Register ``callback(ConnectionState)``; returns an unsubscribe function."""
        self._state_listeners.append(callback)
        return lambda: self.remove_state_listener(callback)

    def remove_state_listener(self, callback):
        if callback in self._state_listeners:
            self._state_listeners.remove(callback)

    def set_message_handler(self, callback):
        """Register the inbound message callback.

        Callback signature: async def handler(topic: str, payload: str) -> None
        """
        self._message_handler = callback

    def set_connect_handler(self, callback):
        """Register ``async def handler()`` run after each successful connect."""
        self._connect_handler = callback

    def set_disconnect_handler(self, callback):
        """Register ``async def handler()`` run when a live session ends."""
        self._disconnect_handler = callback

    # -- lifecycle --

    async def connect(self, config: Configuration):
        """Start connecting to the broker described by *config*.

        Returns once the handshake has been initiated; the outcome is
        reported through the connection state.  Raises ConfigurationInvalid
        (after tearing down any existing session) when host or port is
        missing.
        """
        if not config.is_valid:
            logger.error("Cannot connect — invalid configuration (host=%r port=%r)",
                         config.host, config.port)
            if self.is_connected:
                await self.disconnect()

        # Explicit connect: start a fresh retry budget
        self._cancel_reconnect()
        self.retry_count = 0
        await self._close_session()

        if not config.is_valid:
            self._config = None
            self._set_state(ConnectionState.error("invalid configuration"))
            raise ConfigurationInvalid(
                f"invalid broker configuration (host={config.host!r} port={config.port!r})")
        self._open(config)

    def _open(self, config: Configuration):
        self._config = config
        logger.info("Connecting to MQTT broker at %s:%d", config.host, config.effective_port)
        self._set_state(ConnectionState.CONNECTING)
        self._session_task = asyncio.create_task(self._session(config))

    async def _session(self, config: Configuration):
        will = aiomqtt.Will(
            topic=config.availability_topic,
            payload=OFFLINE,
            qos=1,
            retain=True,
        )
        connected = False
        try:
            async with self._client_factory(config, will) as client:
                self._client = client
                connected = True
                await self._on_connected(client, config)

                async for message in client.messages:
                    await self._deliver(message)

            # Only reached when the message stream ends without an error
            raise aiomqtt.MqttError("Connection closed by broker")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._client = None
            reason = str(e) or e.__class__.__name__
            if connected:
                logger.warning("MQTT connection lost: %s", reason)
            else:
                logger.error("MQTT connection rejected: %s", reason)
            self.last_error = TransportFailure(reason)
            self._set_state(ConnectionState.error(reason))
            if connected:
                await self._notify_disconnect()
            self._schedule_reconnect(config)
        finally:
            self._client = None

    async def _on_connected(self, client, config: Configuration):
        logger.info("Connected to MQTT broker at %s:%d", config.host, config.effective_port)
        self._set_state(ConnectionState.CONNECTED)
        self.retry_count = 0
        self.last_error = None

        await self.subscribe(config.command_topic, qos=1)
        await self.subscribe(config.volume_command_topic, qos=1)
        await self.publish(config.availability_topic, ONLINE, retain=True, qos=1)

        if self._connect_handler:
            try:
                await self._connect_handler()
            except Exception:
                logger.exception("MQTT connect handler failed")

    async def _deliver(self, message):
        topic = message.topic.value if hasattr(message.topic, "value") else str(message.topic)
        payload = message.payload
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8", errors="replace")
        elif payload is None:
            payload = ""
        else:
            payload = str(payload)

        logger.debug("Received message on %s: %s", topic, payload[:200])
        if self._message_handler:
            try:
                await self._message_handler(topic, payload)
            except Exception:
                logger.exception("MQTT message handler error")

    async def _notify_disconnect(self):
        if self._disconnect_handler:
            try:
                await self._disconnect_handler()
            except Exception:
                logger.exception("MQTT disconnect handler failed")

    def _schedule_reconnect(self, config: Configuration):
        if self.retry_count >= MAX_RETRIES:
            logger.error("Max reconnection attempts reached (%d)", MAX_RETRIES)
            self._set_state(ConnectionState.error("max retries"))
            return

        self._cancel_reconnect()
        delay = reconnect_delay(self.retry_count)
        self.retry_count += 1
        logger.info("Scheduling reconnect in %ds (attempt %d)", delay, self.retry_count)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay, config))

    async def _reconnect_after(self, delay: float, config: Configuration):
        await self._sleep(delay)
        self._reconnect_task = None
        self._open(config)

    def _cancel_reconnect(self):
        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _close_session(self):
        task = self._session_task
        self._session_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._client = None

    async def disconnect(self):
        """Tear down the session. Idempotent; cancels pending reconnects."""
        self._cancel_reconnect()
        self.retry_count = 0

        if self._state.status is ConnectionStatus.DISCONNECTED and self._session_task is None:
            return

        logger.info("Disconnecting from MQTT broker")
        was_connected = self.is_connected
        config = self._config
        self._set_state(ConnectionState.DISCONNECTING)

        if was_connected and self._client is not None and config is not None:
            try:
                await self._client.publish(
                    config.availability_topic, OFFLINE, qos=1, retain=True)
            except Exception as e:
                logger.warning("Could not publish offline status: %s", e)

        await self._close_session()
        self._config = None
        self._set_state(ConnectionState.DISCONNECTED)
        if was_connected:
            await self._notify_disconnect()

    # -- messaging --

    async def publish(self, topic: str, message: str, retain: bool = False, qos: int = 0):
        """Publish *message*; dropped with a warning when not connected."""
        if not self.is_connected or self._client is None:
            logger.warning("Cannot publish to %s — not connected", topic)
            return False
        try:
            await self._client.publish(topic, message, qos=qos, retain=retain)
            return True
        except aiomqtt.MqttError as e:
            logger.warning("MQTT publish to %s failed: %s", topic, e)
            return False

    async def subscribe(self, topic: str, qos: int = 0):
        if not self.is_connected or self._client is None:
            logger.warning("Cannot subscribe to %s — not connected", topic)
            return False
        try:
            await self._client.subscribe(topic, qos=qos)
            logger.debug("Subscribed to %s", topic)
            return True
        except aiomqtt.MqttError as e:
            logger.warning("MQTT subscribe to %s failed: %s", topic, e)
            return False
