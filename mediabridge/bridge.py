#!/usr/bin/env python3
# mediabridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Media bridge service (mediabridge)

Wires the Now Playing tracker, volume monitor and MQTT connection together
so Home Assistant sees this computer as a media_player, and serves a small
local HTTP API for status and manual control.

Port: 8780 (localhost only by default)

    GET  /status      connection state, media snapshot, volume
    POST /command     {"command": "media_play_pause"} / {"command": "volume_set", "value": 0.4}
    POST /connect     connect with the loaded configuration
    POST /disconnect  publish offline and disconnect
    POST /reload      re-read config.json and reconnect
    POST /restart     restart the media-control stream
"""

import argparse
import logging
import os

from aiohttp import web

from . import __version__
from .commands import CommandExecutor, CommandRouter
from .coordinator import StatePublishCoordinator
from .discovery import DiscoveryPublisher
from .lib.config import Configuration, cfg, reload_config
from .lib.errors import ConfigurationInvalid
from .lib.models import PlayerCommand
from .lib.process import HELPER_PATHS
from .lib.transport import BrokerConnection
from .lib.volume_adapters import create_volume_adapter
from .now_playing import NowPlayingTracker
from .volume import VolumeMonitor

logger = logging.getLogger("media-bridge")

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
BRIDGE_PORT = 8780
BRIDGE_HOST = "127.0.0.1"


def helper_search_paths() -> list[str]:
    """Configured media_control.path first, then the Homebrew locations."""
    configured = cfg("media_control", "path")
    return ([configured] if configured else []) + HELPER_PATHS


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------
class MediaBridge:
    """Owns every component and their start/stop order."""

    def __init__(self, config: Configuration | None = None, *,
                 tracker: NowPlayingTracker | None = None,
                 volume_monitor: VolumeMonitor | None = None,
                 connection: BrokerConnection | None = None,
                 executor: CommandExecutor | None = None):
        self.config = config or Configuration.load()
        self.tracker = tracker or NowPlayingTracker(search_paths=helper_search_paths())
        self.volume = volume_monitor or VolumeMonitor(create_volume_adapter())
        self.connection = connection or BrokerConnection()

        self.publisher = DiscoveryPublisher(
            self.connection, self.tracker, self.volume, self.config)
        self.coordinator = StatePublishCoordinator(
            self.publisher, self.tracker, self.volume)
        self.executor = executor or CommandExecutor(self.volume, self.tracker.binary_path)
        self.router = CommandRouter(
            self.config, self.executor, self.coordinator.publish_now)

        self.connection.set_message_handler(self.router.handle_message)
        self.connection.set_connect_handler(self.publisher.publish_discovery)
        self.connection.add_state_listener(self._on_connection_state)

    def _on_connection_state(self, state):
        logger.info("MQTT: %s", state.description)

    # -- lifecycle --

    async def start(self):
        if not await self.tracker.start():
            logger.warning("Now Playing data unavailable until media-control is installed")
        await self.volume.start_polling()

        if self.config.is_valid:
            await self.connect()
        else:
            logger.warning("MQTT not configured — set mqtt.host in config.json")
        logger.info("mediabridge %s started", __version__)

    async def stop(self):
        logger.info("mediabridge shutting down")
        self.coordinator.close()
        await self.router.close()
        # disconnect() publishes the retained "offline" while still connected
        await self.connection.disconnect()
        await self.tracker.stop()
        await self.volume.stop_polling()

    async def connect(self) -> bool:
        try:
            await self.connection.connect(self.config)
        except ConfigurationInvalid as e:
            logger.warning("Cannot connect: %s", e)
            return False
        return True

    async def disconnect(self):
        await self.connection.disconnect()

    async def reload(self) -> bool:
        """Re-read config.json; reconnect when anything changed."""
        reload_config()
        new_config = Configuration.load()
        if new_config == self.config:
            return False

        logger.info("Configuration changed — reconnecting")
        await self.connection.disconnect()
        self.config = new_config
        self.publisher.update_configuration(new_config)
        self.router.update_configuration(new_config)
        if new_config.is_valid:
            await self.connection.connect(new_config)
        return True

    def status(self) -> dict:
        state = self.connection.state
        volume = self.volume.reading
        return {
            "version": __version__,
            "connection": {
                "state": state.status.value,
                "reason": state.reason,
                "description": state.description,
                "retry_count": self.connection.retry_count,
                "last_error": str(self.connection.last_error) if self.connection.last_error else None,
            },
            "discovery_published": self.publisher.discovery_published,
            "helper": {
                "available": self.tracker.is_available,
                "path": self.tracker.binary_path,
                "running": self.tracker.running,
                "error": str(self.tracker.error) if self.tracker.error else None,
            },
            "media": self.tracker.current_state.to_home_assistant(volume.level, volume.muted),
            "volume": {
                "level": volume.level,
                "muted": volume.muted,
                "available": volume.available,
            },
            "topics": {
                "discovery": self.config.discovery_topic,
                "command": self.config.command_topic,
                "availability": self.config.availability_topic,
            },
        }


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------
BRIDGE_KEY = web.AppKey("bridge", MediaBridge)


async def handle_status(request: web.Request) -> web.Response:
    return web.json_response(request.app[BRIDGE_KEY].status())


async def handle_command(request: web.Request) -> web.Response:
    bridge = request.app[BRIDGE_KEY]
    try:
        data = await request.json()
    except ValueError:
        return web.json_response(
            {"status": "error", "message": "Invalid JSON"}, status=400)
    if not isinstance(data, dict):
        return web.json_response(
            {"status": "error", "message": "Expected a JSON object"}, status=400)

    name = data.get("command", "")
    try:
        command = PlayerCommand(name)
    except ValueError:
        return web.json_response(
            {"status": "error", "message": f"Unknown command: {name}"}, status=400)

    response = await bridge.router.execute(command, data.get("value"))
    result = {"status": "ok" if response.success else "error", "command": command.value}
    if response.error:
        result["error"] = response.error
    return web.json_response(result)


async def handle_connect(request: web.Request) -> web.Response:
    bridge = request.app[BRIDGE_KEY]
    started = await bridge.connect()
    return web.json_response({"status": "ok" if started else "error",
                              "connection": bridge.connection.state.description})


async def handle_disconnect(request: web.Request) -> web.Response:
    bridge = request.app[BRIDGE_KEY]
    await bridge.disconnect()
    return web.json_response({"status": "ok", "connection": bridge.connection.state.description})


async def handle_reload(request: web.Request) -> web.Response:
    changed = await request.app[BRIDGE_KEY].reload()
    return web.json_response({"status": "ok", "changed": changed})


async def handle_restart(request: web.Request) -> web.Response:
    started = await request.app[BRIDGE_KEY].tracker.restart()
    return web.json_response({"status": "ok" if started else "error", "running": started})


# ---------------------------------------------------------------------------
# App lifecycle
# ---------------------------------------------------------------------------
async def on_startup(app: web.Application):
    await app[BRIDGE_KEY].start()


async def on_cleanup(app: web.Application):
    await app[BRIDGE_KEY].stop()


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        resp = web.Response()
    else:
        resp = await handler(request)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


def create_app(bridge: MediaBridge | None = None, manage_lifecycle: bool = True) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[BRIDGE_KEY] = bridge or MediaBridge()
    app.router.add_get("/status", handle_status)
    app.router.add_post("/command", handle_command)
    app.router.add_post("/connect", handle_connect)
    app.router.add_post("/disconnect", handle_disconnect)
    app.router.add_post("/reload", handle_reload)
    app.router.add_post("/restart", handle_restart)
    if manage_lifecycle:
        app.on_startup.append(on_startup)
        app.on_cleanup.append(on_cleanup)
    return app


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Expose Now Playing and system volume to Home Assistant over MQTT")
    parser.add_argument("--config", help="path to config.json")
    parser.add_argument("--port", type=int, help=f"HTTP API port (default {BRIDGE_PORT})")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    args = parser.parse_args(argv)

    if args.config:
        os.environ["MEDIABRIDGE_CONFIG"] = args.config

    level = (args.log_level or os.getenv("LOG_LEVEL")
             or cfg("logging", "level", default="INFO"))
    logging.basicConfig(
        level=str(level).upper(),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    port = args.port or int(cfg("bridge", "port", default=BRIDGE_PORT))
    host = cfg("bridge", "host", default=BRIDGE_HOST)
    app = create_app()
    web.run_app(app, host=host, port=port, print=lambda msg: logger.info(msg))


if __name__ == "__main__":
    main()
