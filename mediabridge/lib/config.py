"""
Configuration loader for the media bridge.

Loads a single JSON config file.  Search order:
  1. $MEDIABRIDGE_CONFIG                 (explicit override, e.g. --config)
  2. /etc/mediabridge/config.json        (system install)
  3. ~/.config/mediabridge/config.json   (per-user install)
  4. config.json                         (CWD — handy for local dev)

Secrets stay in environment variables.  ``mqtt.password_ref`` names the
variable that holds the broker password (default MQTT_PASSWORD); MQTT_USER
overrides ``mqtt.username``.

Usage:
    from mediabridge.lib.config import cfg, Configuration

    host   = cfg("mqtt", "host", default="")
    config = Configuration.load()
    config.availability_topic   # 'mac_media_player/available'
"""

import json
import logging
import os
import socket
from dataclasses import dataclass, field

logger = logging.getLogger("media-bridge.config")

DEFAULT_PORT = 1883
DEFAULT_TLS_PORT = 8883
DEFAULT_BASE_TOPIC = "mac_media_player"
DEFAULT_DISCOVERY_PREFIX = "homeassistant"
DEFAULT_PASSWORD_REF = "MQTT_PASSWORD"
UNIQUE_ID_PREFIX = "mac_media_player_"
CLIENT_ID_PREFIX = "mediabridge"

_config: dict | None = None


def _search_paths() -> list[str]:
    paths = []
    override = os.getenv("MEDIABRIDGE_CONFIG")
    if override:
        paths.append(override)
    paths += [
        "/etc/mediabridge/config.json",
        os.path.expanduser("~/.config/mediabridge/config.json"),
        "config.json",
    ]
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    mqtt = config.get("mqtt") or {}
    if not mqtt.get("host"):
        logger.warning("Config %s: missing mqtt.host — bridge will not connect", path)
    port = mqtt.get("port", DEFAULT_PORT)
    if not isinstance(port, int) or port <= 0:
        logger.warning("Config %s: invalid mqtt.port %r", path, port)
    vol_type = (config.get("volume") or {}).get("type")
    if vol_type is not None and vol_type not in ("alsa", "macos"):
        logger.warning("Config %s: unknown volume.type '%s'", path, vol_type)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.warning("No config.json found — using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("mqtt")                       → config["mqtt"]
    cfg("mqtt", "host")               → config["mqtt"]["host"]
    cfg("bridge", "port", default=8780) → config["bridge"]["port"] or 8780
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()


def resolve_secret(ref: str | None) -> str:
    """Resolve a password reference to its value ('' when unset)."""
    if not ref:
        return ""
    return os.getenv(ref, "")


def short_hostname() -> str:
    return socket.gethostname().split(".")[0] or "mac"


def unique_device_id(hostname: str) -> str:
    """Stable device id: "Bob's Mac mini" -> 'mac_media_player_bobs_mac_mini'."""
    sanitized = hostname.lower().replace(" ", "_").replace("'", "")
    sanitized = "".join(c for c in sanitized if c.isalnum() or c == "_")
    return f"{UNIQUE_ID_PREFIX}{sanitized}"


@dataclass(frozen=True)
class Configuration:
    host: str = ""
    port: int = DEFAULT_PORT
    use_tls: bool = False
    username: str = ""
    password_ref: str = DEFAULT_PASSWORD_REF
    base_topic: str = DEFAULT_BASE_TOPIC
    discovery_prefix: str = DEFAULT_DISCOVERY_PREFIX
    device_name: str = ""
    hostname: str = field(default_factory=short_hostname)
    process_id: int = field(default_factory=os.getpid)

    @classmethod
    def load(cls) -> "Configuration":
        """Build from the config file + environment."""
        mqtt = cfg("mqtt", default={}) or {}
        try:
            port = int(mqtt.get("port", DEFAULT_PORT))
        except (TypeError, ValueError):
            port = 0
        return cls(
            host=str(mqtt.get("host", "") or ""),
            port=port,
            use_tls=bool(mqtt.get("use_tls", False)),
            username=os.getenv("MQTT_USER") or str(mqtt.get("username", "") or ""),
            password_ref=mqtt.get("password_ref", DEFAULT_PASSWORD_REF),
            base_topic=mqtt.get("base_topic") or DEFAULT_BASE_TOPIC,
            discovery_prefix=mqtt.get("discovery_prefix") or DEFAULT_DISCOVERY_PREFIX,
            device_name=cfg("device", "name", default="") or "",
        )

    @property
    def is_valid(self) -> bool:
        return bool(self.host) and self.port > 0

    @property
    def password(self) -> str:
        return resolve_secret(self.password_ref)

    @property
    def effective_port(self) -> int:
        if self.use_tls and self.port == DEFAULT_PORT:
            return DEFAULT_TLS_PORT
        return self.port

    @property
    def client_id(self) -> str:
        host = self.hostname.replace(" ", "_")
        return f"{CLIENT_ID_PREFIX}_{host}_{self.process_id}"

    @property
    def unique_id(self) -> str:
        return unique_device_id(self.hostname)

    @property
    def effective_device_name(self) -> str:
        return self.device_name or self.hostname or "Media Bridge"

    # -- topics --

    @property
    def discovery_topic(self) -> str:
        return f"{self.discovery_prefix}/media_player/{self.unique_id}/config"

    @property
    def state_topic(self) -> str:
        return f"{self.base_topic}/state"

    @property
    def command_topic(self) -> str:
        return f"{self.base_topic}/command"

    @property
    def volume_command_topic(self) -> str:
        return f"{self.base_topic}/set_volume"

    @property
    def availability_topic(self) -> str:
        return f"{self.base_topic}/available"

    def topic(self, attribute: str) -> str:
        """Per-attribute state topic, e.g. topic('title')."""
        return f"{self.base_topic}/{attribute}"
