"""
mediabridge — exposes the host's Now Playing session and system volume to
Home Assistant as an MQTT media player.

The helper binary (media-control) streams what is playing; the bridge turns
that into retained MQTT state topics, publishes a hass-mqtt-mediaplayer
discovery document, and executes the commands Home Assistant sends back.

Modules:
  now_playing.py  — NowPlayingTracker, media-control stream → MediaState
  volume.py       — VolumeMonitor, polls the system volume endpoint
  discovery.py    — DiscoveryPublisher, discovery document + state topics
  coordinator.py  — StatePublishCoordinator, debounced state publishing
  commands.py     — CommandRouter + CommandExecutor for inbound commands
  bridge.py       — service wiring, local HTTP API, CLI entry point
"""

__version__ = "1.0.0"
