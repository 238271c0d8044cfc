"""Shared plumbing: config, models, subprocess streams, MQTT transport, volume adapters."""
