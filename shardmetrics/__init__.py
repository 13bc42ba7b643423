"""Shard/process telemetry for discord.py bots, reported to InfluxDB and Top.gg."""

__version__ = "0.1.0"
