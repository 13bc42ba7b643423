from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from influxdb_client import Point
from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync

from shardmetrics.config.metrics_conf import InfluxConfig
from .report import Report

log = logging.getLogger(__name__)


class InfluxSink:
    """Turns a :class:`Report` into InfluxDB points and writes them as one batch.

    Measurements: ``process``, ``command``, ``commandError``, ``rest``, ``shard``.
    Every point, including those from the extension hook, carries the
    ``application`` tag plus ``extra_tags``. Hook points are otherwise left as built.
    """

    name = "influxdb"

    def __init__(self, config: InfluxConfig, client_factory: Optional[Callable[..., InfluxDBClientAsync]] = None):
        self.config = config
        self._client_factory = client_factory or InfluxDBClientAsync

    @property
    def default_tags(self) -> Dict[str, str]:
        tags = {"application": self.config.application}
        tags.update({str(k): str(v) for k, v in (self.config.extra_tags or {}).items()})
        return tags

    def _point(self, measurement: str) -> Point:
        p = Point(measurement)
        for key, value in self.default_tags.items():
            p.tag(key, value)
        return p

    def _with_default_tags(self, point: Point) -> Point:
        # tags the hook set itself win over the fixed ones
        own = set(getattr(point, "_tags", None) or {})
        for key, value in self.default_tags.items():
            if key not in own:
                point.tag(key, value)
        return point

    def encode(self, report: Report) -> List[Point]:
        points: List[Point] = [
            self._point("process")
            .field("cpu", float(report.cpu_percent))
            .field("memory", int(report.memory_bytes))
            .field("shards", int(report.shard_count))
            .field("guilds", int(report.guild_count))
            .field("ping", float(report.average_latency_ms))
        ]

        for command, count in sorted(report.commands.items()):
            points.append(self._point("command").tag("name", command).field("count", int(count)))

        for command, count in sorted(report.command_errors.items()):
            points.append(self._point("commandError").tag("name", command).field("count", int(count)))

        for code, count in sorted(report.response_codes.items()):
            points.append(self._point("rest").tag("code", str(code)).field("count", int(count)))

        for shard in report.shards:
            p = self._point("shard").tag("id", str(shard.id)).field("guilds", int(shard.guild_count))
            if shard.latency_ms is not None:
                p.field("ping", int(round(shard.latency_ms)))
            points.append(p.field("state", shard.state.value))

        for extra in report.extra:
            points.append(self._with_default_tags(extra))
        return points

    async def send(self, report: Report) -> int:
        points = self.encode(report)
        cfg = self.config
        # leaving the context closes the client; the cycle only counts once that returns
        async with self._client_factory(url=cfg.url, token=cfg.token, org=cfg.org) as client:
            await client.write_api().write(bucket=cfg.bucket, org=cfg.org, record=points)
        log.debug("[metrics] Wrote %d points to InfluxDB", len(points))
        return len(points)
