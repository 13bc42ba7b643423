"""Metrics sink configuration.

Layering, highest first: a JSON file (``METRICS_CONFIG_FILE`` or one of the
default candidates) with ``influxdb`` / ``topgg`` objects, then environment
variables (a ``.env`` file is loaded by the process entry). A sink without a
section is disabled; an enabled sink with missing fields is a startup error.
"""
from __future__ import annotations

import json
import logging
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

log = logging.getLogger(__name__)

_CANDIDATES = [
    "metrics.json",
    "config/metrics.json",
]

TOPGG_TOKEN_ENV = "TOPGG_TOKEN"


class MetricsConfigError(ValueError):
    """An enabled sink is missing something it needs."""


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on", "y")
    return bool(value)


def _coerce_interval(value: Any, sink: str) -> int:
    if value in (None, ""):
        return 0
    try:
        ms = int(value)
    except (TypeError, ValueError):
        raise MetricsConfigError(f"{sink}: report interval must be an integer number of milliseconds, got {value!r}")
    if ms < 0:
        raise MetricsConfigError(f"{sink}: report interval must not be negative, got {ms}")
    return ms


def parse_tags(raw: Any) -> Dict[str, str]:
    """Accept a mapping or a ``k=v,k2=v2`` string."""
    if not raw:
        return {}
    if isinstance(raw, Mapping):
        return {str(k): str(v) for k, v in raw.items()}
    tags: Dict[str, str] = {}
    for part in str(raw).split(","):
        part = part.strip()
        if not part:
            continue
        if "=" not in part:
            raise MetricsConfigError(f"influxdb: malformed tag {part!r}, expected key=value")
        k, v = part.split("=", 1)
        tags[k.strip()] = v.strip()
    return tags


@dataclass
class InfluxConfig:
    url: str = ""
    token: str = ""
    org: str = ""
    bucket: str = ""
    application: str = ""
    extra_tags: Dict[str, str] = field(default_factory=dict)
    report_interval_ms: int = 0

    def validate(self) -> "InfluxConfig":
        missing = [name for name in ("url", "token", "org", "bucket", "application") if not getattr(self, name)]
        if missing:
            raise MetricsConfigError(f"influxdb is enabled but missing: {', '.join(missing)}")
        self.report_interval_ms = _coerce_interval(self.report_interval_ms, "influxdb")
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "InfluxConfig":
        return cls(
            url=str(data.get("url") or ""),
            token=str(data.get("token") or ""),
            org=str(data.get("org") or ""),
            bucket=str(data.get("bucket") or ""),
            application=str(data.get("application") or ""),
            extra_tags=parse_tags(data.get("extra_tags") or data.get("extraTags")),
            report_interval_ms=_coerce_interval(data.get("report_interval_ms", data.get("reportInterval")), "influxdb"),
        )


@dataclass
class TopggConfig:
    token: Optional[str] = None
    report_interval_ms: int = 0
    post_shards: bool = False

    def validate(self) -> "TopggConfig":
        if not self.token:
            self.token = os.getenv(TOPGG_TOKEN_ENV) or None
        if not self.token:
            raise MetricsConfigError(f"Top.gg API token is undefined (set topgg.token or {TOPGG_TOKEN_ENV})")
        self.report_interval_ms = _coerce_interval(self.report_interval_ms, "topgg")
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TopggConfig":
        return cls(
            token=data.get("token") or None,
            report_interval_ms=_coerce_interval(data.get("report_interval_ms", data.get("reportInterval")), "topgg"),
            post_shards=_coerce_bool(data.get("post_shards", data.get("postShards", False))),
        )


@dataclass
class MetricsConfig:
    influxdb: Optional[InfluxConfig] = None
    topgg: Optional[TopggConfig] = None

    def validate(self) -> "MetricsConfig":
        if self.influxdb is not None:
            self.influxdb.validate()
        if self.topgg is not None:
            self.topgg.validate()
        return self

    def secrets(self) -> List[str]:
        out = []
        if self.influxdb is not None and self.influxdb.token:
            out.append(self.influxdb.token)
        if self.topgg is not None and self.topgg.token:
            out.append(self.topgg.token)
        return out

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MetricsConfig":
        influx = data.get("influxdb") or data.get("influxDB")
        topgg = data.get("topgg")
        return cls(
            influxdb=InfluxConfig.from_mapping(influx) if influx else None,
            topgg=TopggConfig.from_mapping(topgg) if isinstance(topgg, Mapping) else (TopggConfig() if topgg else None),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MetricsConfig":
        env = os.environ if environ is None else environ
        influx = None
        if env.get("INFLUXDB_URL"):
            influx = InfluxConfig(
                url=env.get("INFLUXDB_URL", ""),
                token=env.get("INFLUXDB_TOKEN", ""),
                org=env.get("INFLUXDB_ORG", ""),
                bucket=env.get("INFLUXDB_BUCKET", ""),
                application=env.get("INFLUXDB_APPLICATION", ""),
                extra_tags=parse_tags(env.get("INFLUXDB_EXTRA_TAGS")),
                report_interval_ms=_coerce_interval(env.get("INFLUXDB_REPORT_INTERVAL"), "influxdb"),
            )
        topgg = None
        if _coerce_bool(env.get("TOPGG_ENABLED", "0")):
            topgg = TopggConfig(
                token=env.get(TOPGG_TOKEN_ENV) or None,
                report_interval_ms=_coerce_interval(env.get("TOPGG_REPORT_INTERVAL"), "topgg"),
                post_shards=_coerce_bool(env.get("TOPGG_POST_SHARDS", "0")),
            )
        return cls(influxdb=influx, topgg=topgg)


def _safe_json_load(path: pathlib.Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log.warning("[metrics_conf] cannot read %s: %r", path, e)
        return None
    return data if isinstance(data, dict) else None


def load_config(path: Optional[str] = None) -> MetricsConfig:
    """Load and validate the metrics configuration."""
    if path and not pathlib.Path(path).exists():
        raise MetricsConfigError(f"metrics config file not found: {path}")
    candidates = [path] if path else ([os.getenv("METRICS_CONFIG_FILE")] if os.getenv("METRICS_CONFIG_FILE") else _CANDIDATES)
    for cand in candidates:
        p = pathlib.Path(cand)
        if p.exists():
            data = _safe_json_load(p)
            if data is not None:
                log.info("[metrics_conf] using %s", p)
                return MetricsConfig.from_mapping(data).validate()
    return MetricsConfig.from_env().validate()
