from __future__ import annotations

import asyncio
import enum
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .rest_tally import RestTally

log = logging.getLogger(__name__)


class ShardState(enum.Enum):
    CONNECTING = "connecting"
    IDENTIFYING = "identifying"
    RESUMING = "resuming"
    READY = "ready"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ShardSnapshot:
    id: int
    guild_count: int
    latency_ms: Optional[float]
    state: ShardState


@dataclass(frozen=True)
class ServiceSnapshot:
    shards: Tuple[ShardSnapshot, ...] = ()
    guild_count: int = 0
    response_codes: Dict[int, int] = field(default_factory=dict)

    @property
    def shard_count(self) -> int:
        return len(self.shards)

    @property
    def average_latency_ms(self) -> float:
        ready = [s.latency_ms for s in self.shards if s.state is ShardState.READY and s.latency_ms is not None]
        if not ready:
            return 0.0
        return sum(ready) / len(ready)


def _to_ms(seconds) -> Optional[float]:
    """discord.py reports latency in seconds, ``nan``/``inf`` until the first heartbeat ACK."""
    if seconds is None:
        return None
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value * 1000.0


class SnapshotCollector:
    """Read-only view over a discord.py client's gateway state.

    Works with both ``AutoShardedBot`` (``bot.shards``) and a plain ``Bot``
    (single shard ``bot.shard_id or 0``). A shard that cannot be read is reported
    with latency 0 instead of failing the whole snapshot.
    """

    def __init__(self, bot, rest_tally: Optional[RestTally] = None):
        self.bot = bot
        self.rest_tally = rest_tally

    async def collect(self) -> ServiceSnapshot:
        guilds = list(getattr(self.bot, "guilds", None) or [])
        per_shard = Counter(getattr(g, "shard_id", 0) or 0 for g in guilds)

        shards: List[ShardSnapshot] = []
        for shard_id, shard in self._iter_shards():
            shards.append(self._read_shard(shard_id, shard, per_shard.get(shard_id, 0)))
            # yield between shards; large clusters should not hog the loop
            await asyncio.sleep(0)

        codes = self.rest_tally.snapshot() if self.rest_tally is not None else {}
        return ServiceSnapshot(shards=tuple(shards), guild_count=len(guilds), response_codes=codes)

    def application_id(self) -> Optional[int]:
        app_id = getattr(self.bot, "application_id", None)
        if app_id is None:
            user = getattr(self.bot, "user", None)
            app_id = getattr(user, "id", None)
        return int(app_id) if app_id else None

    def _iter_shards(self):
        shards = getattr(self.bot, "shards", None)
        if isinstance(shards, dict):
            for shard_id in sorted(shards):
                yield shard_id, shards[shard_id]
            return
        yield (getattr(self.bot, "shard_id", None) or 0), None

    def _read_shard(self, shard_id: int, shard, guild_count: int) -> ShardSnapshot:
        try:
            source = shard if shard is not None else self.bot
            closed = bool(source.is_closed())
            latency_ms = _to_ms(source.latency)
            ready = bool(self.bot.is_ready())
        except Exception as e:
            log.warning("[metrics] could not read shard %s: %r", shard_id, e)
            return ShardSnapshot(id=shard_id, guild_count=guild_count, latency_ms=0.0, state=ShardState.DISCONNECTED)

        if closed:
            state = ShardState.DISCONNECTED
        elif latency_ms is None:
            state = ShardState.CONNECTING
        elif not ready:
            state = ShardState.IDENTIFYING
        else:
            state = ShardState.READY
        return ShardSnapshot(id=shard_id, guild_count=guild_count, latency_ms=latency_ms, state=state)
