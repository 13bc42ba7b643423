from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .counter_store import CounterStore
from .cpu_sampler import CpuSampler
from .snapshot import ServiceSnapshot, ShardSnapshot, SnapshotCollector

ExtensionHook = Callable[[], Any]


@dataclass
class Report:
    """Everything one reporting cycle hands to a sink. Built, encoded once, dropped."""

    service: ServiceSnapshot
    cpu_percent: float = 0.0
    memory_bytes: int = 0
    commands: Dict[str, int] = field(default_factory=dict)
    command_errors: Dict[str, int] = field(default_factory=dict)
    extra: List[Any] = field(default_factory=list)

    @property
    def shards(self) -> Tuple[ShardSnapshot, ...]:
        return self.service.shards

    @property
    def shard_count(self) -> int:
        return self.service.shard_count

    @property
    def guild_count(self) -> int:
        return self.service.guild_count

    @property
    def average_latency_ms(self) -> float:
        return self.service.average_latency_ms

    @property
    def response_codes(self) -> Dict[int, int]:
        return self.service.response_codes


async def fetch_extension(hook: Optional[ExtensionHook], timeout: Optional[float] = None) -> List[Any]:
    """Call the caller-supplied hook; it may return records or an awaitable of records."""
    if hook is None:
        return []
    res = hook()
    if inspect.isawaitable(res):
        if timeout is not None:
            res = await asyncio.wait_for(res, timeout)
        else:
            res = await res
    return list(res or [])


async def build_influx_report(
    sampler: CpuSampler,
    collector: SnapshotCollector,
    commands: CounterStore,
    command_errors: CounterStore,
    hook: Optional[ExtensionHook] = None,
    hook_timeout: Optional[float] = None,
) -> Report:
    # sample first: the retained CPU sample moves even if the rest of the cycle fails
    cpu = sampler.percent()
    memory = sampler.memory_rss()
    service = await collector.collect()
    extra = await fetch_extension(hook, hook_timeout)
    return Report(
        service=service,
        cpu_percent=cpu,
        memory_bytes=memory,
        commands=commands.snapshot(),
        command_errors=command_errors.snapshot(),
        extra=extra,
    )


async def build_leaderboard_report(collector: SnapshotCollector) -> Report:
    return Report(service=await collector.collect())
