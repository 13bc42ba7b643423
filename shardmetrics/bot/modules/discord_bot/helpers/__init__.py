from __future__ import annotations

# Re-exports used by the metrics cog and by bot code that wants the building blocks.
from .counter_store import CounterStore
from .cpu_sampler import CpuSample, CpuSampler, percent_since_last
from .snapshot import ShardSnapshot, ShardState, SnapshotCollector

__all__ = [
    "CounterStore",
    "CpuSample",
    "CpuSampler",
    "percent_since_last",
    "ShardSnapshot",
    "ShardState",
    "SnapshotCollector",
]
