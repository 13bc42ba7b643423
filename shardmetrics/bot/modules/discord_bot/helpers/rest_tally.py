from __future__ import annotations

from typing import Dict, Optional

import aiohttp

from .counter_store import CounterStore


class RestTally:
    """Counts Discord REST responses by status code.

    Pass ``tally.trace_config`` as ``http_trace=`` when building the bot so that
    discord.py's own aiohttp session reports every finished request here.
    """

    def __init__(self, store: Optional[CounterStore] = None):
        self.codes = store if store is not None else CounterStore()
        self.trace_config = aiohttp.TraceConfig()
        self.trace_config.on_request_end.append(self._on_request_end)

    async def _on_request_end(self, session, trace_config_ctx, params: aiohttp.TraceRequestEndParams) -> None:
        self.record(params.response.status)

    def record(self, status: int) -> None:
        self.codes.increment(str(int(status)))

    def snapshot(self) -> Dict[int, int]:
        return {int(code): count for code, count in sorted(self.codes.snapshot().items(), key=lambda kv: int(kv[0]))}
