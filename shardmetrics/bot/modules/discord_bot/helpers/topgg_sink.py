from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import aiohttp

from shardmetrics.config.metrics_conf import TOPGG_TOKEN_ENV, MetricsConfigError, TopggConfig
from .report import Report

log = logging.getLogger(__name__)

TOPGG_BASE_URL = "https://top.gg/api"


class ApplicationIdentityError(RuntimeError):
    """The bot does not know its application id yet (not logged in)."""


class TopggClient:
    """Tiny Top.gg REST client: ``request(method, path, body, token) -> body``.

    No retries; a non-2xx answer raises ``aiohttp.ClientResponseError``.
    """

    def __init__(self, base_url: str = TOPGG_BASE_URL, session: Optional[aiohttp.ClientSession] = None, timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None, token: Optional[str] = None) -> Any:
        token = token or os.getenv(TOPGG_TOKEN_ENV)
        if not token:
            raise MetricsConfigError("Top.gg API token is undefined")
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Authorization": token}
        if self._session is not None:
            return await self._send(self._session, method, url, body, headers)
        async with aiohttp.ClientSession(timeout=self._timeout) as sess:
            return await self._send(sess, method, url, body, headers)

    async def _send(self, sess: aiohttp.ClientSession, method: str, url: str, body, headers) -> Any:
        async with sess.request(method, url, json=body, headers=headers, raise_for_status=True) as r:
            text = await r.text()
        return json.loads(text) if text else None


class LeaderboardSink:
    """Posts the server (and optionally shard) count to Top.gg."""

    name = "topgg"

    def __init__(self, config: TopggConfig, client: Optional[TopggClient] = None):
        config.validate()
        self.config = config
        self.client = client or TopggClient()

    def encode(self, report: Report) -> Dict[str, int]:
        body = {"server_count": report.guild_count}
        if self.config.post_shards:
            body["shard_count"] = report.shard_count
        return body

    async def send(self, report: Report, application_id: Optional[int]) -> Dict[str, int]:
        if not application_id:
            raise ApplicationIdentityError("Cannot post to Top.gg; the bot's application id is not known yet (not logged in?)")
        body = self.encode(report)
        await self.client.request("POST", f"/bots/{application_id}/stats", body=body, token=self.config.token)
        log.debug("[metrics] Posted metrics to Top.gg: %s", body)
        return body
