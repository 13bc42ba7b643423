# tests/conftest.py
import os
import sys
from collections import namedtuple
from types import SimpleNamespace

import pytest

# Ensure repo root on sys.path (so 'shardmetrics' is importable without installing)
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from shardmetrics.bot.modules.discord_bot.helpers.cpu_sampler import CpuSampler  # noqa: E402

CpuTimes = namedtuple("CpuTimes", "user system")


class FakeShard:
    def __init__(self, id, latency=0.05, closed=False, broken=False):
        self.id = id
        self._latency = latency
        self.closed = closed
        self.broken = broken

    @property
    def latency(self):
        if self.broken:
            raise RuntimeError("shard gone")
        return self._latency

    def is_closed(self):
        if self.broken:
            raise RuntimeError("shard gone")
        return self.closed


class FakeBot:
    """Just enough of a discord.py client for the collector and the cog."""

    def __init__(self, shards=None, guilds=(), ready=True, latency=0.04, application_id=1234, shard_id=None):
        if shards is not None:
            self.shards = {s.id: s for s in shards}
        self.guilds = list(guilds)
        self.latency = latency
        self.application_id = application_id
        self.shard_id = shard_id
        self._ready = ready

    def is_ready(self):
        return self._ready

    def is_closed(self):
        return False

    async def wait_until_ready(self):
        return None


def guilds_on(*shard_ids):
    return [SimpleNamespace(id=i, shard_id=sid) for i, sid in enumerate(shard_ids)]


class FakeProcess:
    def __init__(self, user=1.0, system=0.5, rss=64 * 1024 * 1024):
        self.user = user
        self.system = system
        self.rss = rss

    def cpu_times(self):
        return CpuTimes(self.user, self.system)

    def memory_info(self):
        return SimpleNamespace(rss=self.rss)


class FakeClock:
    def __init__(self, start=0.0, step=1000.0):
        self.now = start
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


class FakeWriteApi:
    def __init__(self, client):
        self.client = client

    async def write(self, bucket, org, record):
        if self.client.recorder.fail:
            raise ConnectionError("influx down")
        self.client.recorder.writes.append({"bucket": bucket, "org": org, "points": list(record)})
        return True


class FakeInfluxClient:
    def __init__(self, recorder, **kwargs):
        self.recorder = recorder
        self.kwargs = kwargs

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.recorder.closed += 1
        return False

    def write_api(self):
        return FakeWriteApi(self)


class InfluxRecorder:
    """Client factory that remembers every batch instead of talking to InfluxDB."""

    def __init__(self, fail=False):
        self.fail = fail
        self.writes = []
        self.closed = 0
        self.opened = []

    def __call__(self, **kwargs):
        self.opened.append(kwargs)
        return FakeInfluxClient(self, **kwargs)


class FakeTopggClient:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def request(self, method, path, body=None, token=None):
        if self.fail:
            raise ConnectionError("top.gg down")
        self.calls.append((method, path, body, token))
        return None


@pytest.fixture
def fake_sampler():
    return CpuSampler(process=FakeProcess(), clock=FakeClock())


@pytest.fixture
def influx_recorder():
    return InfluxRecorder()


@pytest.fixture(autouse=True)
def _no_topgg_env(monkeypatch):
    monkeypatch.delenv("TOPGG_TOKEN", raising=False)
