"""Shared fixtures: SQLite-backed context, in-memory Redis, scripted adapters."""

import asyncio
import fnmatch

import pytest

from strim.adapters.base import SourceAdapter
from strim.adapters.registry import AdapterRegistry
from strim.config import Settings
from strim.context import AppContext
from strim.core.cache import CacheService
from strim.db.database import init_db
from strim.db.schemas import (
    ApiResponse,
    NormalizedDrama,
    NormalizedDramaDetail,
    NormalizedEpisode,
    NormalizedHomeData,
    StreamSource,
)


class FakeRedis:
    """The subset of redis.asyncio.Redis that CacheService uses, in memory."""

    def __init__(self):
        self.strings: dict[str, str] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.ttls: dict[str, int] = {}

    async def ping(self):
        return True

    async def aclose(self):
        pass

    async def get(self, key):
        return self.strings.get(key)

    async def set(self, key, value):
        self.strings[key] = value
        return True

    async def setex(self, key, ttl, value):
        self.strings[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += (self.strings.pop(key, None) is not None) + (self.zsets.pop(key, None) is not None)
        return removed

    async def incr(self, key):
        value = int(self.strings.get(key, 0)) + 1
        self.strings[key] = str(value)
        return value

    async def expire(self, key, ttl):
        self.ttls[key] = ttl
        return True

    async def mget(self, keys):
        return [self.strings.get(key) for key in keys]

    async def scan_iter(self, match="*", count=None):
        for key in list(self.strings) + list(self.zsets):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def zincrby(self, name, amount, member):
        zset = self.zsets.setdefault(name, {})
        zset[member] = zset.get(member, 0.0) + amount
        return zset[member]

    async def zadd(self, name, mapping):
        zset = self.zsets.setdefault(name, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update({member: float(score) for member, score in mapping.items()})
        return added

    async def zrem(self, name, *members):
        zset = self.zsets.get(name, {})
        return sum(1 for member in members if zset.pop(member, None) is not None)

    async def zrevrange(self, name, start, end, withscores=False):
        ranked = sorted(self.zsets.get(name, {}).items(), key=lambda item: (item[1], item[0]), reverse=True)
        ranked = ranked[start : None if end == -1 else end + 1]
        return ranked if withscores else [member for member, _ in ranked]

    @staticmethod
    def _bound(value):
        if value == "-inf":
            return float("-inf")
        if value == "+inf":
            return float("inf")
        return float(value)

    async def zrangebyscore(self, name, min, max):
        low, high = self._bound(min), self._bound(max)
        return [
            member
            for member, score in sorted(self.zsets.get(name, {}).items(), key=lambda item: item[1])
            if low <= score <= high
        ]

    async def zremrangebyscore(self, name, min, max):
        doomed = await self.zrangebyscore(name, min, max)
        return await self.zrem(name, *doomed)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance_hours(self, hours: float):
        self.now += hours * 3600


def drama(source: str, drama_id: str, title: str = "", **fields) -> NormalizedDrama:
    return NormalizedDrama(id=drama_id, source=source, title=title or f"{source} {drama_id}", **fields)


def episode(number: int) -> NormalizedEpisode:
    return NormalizedEpisode(
        id=f"ep{number}",
        episode_number=number,
        streams=[StreamSource(quality="720p", url=f"https://cdn.example/{number}.m3u8", type="hls")],
    )


class ScriptedAdapter(SourceAdapter):
    """Adapter returning canned data; `fail` makes get_home raise."""

    display_name = "Scripted"

    def __init__(self, source: str, home: NormalizedHomeData | None = None, *, fail: bool = False, details=None):
        super().__init__("http://scripted.invalid", 1.0)
        self.source = source
        self.home = home or NormalizedHomeData()
        self.fail = fail
        self.details = details or {}
        self.init_calls = 0
        self.closed = False

    async def init(self):
        self.init_calls += 1
        return self

    async def get_home(self):
        if self.fail:
            raise RuntimeError(f"{self.source} is down")
        return ApiResponse(status=200, data=self.home)

    async def search(self, query):
        matches = [d for d in self.home.trending + self.home.latest if query.lower() in d.title.lower()]
        return ApiResponse(status=200, data=matches)

    async def get_drama(self, drama_id):
        detail = self.details.get(drama_id)
        if detail is None:
            return ApiResponse(status=404, error="Drama not found")
        return ApiResponse(status=200, data=detail)

    async def close(self):
        self.closed = True


def registry_of(*adapters: ScriptedAdapter) -> AdapterRegistry:
    return AdapterRegistry({adapter.source: (lambda a=adapter: a) for adapter in adapters})


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'strim.db'}",
        redis_url=None,
        enabled_sources=["dramadash", "dramabox"],
        cron_secret=None,
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_context(settings, fake_redis, clock):
    """Build an AppContext on a fresh SQLite file with the given adapters."""

    def _make(*adapters: ScriptedAdapter, redis=fake_redis, **overrides) -> AppContext:
        ctx_settings = settings.model_copy(update=overrides) if overrides else settings
        cache = CacheService(client=redis, clock=clock) if redis is not None else CacheService(None)
        context = AppContext.create(ctx_settings, registry=registry_of(*adapters), cache=cache)
        asyncio.run(init_db(context.engine))
        return context

    return _make
