"""Redis caching layer: response caches, trending/hot sorted sets, view buckets.

The cache is advisory. If REDIS_URL is unset or Redis is unreachable, every
operation degrades to a miss / no-op and callers fall back to the database.
"""

import json
import logging
import math
import time
from typing import Any, Callable

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# Errors that mean "treat as a miss", never surfaced to callers
CACHE_ERRORS = (RedisError, OSError, ValueError, TypeError)

# Hot score decay constant: weight = e^(-hours_ago / HOT_DECAY_HOURS)
HOT_DECAY_HOURS = 24.0


class CacheService:
    """Async Redis cache service."""

    # Key patterns
    HOME_CACHE = "cache:home"
    ALL_VIDEOS_PREFIX = "cache:videos:all"
    EXPLORE_PREFIX = "cache:explore"
    TRENDING_SORTED_SET = "trending:videos"
    HOT_SORTED_SET = "hot:videos"
    HOT_ACTIVE_SET = "hot:active"  # member -> last hour it was viewed
    VIEW_24H_PREFIX = "views_24h:"

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        socket_timeout: float = 2.0,
        bucket_ttl: int = 86400,
        hot_window_hours: int = 24,
        client: Any = None,
        clock: Callable[[], float] = time.time,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.bucket_ttl = bucket_ttl
        self.hot_window_hours = hot_window_hours
        self._clock = clock
        self._redis = client

        if client is None and not redis_url:
            logger.warning("REDIS_URL not set - caching disabled")

    def _get_redis(self) -> redis.Redis | None:
        """Get or create Redis connection. None when caching is disabled."""
        if self._redis is None and self.redis_url:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
        return self._redis

    def is_available(self) -> bool:
        """True if a cache backend is configured (it may still be unreachable)."""
        return self._get_redis() is not None

    async def ping(self) -> bool:
        client = self._get_redis()
        if client is None:
            return False
        try:
            return bool(await client.ping())
        except CACHE_ERRORS as e:
            logger.warning(f"Cache ping failed: {e}")
            return False

    async def close(self):
        """Close Redis connection."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except CACHE_ERRORS as e:
                logger.warning(f"Cache close error: {e}")
            self._redis = None

    # =========================================================================
    # Basic operations
    # =========================================================================

    async def get(self, key: str) -> Any | None:
        """Get value from cache."""
        client = self._get_redis()
        if client is None:
            return None
        try:
            value = await client.get(key)
            if value:
                return json.loads(value)
            return None
        except CACHE_ERRORS as e:
            logger.warning(f"Cache get error for {key}: {e}")
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> bool:
        """Set value in cache with optional TTL."""
        client = self._get_redis()
        if client is None:
            return False
        try:
            serialized = json.dumps(value)
            if ttl:
                await client.setex(key, ttl, serialized)
            else:
                await client.set(key, serialized)
            return True
        except CACHE_ERRORS as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        client = self._get_redis()
        if client is None:
            return False
        try:
            await client.delete(key)
            return True
        except CACHE_ERRORS as e:
            logger.warning(f"Cache delete error for {key}: {e}")
            return False

    async def flush_pattern(self, pattern: str) -> int:
        """Delete all keys matching a pattern. Returns count of deleted keys."""
        client = self._get_redis()
        if client is None:
            return 0
        try:
            deleted = 0
            async for key in client.scan_iter(match=pattern, count=500):
                await client.delete(key)
                deleted += 1
            return deleted
        except CACHE_ERRORS as e:
            logger.warning(f"Cache flush_pattern error for {pattern}: {e}")
            return 0

    # =========================================================================
    # Response caches
    # =========================================================================

    async def get_cached_home(self) -> Any | None:
        return await self.get(self.HOME_CACHE)

    async def set_cached_home(self, data: Any, ttl: int = 300) -> bool:
        return await self.set(self.HOME_CACHE, data, ttl)

    async def invalidate_home_cache(self) -> bool:
        return await self.delete(self.HOME_CACHE)

    @classmethod
    def all_videos_key(cls, limit: int, offset: int) -> str:
        return f"{cls.ALL_VIDEOS_PREFIX}:{limit}:{offset}"

    async def get_cached_all_videos(self, limit: int, offset: int) -> Any | None:
        return await self.get(self.all_videos_key(limit, offset))

    async def set_cached_all_videos(self, limit: int, offset: int, data: Any, ttl: int = 300) -> bool:
        return await self.set(self.all_videos_key(limit, offset), data, ttl)

    async def invalidate_all_videos_cache(self) -> int:
        return await self.flush_pattern(f"{self.ALL_VIDEOS_PREFIX}:*")

    @classmethod
    def explore_key(cls, sort: str, cursor: str | None, limit: int) -> str:
        return f"{cls.EXPLORE_PREFIX}:{sort}:{cursor or 'first'}:{limit}"

    async def invalidate_explore_cache(self) -> int:
        return await self.flush_pattern(f"{self.EXPLORE_PREFIX}:*")

    # =========================================================================
    # Trending (lifetime views, never decays)
    # =========================================================================

    async def increment_view_count(self, video_key: str) -> float:
        """ZINCRBY the lifetime trending score. Returns the new score, 0 on failure."""
        client = self._get_redis()
        if client is None:
            return 0.0
        try:
            return float(await client.zincrby(self.TRENDING_SORTED_SET, 1, video_key))
        except CACHE_ERRORS as e:
            logger.warning(f"Cache view increment error for {video_key}: {e}")
            return 0.0

    async def get_trending_scores(self, limit: int = 20) -> list[tuple[str, float]]:
        """Top trending keys, highest first."""
        return await self._top_scores(self.TRENDING_SORTED_SET, limit)

    # =========================================================================
    # Hot (time-decayed views over the last 24 hourly buckets)
    # =========================================================================

    def current_hour(self) -> int:
        """Hours since epoch."""
        return int(self._clock() // 3600)

    def bucket_key(self, video_key: str, hour: int) -> str:
        return f"{self.VIEW_24H_PREFIX}{video_key}:{hour}"

    async def record_hot_view(self, video_key: str) -> None:
        """
        Record one view in the current hourly bucket.

        The hot sorted set is bumped by 1 (a current-hour view has weight
        e^0 = 1); update_hot_scores() later re-applies decay to older buckets.
        """
        client = self._get_redis()
        if client is None:
            return
        hour = self.current_hour()
        bucket = self.bucket_key(video_key, hour)
        try:
            await client.incr(bucket)
            await client.expire(bucket, self.bucket_ttl)
            await client.zincrby(self.HOT_SORTED_SET, 1, video_key)
            await client.zadd(self.HOT_ACTIVE_SET, {video_key: hour})
        except CACHE_ERRORS as e:
            logger.warning(f"Cache hot view record error for {video_key}: {e}")

    async def calculate_hot_score(self, video_key: str, hour: int | None = None) -> float:
        """
        Score = sum over the window of views_in_hour * e^(-hours_ago / 24).
        """
        client = self._get_redis()
        if client is None:
            return 0.0
        if hour is None:
            hour = self.current_hour()
        keys = [self.bucket_key(video_key, hour - ago) for ago in range(self.hot_window_hours)]
        try:
            values = await client.mget(keys)
        except CACHE_ERRORS as e:
            logger.warning(f"Cache hot score calculation error for {video_key}: {e}")
            return 0.0
        return hot_score_from_buckets(
            {ago: int(v) for ago, v in enumerate(values) if v}
        )

    async def update_hot_scores(self, video_keys: list[str] | None = None) -> int:
        """
        Recompute decayed hot scores into the hot sorted set.

        With no keys given, recomputes every key viewed inside the window and
        drops keys whose last view fell out of it. Returns keys rewritten.
        """
        client = self._get_redis()
        if client is None:
            return 0
        hour = self.current_hour()
        oldest = hour - self.hot_window_hours + 1
        try:
            if video_keys is None:
                expired = await client.zrangebyscore(self.HOT_ACTIVE_SET, "-inf", oldest - 1)
                if expired:
                    await client.zrem(self.HOT_SORTED_SET, *expired)
                    await client.zremrangebyscore(self.HOT_ACTIVE_SET, "-inf", oldest - 1)
                video_keys = await client.zrangebyscore(self.HOT_ACTIVE_SET, oldest, "+inf")
            if not video_keys:
                return 0

            scores = {}
            for key in video_keys:
                scores[key] = await self.calculate_hot_score(key, hour)

            live = {k: s for k, s in scores.items() if s > 0}
            dead = [k for k, s in scores.items() if s <= 0]
            if live:
                await client.zadd(self.HOT_SORTED_SET, live)
            if dead:
                await client.zrem(self.HOT_SORTED_SET, *dead)
            return len(scores)
        except CACHE_ERRORS as e:
            logger.warning(f"Cache hot scores update error: {e}")
            return 0

    async def get_hot_scores(self, limit: int = 20) -> list[tuple[str, float]]:
        """Top hot keys, highest first."""
        return await self._top_scores(self.HOT_SORTED_SET, limit)

    async def _top_scores(self, sorted_set: str, limit: int) -> list[tuple[str, float]]:
        client = self._get_redis()
        if client is None or limit <= 0:
            return []
        try:
            results = await client.zrevrange(sorted_set, 0, limit - 1, withscores=True)
            return [(member, float(score)) for member, score in results]
        except CACHE_ERRORS as e:
            logger.warning(f"Cache get {sorted_set} error: {e}")
            return []

    # =========================================================================
    # Keys
    # =========================================================================

    @staticmethod
    def create_video_key(source: str, external_id: str) -> str:
        return f"{source}:{external_id}"

    @staticmethod
    def parse_video_key(key: str) -> tuple[str, str] | None:
        """(source, external_id), or None for keys not in source:externalId form."""
        parts = key.split(":")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            return None
        return parts[0], parts[1]


def hot_score_from_buckets(buckets: dict[int, int]) -> float:
    """Decayed score from {hours_ago: views}."""
    return sum(
        views * math.exp(-hours_ago / HOT_DECAY_HOURS)
        for hours_ago, views in buckets.items()
    )
