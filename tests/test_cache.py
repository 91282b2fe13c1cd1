import asyncio
import math

from conftest import FakeClock, FakeRedis

from strim.core.cache import CacheService, hot_score_from_buckets


class BrokenRedis(FakeRedis):
    async def get(self, key):
        raise ConnectionError("redis went away")

    async def zincrby(self, name, amount, member):
        raise ConnectionError("redis went away")

    async def zrevrange(self, name, start, end, withscores=False):
        raise ConnectionError("redis went away")


def test_hot_score_decays_exponentially():
    score = hot_score_from_buckets({1: 10})
    assert math.isclose(score, 10 * math.exp(-1 / 24))
    assert hot_score_from_buckets({0: 5}) == 5
    assert hot_score_from_buckets({}) == 0


def test_five_views_this_hour_score_five(fake_redis, clock):
    cache = CacheService(client=fake_redis, clock=clock)

    async def run():
        for _ in range(5):
            await cache.record_hot_view("dramabox:42")
        return await cache.calculate_hot_score("dramabox:42"), await cache.get_hot_scores()

    score, ranked = asyncio.run(run())
    assert score == 5
    assert ranked == [("dramabox:42", 5.0)]


def test_hot_scores_decay_after_recompute(fake_redis, clock):
    cache = CacheService(client=fake_redis, clock=clock)

    async def run():
        for _ in range(10):
            await cache.record_hot_view("dramadash:7")
        clock.advance_hours(1)
        updated = await cache.update_hot_scores()
        return updated, await cache.get_hot_scores()

    updated, ranked = asyncio.run(run())
    assert updated == 1
    key, score = ranked[0]
    assert key == "dramadash:7"
    assert math.isclose(score, 10 * math.exp(-1 / 24))


def test_recompute_drops_keys_outside_window(fake_redis, clock):
    cache = CacheService(client=fake_redis, clock=clock)

    async def run():
        await cache.record_hot_view("dramabox:old")
        clock.advance_hours(30)
        await cache.record_hot_view("dramabox:new")
        await cache.update_hot_scores()
        return await cache.get_hot_scores()

    ranked = asyncio.run(run())
    assert [key for key, _ in ranked] == ["dramabox:new"]


def test_trending_counts_lifetime_views(fake_redis, clock):
    cache = CacheService(client=fake_redis, clock=clock)

    async def run():
        await cache.increment_view_count("dramabox:1")
        await cache.increment_view_count("dramabox:2")
        await cache.increment_view_count("dramabox:2")
        clock.advance_hours(100)
        return await cache.get_trending_scores(limit=10)

    assert asyncio.run(run()) == [("dramabox:2", 2.0), ("dramabox:1", 1.0)]


def test_response_cache_round_trip_and_invalidation(fake_redis):
    cache = CacheService(client=fake_redis, clock=FakeClock())

    async def run():
        await cache.set_cached_all_videos(20, 0, {"videos": [], "total": 0})
        await cache.set_cached_all_videos(20, 20, {"videos": [], "total": 0})
        await cache.set(CacheService.explore_key("popular", None, 20), {"items": []}, ttl=60)
        hit = await cache.get_cached_all_videos(20, 0)
        flushed = await cache.invalidate_all_videos_cache()
        miss = await cache.get_cached_all_videos(20, 0)
        explore = await cache.get("cache:explore:popular:first:20")
        return hit, flushed, miss, explore

    hit, flushed, miss, explore = asyncio.run(run())
    assert hit == {"videos": [], "total": 0}
    assert flushed == 2
    assert miss is None
    assert explore == {"items": []}
    assert fake_redis.ttls["cache:explore:popular:first:20"] == 60


def test_disabled_cache_is_a_no_op():
    cache = CacheService(None)

    async def run():
        assert await cache.set("k", 1) is False
        assert await cache.get("k") is None
        assert await cache.increment_view_count("dramabox:1") == 0
        await cache.record_hot_view("dramabox:1")
        assert await cache.get_hot_scores() == []
        assert await cache.update_hot_scores() == 0
        assert await cache.ping() is False

    asyncio.run(run())
    assert cache.is_available() is False


def test_redis_errors_degrade_to_misses(clock):
    cache = CacheService(client=BrokenRedis(), clock=clock)

    async def run():
        return (
            await cache.get("k"),
            await cache.increment_view_count("dramabox:1"),
            await cache.get_trending_scores(),
        )

    assert asyncio.run(run()) == (None, 0.0, [])


def test_video_keys():
    assert CacheService.create_video_key("dramabox", "42") == "dramabox:42"
    assert CacheService.parse_video_key("dramabox:42") == ("dramabox", "42")
    assert CacheService.parse_video_key("dramabox") is None
    assert CacheService.parse_video_key("a:b:c") is None
    assert CacheService.parse_video_key(":42") is None
