import asyncio
import math

import pytest
from conftest import ScriptedAdapter, drama
from sqlalchemy import func, select, update

from strim.db.models import UserWatchHistory, Video, VideoStats
from strim.db.schemas import ApiResponse, NormalizedHomeData, WatchEvent
from strim.services.aggregator import SourceSyncError


def _videos(context):
    async def load():
        async with context.session_factory() as db:
            rows = (await db.execute(select(Video).order_by(Video.id))).scalars().all()
            return [(v.source, v.external_id, v.title, v.total_episodes) for v in rows]

    return asyncio.run(load())


def _stats(context, source, external_id):
    async def load():
        async with context.session_factory() as db:
            row = (
                await db.execute(
                    select(VideoStats.views_total, VideoStats.views_24h)
                    .join(Video, Video.id == VideoStats.video_id)
                    .where(Video.source == source, Video.external_id == external_id)
                )
            ).one_or_none()
            return tuple(row) if row else None

    return asyncio.run(load())


def _set_stats(context, external_id, **values):
    async def run():
        async with context.session_factory() as db:
            video_id = (await db.execute(select(Video.id).where(Video.external_id == external_id))).scalar_one()
            await db.execute(update(VideoStats).where(VideoStats.video_id == video_id).values(**values))
            await db.commit()

    asyncio.run(run())


async def _view(context, source, external_id, times=1):
    for _ in range(times):
        await context.aggregator.record_view(source, external_id)
        await context.tasks.drain()


# ============ Upsert ============


def test_upsert_is_idempotent(make_context):
    context = make_context()
    items = [drama("dramabox", "1", "One"), drama("dramabox", "2", "Two")]

    assert asyncio.run(context.aggregator.upsert_videos(items)) == 2
    assert asyncio.run(context.aggregator.upsert_videos(items)) == 2

    assert _videos(context) == [("dramabox", "1", "One", None), ("dramabox", "2", "Two", None)]
    assert _stats(context, "dramabox", "1") == (0, 0)


def test_upsert_keeps_known_optional_fields(make_context):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", "1", "Old", total_episodes=60)]))
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", "1", "New title")]))

    assert _videos(context) == [("dramabox", "1", "New title", 60)]


def test_upsert_keeps_view_counts(make_context):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", "1")]))
    _set_stats(context, "1", views_total=12, views_24h=4)
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", "1", "Renamed")]))

    assert _stats(context, "dramabox", "1") == (12, 4)


def test_same_external_id_in_two_sources_are_distinct(make_context):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([
        drama("dramadash", "100", "Dash title"),
        drama("dramabox", "100", "Box title"),
    ]))

    assert sorted(_videos(context)) == [
        ("dramabox", "100", "Box title", None),
        ("dramadash", "100", "Dash title", None),
    ]

    async def view_one():
        await _view(context, "dramabox", "100", times=2)

    asyncio.run(view_one())
    assert _stats(context, "dramabox", "100") == (2, 2)
    assert _stats(context, "dramadash", "100") == (0, 0)


# ============ Sync ============


def test_sync_source_dedupes_across_home_lists(make_context):
    home = NormalizedHomeData(
        banners=[drama("dramabox", "1")],
        trending=[drama("dramabox", "1"), drama("dramabox", "2")],
        latest=[drama("dramabox", "2"), drama("dramabox", "3")],
    )
    context = make_context(ScriptedAdapter("dramabox", home))

    assert asyncio.run(context.aggregator.sync_source("dramabox")) == 3
    assert [v[1] for v in _videos(context)] == ["1", "2", "3"]


def test_sync_source_raises_when_home_fails(make_context):
    context = make_context(ScriptedAdapter("dramabox", fail=True))
    with pytest.raises(RuntimeError):
        asyncio.run(context.aggregator.sync_source("dramabox"))


def test_sync_source_raises_on_failed_envelope(make_context):
    class Failing(ScriptedAdapter):
        async def get_home(self):
            return ApiResponse(status=503, error="maintenance")

    context = make_context(Failing("dramabox"))
    with pytest.raises(SourceSyncError):
        asyncio.run(context.aggregator.sync_source("dramabox"))


def test_sync_all_survives_a_failing_source(make_context, fake_redis):
    context = make_context(
        ScriptedAdapter("dramadash", NormalizedHomeData(trending=[drama("dramadash", "a"), drama("dramadash", "b")])),
        ScriptedAdapter("dramabox", fail=True),
    )
    fake_redis.strings["cache:home"] = "{}"
    fake_redis.strings["cache:videos:all:20:0"] = "{}"

    result = asyncio.run(context.aggregator.sync_all_sources())

    assert result.synced == 2
    assert result.errors == ["dramabox: dramabox is down"]
    assert [v[1] for v in _videos(context)] == ["a", "b"]
    assert "cache:home" not in fake_redis.strings
    assert "cache:videos:all:20:0" not in fake_redis.strings


# ============ Reads ============


def test_get_all_videos_pages_and_filters(make_context):
    context = make_context(ScriptedAdapter("dramadash"), ScriptedAdapter("dramabox"), redis=None)
    asyncio.run(context.aggregator.upsert_videos([
        drama("dramadash", "1"),
        drama("dramabox", "2"),
        drama("dramabox", "3"),
    ]))

    everything = asyncio.run(context.aggregator.get_all_videos(limit=2))
    assert everything.total == 3
    assert len(everything.videos) == 2
    assert everything.sources == ["dramadash", "dramabox"]

    boxed = asyncio.run(context.aggregator.get_all_videos(limit=10, source="dramabox"))
    assert boxed.total == 2
    assert {v.external_id for v in boxed.videos} == {"2", "3"}


def test_get_all_videos_serves_unfiltered_pages_from_cache(make_context, fake_redis):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", "1")]))

    first = asyncio.run(context.aggregator.get_all_videos(limit=5))
    assert "cache:videos:all:5:0" in fake_redis.strings

    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", "2")]))
    assert asyncio.run(context.aggregator.get_all_videos(limit=5)).total == first.total == 1
    assert asyncio.run(context.aggregator.get_all_videos(limit=5, cached=False)).total == 2


def test_get_videos_by_cursor_walks_newest_first(make_context):
    context = make_context(redis=None)
    for external_id in ("1", "2", "3"):
        asyncio.run(context.aggregator.upsert_videos([drama("dramabox", external_id)]))

    first = asyncio.run(context.aggregator.get_videos_by_cursor(limit=2))
    rest = asyncio.run(context.aggregator.get_videos_by_cursor(limit=2, cursor=first.next_cursor))

    assert [v.external_id for v in first.items] == ["3", "2"]
    assert first.has_more
    assert [v.external_id for v in rest.items] == ["1"]
    assert rest.next_cursor is None


def test_trending_follows_cache_order(make_context):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", str(i)) for i in range(1, 4)]))

    async def run():
        await _view(context, "dramabox", "3", times=3)
        await _view(context, "dramabox", "1", times=1)
        # Views for a title that was never synced rank but can't be hydrated
        await _view(context, "dramabox", "ghost", times=5)
        return await context.aggregator.get_trending(limit=10)

    trending = asyncio.run(run())
    assert [(v.external_id, v.score) for v in trending] == [("3", 3.0), ("1", 1.0)]
    assert trending[0].views_total == 3


def test_trending_fills_limit_past_unsynced_members(make_context):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", "1"), drama("dramabox", "2")]))

    async def run():
        await _view(context, "dramabox", "ghost", times=5)
        await _view(context, "dramabox", "1", times=2)
        await _view(context, "dramabox", "2", times=1)
        return (
            await context.aggregator.get_trending(limit=2),
            await context.aggregator.get_hot(limit=2),
        )

    trending, hot = asyncio.run(run())
    assert [v.external_id for v in trending] == ["1", "2"]
    assert [v.external_id for v in hot] == ["1", "2"]


def test_hot_score_for_five_views_this_hour(make_context):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([drama("dramadash", "7")]))

    async def run():
        await _view(context, "dramadash", "7", times=5)
        return await context.aggregator.get_hot(limit=5)

    hot = asyncio.run(run())
    assert len(hot) == 1
    assert hot[0].external_id == "7"
    assert hot[0].score == 5.0


def test_rankings_fall_back_to_database_without_cache(make_context):
    context = make_context(redis=None)
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", str(i)) for i in range(1, 4)]))
    _set_stats(context, "1", views_total=10, views_24h=1)
    _set_stats(context, "2", views_total=30, views_24h=0)
    _set_stats(context, "3", views_total=20, views_24h=9)

    trending = asyncio.run(context.aggregator.get_trending(limit=2))
    hot = asyncio.run(context.aggregator.get_hot(limit=3))

    assert [(v.external_id, v.score) for v in trending] == [("2", 30.0), ("3", 20.0)]
    assert [v.external_id for v in hot] == ["3", "1", "2"]


# ============ View / watch events ============


def test_record_view_increments_durable_counters(make_context, fake_redis):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", "1")]))

    asyncio.run(_view(context, "dramabox", "1", times=3))

    assert _stats(context, "dramabox", "1") == (3, 3)
    assert fake_redis.zsets["trending:videos"]["dramabox:1"] == 3
    assert fake_redis.zsets["hot:videos"]["dramabox:1"] == 3


def test_record_view_for_unsynced_video_only_counts_in_cache(make_context, fake_redis):
    context = make_context()

    async def run():
        await context.aggregator.record_view("dramabox", "404")
        await context.tasks.drain()
        return await context.aggregator.increment_durable_views("dramabox", "404")

    assert asyncio.run(run()) is False
    assert fake_redis.zsets["trending:videos"]["dramabox:404"] == 1
    assert _videos(context) == []


def test_durable_views_repair_missing_stats_row(make_context):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", "1")]))

    async def drop_stats_then_view():
        async with context.session_factory() as db:
            await db.execute(VideoStats.__table__.delete())
            await db.commit()
        return await context.aggregator.increment_durable_views("dramabox", "1")

    assert asyncio.run(drop_stats_then_view()) is True
    assert _stats(context, "dramabox", "1") == (1, 1)


def test_record_watch_counts_only_long_enough_progress(make_context, fake_redis):
    context = make_context(min_watch_seconds=30)
    asyncio.run(context.aggregator.upsert_videos([drama("dramadash", "5")]))

    async def watch(**fields):
        counted = await context.aggregator.record_watch(WatchEvent(source="dramadash", external_id="5", **fields))
        await context.tasks.drain()
        return counted

    async def run():
        short = await watch(episode_number=1, progress=10, user_id="u1")
        long = await watch(episode_number=2, progress=45, user_id="u1")
        anonymous = await watch(episode_number=3, progress=60)
        async with context.session_factory() as db:
            history = (await db.execute(select(func.count()).select_from(UserWatchHistory))).scalar_one()
            last_viewed = (await db.execute(select(VideoStats.last_viewed_at))).scalar_one()
        return short, long, anonymous, history, last_viewed

    short, long, anonymous, history, last_viewed = asyncio.run(run())
    assert (short, long, anonymous) == (False, True, True)
    assert history == 2
    assert last_viewed is not None
    assert fake_redis.zsets["hot:videos"]["dramadash:5"] == 2
    assert "trending:videos" not in fake_redis.zsets


# ============ Batch maintenance ============


def test_decay_views_24h(make_context):
    context = make_context()
    asyncio.run(context.aggregator.upsert_videos([drama("dramabox", str(i)) for i in range(1, 4)]))
    _set_stats(context, "1", views_24h=100)
    _set_stats(context, "2", views_24h=1)

    assert asyncio.run(context.aggregator.decay_views_24h()) == 2
    assert _stats(context, "dramabox", "1") == (0, 96)
    assert _stats(context, "dramabox", "2") == (0, 0)
    assert _stats(context, "dramabox", "3") == (0, 0)


def test_refresh_hot_scores_applies_decay(make_context, fake_redis, clock):
    context = make_context()

    async def run():
        for _ in range(4):
            await context.cache.record_hot_view("dramabox:1")
        clock.advance_hours(2)
        return await context.aggregator.refresh_hot_scores()

    assert asyncio.run(run()) == 1
    assert math.isclose(fake_redis.zsets["hot:videos"]["dramabox:1"], 4 * math.exp(-2 / 24))


def test_refresh_hot_scores_forgets_stale_views(make_context, fake_redis, clock):
    context = make_context()

    async def run():
        await context.cache.record_hot_view("dramabox:1")
        clock.advance_hours(24)
        return await context.aggregator.refresh_hot_scores()

    assert asyncio.run(run()) == 0
    assert "dramabox:1" not in fake_redis.zsets["hot:videos"]
