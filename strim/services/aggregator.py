"""
Aggregator: sync sources into the durable store and serve the video read paths.

============================================================================
WRITE PATHS
============================================================================
- sync_source / sync_all_sources: adapter home lists -> dedupe -> upsert
- upsert_videos: atomic INSERT .. ON CONFLICT (source, external_id) per item,
  committed per item so one bad record never aborts a batch
- record_view / record_watch: fast cache synchronously, durable counters
  as tracked background tasks

READ PATHS (cache-first, database fallback)
============================================================================
- get_all_videos: offset pages, unfiltered pages cached
- get_videos_by_cursor: keyset pages, cursor "<created_at micros>:<id>"
- get_trending / get_hot: ranking from Redis sorted sets, rows from the
  database in the cache's order; database ranking when the cache is cold
============================================================================
"""

import logging

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import contains_eager, selectinload

from strim.adapters.normalize import dedupe_dramas
from strim.adapters.registry import AdapterRegistry
from strim.core.cache import CacheService
from strim.core.tasks import TaskManager
from strim.db.database import upsert_insert
from strim.db.models import UserWatchHistory, Video, VideoStats, utcnow
from strim.db.schemas import (
    AllVideosResult,
    CursorPage,
    NormalizedDrama,
    SyncResult,
    VideoOut,
    WatchEvent,
)
from strim.services.pagination import datetime_to_micros, micros_to_datetime, paginate_keyset

logger = logging.getLogger(__name__)

# Ranked members without a synced video row are skipped on hydration
HYDRATE_OVERFETCH = 2


class SourceSyncError(RuntimeError):
    """A source's home data couldn't be fetched for syncing."""


def video_out(video: Video, score: float | None = None) -> VideoOut:
    """Flatten a Video (with its loaded stats) into the API shape."""
    stats = video.stats
    return VideoOut(
        id=video.id,
        source=video.source,
        external_id=video.external_id,
        title=video.title,
        poster=video.poster,
        description=video.description,
        genres=video.genres,
        release_year=video.release_year,
        rating=video.rating,
        total_episodes=video.total_episodes,
        views_total=stats.views_total if stats else 0,
        views_24h=stats.views_24h if stats else 0,
        score=score,
        created_at=video.created_at,
        updated_at=video.updated_at,
    )


class AggregatorService:
    """Owns writes to videos / video_stats and the video read paths."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
        registry: AdapterRegistry,
        tasks: TaskManager,
        *,
        all_videos_cache_ttl: int = 300,
        min_watch_seconds: int = 30,
        views_24h_decay_percent: int = 96,
    ):
        self._session_factory = session_factory
        self.cache = cache
        self.registry = registry
        self.tasks = tasks
        self.all_videos_cache_ttl = all_videos_cache_ttl
        self.min_watch_seconds = min_watch_seconds
        self.views_24h_decay_percent = views_24h_decay_percent

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync_source(self, source: str) -> int:
        """
        Fetch one source's home lists and upsert every distinct title.

        Returns the number of titles upserted. Raises SourceSyncError when
        the home fetch fails.
        """
        home = await self.registry.get_home(source)
        if not home.ok:
            raise SourceSyncError(f"Failed to fetch home for {source}: {home.error or home.status}")

        combined = [*home.data.banners, *home.data.trending, *home.data.latest]
        unique = dedupe_dramas(combined)
        synced = await self.upsert_videos(unique)
        logger.info(f"Synced {source}: {synced}/{len(unique)} titles ({len(combined)} listed)")
        return synced

    async def sync_all_sources(self) -> SyncResult:
        """Sync every source independently; one failing source doesn't stop the rest."""
        synced = 0
        errors = []
        for source in self.registry.supported_sources():
            try:
                synced += await self.sync_source(source)
            except Exception as e:
                logger.error(f"Sync failed for {source}: {type(e).__name__}: {e}")
                errors.append(f"{source}: {e}")

        await self.cache.invalidate_home_cache()
        await self.cache.invalidate_all_videos_cache()
        await self.cache.invalidate_explore_cache()
        return SyncResult(synced=synced, errors=errors)

    async def upsert_videos(self, dramas: list[NormalizedDrama]) -> int:
        """
        Insert or update each drama, ensuring it has a stats row.

        Each item commits on its own. A failing item is rolled back, logged
        and skipped. Returns how many items were written.
        """
        if not dramas:
            return 0

        written = 0
        async with self._session_factory() as db:
            for drama in dramas:
                try:
                    await self._upsert_one(db, drama)
                    await db.commit()
                    written += 1
                except SQLAlchemyError as e:
                    await db.rollback()
                    logger.error(f"Upsert failed for {drama.source}:{drama.id}: {type(e).__name__}: {e}")
        return written

    async def _upsert_one(self, db: AsyncSession, drama: NormalizedDrama) -> int:
        now = utcnow()
        stmt = upsert_insert(db, Video).values(
            source=drama.source,
            external_id=drama.id,
            title=drama.title,
            poster=drama.poster,
            description=drama.description,
            genres=drama.genres,
            release_year=drama.release_year,
            rating=drama.rating,
            total_episodes=drama.total_episodes,
            created_at=now,
            updated_at=now,
        )
        # Optional fields only overwrite when the incoming item carries them:
        # list endpoints omit episode counts that a detail fetch filled in.
        stmt = stmt.on_conflict_do_update(
            index_elements=["source", "external_id"],
            set_={
                "title": stmt.excluded.title,
                "poster": stmt.excluded.poster,
                "description": stmt.excluded.description,
                "genres": stmt.excluded.genres,
                "release_year": func.coalesce(stmt.excluded.release_year, Video.release_year),
                "rating": func.coalesce(stmt.excluded.rating, Video.rating),
                "total_episodes": func.coalesce(stmt.excluded.total_episodes, Video.total_episodes),
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(Video.id)
        video_id = (await db.execute(stmt)).scalar_one()

        # Creates the zeroed stats row for new videos, and repairs a video
        # left without one by an earlier failure
        stats = upsert_insert(db, VideoStats).values(
            video_id=video_id,
            views_total=0,
            views_24h=0,
            updated_at=now,
        )
        await db.execute(stats.on_conflict_do_nothing(index_elements=["video_id"]))
        return video_id

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_all_videos(
        self,
        limit: int = 20,
        offset: int = 0,
        source: str | None = None,
        cached: bool = True,
    ) -> AllVideosResult:
        """Offset page ordered by most recently updated. Unfiltered pages are cached."""
        use_cache = cached and source is None
        if use_cache:
            hit = await self.cache.get_cached_all_videos(limit, offset)
            if hit is not None:
                return AllVideosResult.model_validate(hit)

        stmt = select(Video).options(selectinload(Video.stats))
        count_stmt = select(func.count()).select_from(Video)
        if source:
            stmt = stmt.where(Video.source == source)
            count_stmt = count_stmt.where(Video.source == source)
        stmt = stmt.order_by(Video.updated_at.desc(), Video.id.desc()).limit(limit).offset(offset)

        async with self._session_factory() as db:
            videos = (await db.execute(stmt)).scalars().all()
            total = (await db.execute(count_stmt)).scalar_one()

        result = AllVideosResult(
            videos=[video_out(v) for v in videos],
            total=total,
            limit=limit,
            offset=offset,
            sources=self.registry.supported_sources(),
        )
        if use_cache:
            await self.cache.set_cached_all_videos(
                limit, offset, result.model_dump(mode="json", by_alias=True), self.all_videos_cache_ttl
            )
        return result

    async def get_videos_by_cursor(
        self,
        limit: int = 20,
        cursor: str | None = None,
        source: str | None = None,
    ) -> CursorPage[VideoOut]:
        """
        Keyset page over raw videos, newest first.

        Cursor is "<created_at epoch microseconds>:<id>". Raises
        InvalidCursorError for a malformed cursor.
        """
        stmt = select(Video).options(selectinload(Video.stats))
        if source:
            stmt = stmt.where(Video.source == source)

        async with self._session_factory() as db:
            page = await paginate_keyset(
                db,
                stmt,
                Video.created_at,
                Video.id,
                cursor,
                limit,
                encode_value=datetime_to_micros,
                decode_value=micros_to_datetime,
            )
            items = [video_out(v) for v in page.items]

        return CursorPage[VideoOut](items=items, next_cursor=page.next_cursor, has_more=page.has_more)

    async def get_trending(self, limit: int = 20) -> list[VideoOut]:
        """Top videos by lifetime views."""
        scores = await self.cache.get_trending_scores(limit * HYDRATE_OVERFETCH)
        if scores:
            videos = await self._hydrate(scores)
            if videos:
                return videos[:limit]
        return await self._ranked_from_db(VideoStats.views_total, limit)

    async def get_hot(self, limit: int = 20) -> list[VideoOut]:
        """Top videos by time-decayed recent views."""
        scores = await self.cache.get_hot_scores(limit * HYDRATE_OVERFETCH)
        if scores:
            videos = await self._hydrate(scores)
            if videos:
                return videos[:limit]
        return await self._ranked_from_db(VideoStats.views_24h, limit)

    async def _hydrate(self, scores: list[tuple[str, float]]) -> list[VideoOut]:
        """Load videos for cache-ranked keys, keeping the cache's order."""
        wanted = []
        for key, score in scores:
            parsed = CacheService.parse_video_key(key)
            if parsed is None:
                logger.debug(f"Skipping malformed cache key: {key}")
                continue
            wanted.append((parsed, score))
        if not wanted:
            return []

        condition = or_(*(
            and_(Video.source == source, Video.external_id == external_id)
            for (source, external_id), _ in wanted
        ))
        async with self._session_factory() as db:
            rows = (
                await db.execute(select(Video).options(selectinload(Video.stats)).where(condition))
            ).scalars().all()

        by_key = {(v.source, v.external_id): v for v in rows}
        return [
            video_out(by_key[key], score)
            for key, score in wanted
            if key in by_key
        ]

    async def _ranked_from_db(self, column, limit: int) -> list[VideoOut]:
        stmt = (
            select(Video)
            .join(VideoStats, VideoStats.video_id == Video.id)
            .options(contains_eager(Video.stats))
            .order_by(column.desc(), Video.id.desc())
            .limit(limit)
        )
        async with self._session_factory() as db:
            videos = (await db.execute(stmt)).scalars().all()
        return [video_out(v, float(getattr(v.stats, column.key))) for v in videos]

    # =========================================================================
    # View events
    # =========================================================================

    async def record_view(self, source: str, external_id: str) -> None:
        """
        Count one view.

        Redis trending and hot scores are bumped before returning; the
        durable stats increment runs in the background and is skipped when
        the video hasn't been synced yet.
        """
        key = CacheService.create_video_key(source, external_id)
        await self.cache.increment_view_count(key)
        await self.cache.record_hot_view(key)
        self.tasks.create_task(
            self.increment_durable_views(source, external_id),
            name=f"durable_view:{key}",
        )

    async def increment_durable_views(self, source: str, external_id: str) -> bool:
        """+1 on views_total and views_24h. Returns False if nothing was counted."""
        now = utcnow()
        async with self._session_factory() as db:
            try:
                video_id_subquery = (
                    select(Video.id)
                    .where(Video.source == source, Video.external_id == external_id)
                    .scalar_subquery()
                )
                result = await db.execute(
                    update(VideoStats)
                    .where(VideoStats.video_id == video_id_subquery)
                    .values(
                        views_total=VideoStats.views_total + 1,
                        views_24h=VideoStats.views_24h + 1,
                        last_viewed_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    video_id = (
                        await db.execute(
                            select(Video.id).where(
                                Video.source == source, Video.external_id == external_id
                            )
                        )
                    ).scalar_one_or_none()
                    if video_id is None:
                        # Not synced yet; Redis holds the count until it is
                        logger.debug(f"View for unsynced video {source}:{external_id}")
                        return False

                    stmt = upsert_insert(db, VideoStats).values(
                        video_id=video_id,
                        views_total=1,
                        views_24h=1,
                        last_viewed_at=now,
                        updated_at=now,
                    )
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["video_id"],
                        set_={
                            "views_total": VideoStats.views_total + 1,
                            "views_24h": VideoStats.views_24h + 1,
                            "last_viewed_at": now,
                            "updated_at": now,
                        },
                    )
                    await db.execute(stmt)
                await db.commit()
                return True
            except SQLAlchemyError as e:
                await db.rollback()
                logger.warning(f"Durable view increment failed for {source}:{external_id}: {e}")
                return False

    async def record_watch(self, event: WatchEvent) -> bool:
        """
        Record watch progress.

        Progress of at least min_watch_seconds counts as a hot view. History
        (when a user id is given) and last_viewed_at are written in the
        background. Returns whether the event counted toward hot scoring.
        """
        key = CacheService.create_video_key(event.source, event.external_id)
        counted = event.progress >= self.min_watch_seconds
        if counted:
            await self.cache.record_hot_view(key)

        self.tasks.create_task(self._store_watch(event), name=f"watch:{key}")
        return counted

    async def _store_watch(self, event: WatchEvent) -> None:
        now = utcnow()
        async with self._session_factory() as db:
            try:
                video_id = (
                    await db.execute(
                        select(Video.id).where(
                            Video.source == event.source,
                            Video.external_id == event.external_id,
                        )
                    )
                ).scalar_one_or_none()
                if video_id is None:
                    return

                if event.user_id:
                    db.add(UserWatchHistory(
                        user_id=event.user_id,
                        video_id=video_id,
                        episode_number=event.episode_number,
                        progress=event.progress,
                        watched_at=now,
                    ))
                await db.execute(
                    update(VideoStats)
                    .where(VideoStats.video_id == video_id)
                    .values(last_viewed_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.warning(f"Watch history write failed for {event.source}:{event.external_id}: {e}")

    # =========================================================================
    # Batch maintenance
    # =========================================================================

    async def refresh_hot_scores(self) -> int:
        """Re-apply hourly decay to the hot sorted set. Returns keys rewritten."""
        updated = await self.cache.update_hot_scores()
        logger.info(f"Refreshed hot scores for {updated} videos")
        return updated

    async def decay_views_24h(self) -> int:
        """One multiplicative decay step on every views_24h counter."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(VideoStats)
                .where(VideoStats.views_24h > 0)
                .values(views_24h=(VideoStats.views_24h * self.views_24h_decay_percent) // 100)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        decayed = result.rowcount or 0
        logger.info(f"Decayed views_24h on {decayed} videos ({self.views_24h_decay_percent}%)")
        return decayed
