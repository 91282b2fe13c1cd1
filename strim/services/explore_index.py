"""
Explore index: batch projection of videos + video_stats into explore_index.

The rebuild is the only place the browse paths join videos with their
stats. It is idempotent: every row is upserted on (source, external_id)
with all derived fields overwritten, and rows whose video no longer exists
are pruned, so two runs in a row leave the same table.

Reads (get_page) hit explore_index alone with keyset pagination.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from strim.core.cache import CacheService
from strim.db.database import upsert_insert
from strim.db.models import ExploreIndexEntry, Video, VideoStats, utcnow
from strim.db.schemas import CursorPage, ExploreItem, IndexRebuildResult
from strim.services.pagination import datetime_to_micros, paginate_keyset

logger = logging.getLogger(__name__)

# Recent views count this many times as much as lifetime views
RECENT_VIEW_WEIGHT = 3

SORT_COLUMNS = {
    "popular": ExploreIndexEntry.popularity_score,
    "latest": ExploreIndexEntry.latest_score,
    "rating": ExploreIndexEntry.rating_score,
}


@dataclass(frozen=True)
class ScoringInput:
    views_total: int
    views_24h: int
    created_at: datetime
    rating: float | None = None


@dataclass(frozen=True)
class ExploreScores:
    popularity_score: int
    latest_score: int
    rating_score: int


RatingStrategy = Callable[[ScoringInput], int]


def lifetime_views_rating(item: ScoringInput) -> int:
    """Stand-in until a real rating signal exists: lifetime views."""
    return item.views_total


def provider_rating(item: ScoringInput) -> int:
    """Provider rating scaled to an integer (8.75 -> 875); unrated -> 0."""
    if item.rating is None:
        return 0
    return int(round(item.rating * 100))


RATING_STRATEGIES: dict[str, RatingStrategy] = {
    "lifetime_views": lifetime_views_rating,
    "provider_rating": provider_rating,
}


def get_rating_strategy(name: str) -> RatingStrategy:
    try:
        return RATING_STRATEGIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown rating strategy {name!r}; expected one of {sorted(RATING_STRATEGIES)}"
        ) from None


def compute_scores(item: ScoringInput, rating_strategy: RatingStrategy = lifetime_views_rating) -> ExploreScores:
    """Pure scoring function. Same input, same scores."""
    return ExploreScores(
        popularity_score=item.views_total + item.views_24h * RECENT_VIEW_WEIGHT,
        latest_score=datetime_to_micros(item.created_at) // 1_000_000,
        rating_score=rating_strategy(item),
    )


class ExploreIndexService:
    """Builds and reads the explore index."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService | None = None,
        *,
        rating_strategy: str = "lifetime_views",
        batch_size: int = 500,
        cache_ttl: int = 300,
    ):
        self._session_factory = session_factory
        self.cache = cache
        self.rating_strategy = get_rating_strategy(rating_strategy)
        self.batch_size = batch_size
        self.cache_ttl = cache_ttl

    # =========================================================================
    # Rebuild
    # =========================================================================

    async def rebuild(self) -> IndexRebuildResult:
        """Recompute every explore_index row from videos + video_stats."""
        start = time.monotonic()

        async with self._session_factory() as db:
            result = await db.execute(
                select(
                    Video,
                    func.coalesce(VideoStats.views_total, 0).label("views_total"),
                    func.coalesce(VideoStats.views_24h, 0).label("views_24h"),
                ).outerjoin(VideoStats, VideoStats.video_id == Video.id)
            )
            rows = result.all()

            now = utcnow()
            records = []
            for video, views_total, views_24h in rows:
                scores = compute_scores(
                    ScoringInput(
                        views_total=views_total,
                        views_24h=views_24h,
                        created_at=video.created_at,
                        rating=video.rating,
                    ),
                    self.rating_strategy,
                )
                records.append({
                    "source": video.source,
                    "external_id": video.external_id,
                    "title": video.title,
                    "poster": video.poster,
                    "description": video.description,
                    "genres": video.genres,
                    "release_year": video.release_year,
                    "total_episodes": video.total_episodes,
                    "popularity_score": scores.popularity_score,
                    "latest_score": scores.latest_score,
                    "rating_score": scores.rating_score,
                    "created_at": video.created_at,
                    "updated_at": now,
                })

            for i in range(0, len(records), self.batch_size):
                batch = records[i : i + self.batch_size]
                stmt = upsert_insert(db, ExploreIndexEntry).values(batch)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["source", "external_id"],
                    set_={
                        "title": stmt.excluded.title,
                        "poster": stmt.excluded.poster,
                        "description": stmt.excluded.description,
                        "genres": stmt.excluded.genres,
                        "release_year": stmt.excluded.release_year,
                        "total_episodes": stmt.excluded.total_episodes,
                        "popularity_score": stmt.excluded.popularity_score,
                        "latest_score": stmt.excluded.latest_score,
                        "rating_score": stmt.excluded.rating_score,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                await db.execute(stmt)

            # Drop entries whose video is gone
            prune = await db.execute(
                delete(ExploreIndexEntry).where(
                    ~select(Video.id)
                    .where(
                        Video.source == ExploreIndexEntry.source,
                        Video.external_id == ExploreIndexEntry.external_id,
                    )
                    .exists()
                )
            )
            pruned = prune.rowcount or 0
            await db.commit()

        if self.cache:
            await self.cache.invalidate_explore_cache()

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Explore index rebuilt: {len(records)} rows, {pruned} pruned in {elapsed_ms}ms")
        return IndexRebuildResult(count=len(records), pruned=pruned, elapsed_ms=elapsed_ms)

    # =========================================================================
    # Read
    # =========================================================================

    async def get_page(
        self,
        sort: str = "popular",
        cursor: str | None = None,
        limit: int = 20,
        source: str | None = None,
    ) -> CursorPage[ExploreItem]:
        """
        One keyset page of the explore index, cursor "<score>:<id>".

        Unfiltered pages are served from the response cache when present.
        Raises InvalidCursorError for a malformed cursor.
        """
        sort_column = SORT_COLUMNS.get(sort)
        if sort_column is None:
            raise ValueError(f"Unknown sort {sort!r}; expected one of {sorted(SORT_COLUMNS)}")

        cache_key = None
        if self.cache and source is None:
            cache_key = CacheService.explore_key(sort, cursor, limit)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return CursorPage[ExploreItem].model_validate(cached)

        stmt = select(ExploreIndexEntry)
        if source:
            stmt = stmt.where(ExploreIndexEntry.source == source)

        async with self._session_factory() as db:
            page = await paginate_keyset(
                db, stmt, sort_column, ExploreIndexEntry.id, cursor, limit
            )

        result = CursorPage[ExploreItem](
            items=[ExploreItem.model_validate(row) for row in page.items],
            next_cursor=page.next_cursor,
            has_more=page.has_more,
        )
        if cache_key:
            await self.cache.set(cache_key, result.model_dump(mode="json", by_alias=True), self.cache_ttl)
        return result
