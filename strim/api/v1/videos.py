"""Persisted video endpoints: offset/cursor browsing, explore, trending, hot, sync.

Explore reads only the precomputed explore_index; trending/hot read Redis
rankings and fall back to the database when the cache is cold.
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from strim.api.responses import bad_request, check_source, envelope
from strim.context import AppContext, get_context
from strim.services.pagination import InvalidCursorError

logger = logging.getLogger(__name__)

router = APIRouter()

# Full sync hits every provider, keep it rare
limiter = Limiter(key_func=get_remote_address)

ExploreSort = Literal["popular", "latest", "rating"]

BROWSE_CACHE_HEADERS = {"Cache-Control": "public, s-maxage=60, stale-while-revalidate=300"}


@router.get("/all")
async def all_videos(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    source: str | None = Query(default=None),
    context: AppContext = Depends(get_context),
):
    """Offset-paginated videos, most recently updated first. Unfiltered pages are cached."""
    invalid = check_source(context, source, required=False)
    if invalid:
        return invalid

    result = await context.aggregator.get_all_videos(limit=limit, offset=offset, source=source)
    return envelope(200, result, headers=BROWSE_CACHE_HEADERS)


@router.get("/recent")
async def recent_videos(
    cursor: str | None = Query(default=None, description='"<created_at epoch microseconds>:<id>"'),
    limit: int = Query(default=20, ge=1, le=50),
    source: str | None = Query(default=None),
    context: AppContext = Depends(get_context),
):
    """Cursor-paginated raw videos, newest first."""
    invalid = check_source(context, source, required=False)
    if invalid:
        return invalid

    try:
        page = await context.aggregator.get_videos_by_cursor(limit=limit, cursor=cursor, source=source)
    except InvalidCursorError as e:
        return bad_request(str(e))
    return envelope(200, page)


@router.get("/explore")
async def explore(
    cursor: str | None = Query(default=None, description='"<score>:<id>" from the previous page'),
    limit: int = Query(default=20, ge=1, le=50),
    source: str | None = Query(default=None),
    sort: ExploreSort = Query(default="popular"),
    context: AppContext = Depends(get_context),
):
    """Cursor-paginated explore index, sorted by a precomputed score."""
    invalid = check_source(context, source, required=False)
    if invalid:
        return invalid

    try:
        page = await context.explore.get_page(sort=sort, cursor=cursor, limit=limit, source=source)
    except InvalidCursorError as e:
        return bad_request(str(e))
    return envelope(200, page, headers=BROWSE_CACHE_HEADERS)


@router.get("/trending")
async def trending(
    limit: int = Query(default=20, ge=1, le=50),
    context: AppContext = Depends(get_context),
):
    """Top videos by lifetime views."""
    videos = await context.aggregator.get_trending(limit)
    return envelope(200, videos)


@router.get("/hot")
async def hot(
    limit: int = Query(default=20, ge=1, le=50),
    context: AppContext = Depends(get_context),
):
    """Top videos by time-decayed views over the last 24 hours."""
    videos = await context.aggregator.get_hot(limit)
    return envelope(200, videos)


@router.post("/sync")
@limiter.limit("5/minute")
async def sync(
    request: Request,
    context: AppContext = Depends(get_context),
):
    """Sync every enabled source into the database."""
    result = await context.aggregator.sync_all_sources()
    logger.info(f"Sync finished: {result.synced} synced, {len(result.errors)} source errors")
    return envelope(200, result)
