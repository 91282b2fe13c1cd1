"""Live provider endpoints: home, search, drama detail, stream info.

These proxy straight to the source adapters; nothing here touches the
durable store except the view recorded after a stream lookup.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from strim.api.responses import bad_request, check_source, envelope, from_api_response
from strim.context import AppContext, get_context

logger = logging.getLogger(__name__)

router = APIRouter()

# Rate limiter for endpoints that fan out to upstream providers
limiter = Limiter(key_func=get_remote_address)

HOME_CACHE_HEADERS = {"Cache-Control": "public, s-maxage=300, stale-while-revalidate=600"}
STREAM_CACHE_HEADERS = {"Cache-Control": "public, s-maxage=30"}


@router.get("/home")
async def get_home(
    source: str | None = Query(default=None, description="Source key; defaults to the configured default source"),
    aggregate: bool = Query(default=False, description="Fan out across all enabled sources"),
    context: AppContext = Depends(get_context),
):
    """Normalized home lists for one source, or every source when aggregate=true."""
    if aggregate:
        cached = await context.cache.get_cached_home()
        if cached is not None:
            return envelope(200, cached, headers=HOME_CACHE_HEADERS)

        result = await context.registry.get_aggregated_home()
        data = result.data.model_dump(mode="json", by_alias=True)
        await context.cache.set_cached_home(data, ttl=context.settings.home_cache_ttl)
        return envelope(200, data, headers=HOME_CACHE_HEADERS)

    target = source or context.settings.default_source
    invalid = check_source(context, target)
    if invalid:
        return invalid

    result = await context.registry.get_home(target)
    return from_api_response(result, headers=HOME_CACHE_HEADERS)


@router.get("/search")
@limiter.limit("30/minute")
async def search(
    request: Request,
    source: str | None = Query(default=None),
    query: str | None = Query(default=None, max_length=200),
    context: AppContext = Depends(get_context),
):
    """Search one source by title."""
    invalid = check_source(context, source)
    if invalid:
        return invalid
    if not query or not query.strip():
        return bad_request("Missing required parameter: query")

    result = await context.registry.search(source, query.strip())
    return from_api_response(result)


@router.get("/drama")
async def get_drama(
    source: str | None = Query(default=None),
    id: str | None = Query(default=None),
    context: AppContext = Depends(get_context),
):
    """Full drama detail with its episode list."""
    invalid = check_source(context, source)
    if invalid:
        return invalid
    if not id:
        return bad_request("Missing required parameter: id")

    result = await context.registry.get_drama(source, id)
    return from_api_response(result)


@router.get("/stream")
async def get_stream(
    source: str | None = Query(default=None),
    id: str | None = Query(default=None),
    episode: str | None = Query(default=None),
    context: AppContext = Depends(get_context),
):
    """
    Streams and subtitles for one episode, with previous/next pointers.

    A successful lookup records a view in the background.
    """
    invalid = check_source(context, source)
    if invalid:
        return invalid
    if not id:
        return bad_request("Missing required parameter: id")
    if not episode:
        return bad_request("Missing required parameter: episode")
    try:
        episode_number = int(episode)
    except ValueError:
        return bad_request("Invalid episode number")
    if episode_number < 1:
        return bad_request("Invalid episode number")

    result = await context.registry.get_stream_info(source, id, episode_number)
    if result.ok:
        context.tasks.create_task(
            context.aggregator.record_view(source, id),
            name=f"stream_view:{source}:{id}",
        )
    return from_api_response(result, headers=STREAM_CACHE_HEADERS)
