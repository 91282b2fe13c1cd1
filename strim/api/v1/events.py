"""View and watch-progress events."""

from fastapi import APIRouter, Depends

from strim.api.responses import check_source, envelope
from strim.context import AppContext, get_context
from strim.db.schemas import ViewEvent, WatchEvent

router = APIRouter()

NO_STORE = {"Cache-Control": "no-store"}


@router.post("/view")
async def record_view(
    event: ViewEvent,
    context: AppContext = Depends(get_context),
):
    """Count a view: Redis now, database in the background."""
    invalid = check_source(context, event.source)
    if invalid:
        return invalid

    await context.aggregator.record_view(event.source, event.external_id)
    return envelope(200, {"message": "View recorded"}, headers=NO_STORE)


@router.post("/watch")
async def record_watch(
    event: WatchEvent,
    context: AppContext = Depends(get_context),
):
    """Record watch progress; only progress past the minimum counts toward hot."""
    invalid = check_source(context, event.source)
    if invalid:
        return invalid

    counted = await context.aggregator.record_watch(event)
    return envelope(200, {"message": "Watch event recorded", "counted": counted}, headers=NO_STORE)
