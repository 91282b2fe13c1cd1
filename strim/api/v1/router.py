"""API v1 router - aggregates all endpoint routers."""

from fastapi import APIRouter

from strim.api.v1 import content, cron, events, videos

api_router = APIRouter()

api_router.include_router(content.router, tags=["content"])
api_router.include_router(videos.router, prefix="/videos", tags=["videos"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(cron.router, prefix="/cron", tags=["cron"])
