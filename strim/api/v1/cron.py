"""Batch triggers for an external scheduler.

Each endpoint runs one job to completion and reports its result. Guarded by
an optional bearer secret (see strim.core.auth).
"""

import logging

from fastapi import APIRouter, Depends

from strim.api.responses import envelope
from strim.context import AppContext, get_context
from strim.core.auth import require_cron_secret

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.post("/sync-explore")
async def sync_explore(context: AppContext = Depends(get_context)):
    """Rebuild the explore index from videos + video_stats."""
    result = await context.explore.rebuild()
    return envelope(200, result)


@router.post("/refresh-hot")
async def refresh_hot(context: AppContext = Depends(get_context)):
    """Recompute decayed hot scores in Redis."""
    updated = await context.aggregator.refresh_hot_scores()
    return envelope(200, {"updated": updated})


@router.post("/decay-views")
async def decay_views(context: AppContext = Depends(get_context)):
    """Apply one decay step to every views_24h counter."""
    decayed = await context.aggregator.decay_views_24h()
    return envelope(200, {"decayed": decayed})
