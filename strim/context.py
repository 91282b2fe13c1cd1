"""
Application context: the long-lived handles a process needs.

Built once at startup (the FastAPI lifespan, or a script's main) and torn
down at shutdown. Route handlers reach it through the get_context
dependency; nothing here is module-level state.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from strim.adapters.registry import AdapterRegistry
from strim.config import Settings
from strim.core.cache import CacheService
from strim.core.tasks import TaskManager
from strim.db.database import create_engine, create_session_factory
from strim.services.aggregator import AggregatorService
from strim.services.explore_index import ExploreIndexService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    cache: CacheService
    registry: AdapterRegistry
    tasks: TaskManager
    aggregator: AggregatorService
    explore: ExploreIndexService

    @classmethod
    def create(
        cls,
        settings: Settings,
        *,
        registry: AdapterRegistry | None = None,
        cache: CacheService | None = None,
    ) -> "AppContext":
        """Wire every component from settings. registry/cache may be supplied pre-built."""
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
        if cache is None:
            cache = CacheService(
                settings.redis_url,
                socket_timeout=settings.cache_socket_timeout,
                bucket_ttl=settings.view_bucket_ttl,
                hot_window_hours=settings.hot_window_hours,
            )
        if registry is None:
            registry = AdapterRegistry.from_settings(settings)
        tasks = TaskManager()

        aggregator = AggregatorService(
            session_factory,
            cache,
            registry,
            tasks,
            all_videos_cache_ttl=settings.all_videos_cache_ttl,
            min_watch_seconds=settings.min_watch_seconds,
            views_24h_decay_percent=settings.views_24h_decay_percent,
        )
        explore = ExploreIndexService(
            session_factory,
            cache,
            rating_strategy=settings.rating_strategy,
            batch_size=settings.explore_batch_size,
            cache_ttl=settings.explore_cache_ttl,
        )
        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            cache=cache,
            registry=registry,
            tasks=tasks,
            aggregator=aggregator,
            explore=explore,
        )

    async def close(self, drain_timeout: float = 5.0):
        """Finish or cancel background work, then release connections."""
        pending = await self.tasks.drain(timeout=drain_timeout)
        if pending:
            await self.tasks.cancel_all(timeout=drain_timeout)
        await self.registry.close()
        await self.cache.close()
        await self.engine.dispose()
        logger.info("Application context closed")


def get_context(request: Request) -> AppContext:
    """FastAPI dependency: the context built by the lifespan."""
    return request.app.state.context


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: a session from the context's factory."""
    context: AppContext = request.app.state.context
    async with context.session_factory() as session:
        yield session
