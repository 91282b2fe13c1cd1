"""
Adapter registry: maps a source key to a lazily-initialized adapter.

Adapters are created from a static factory map on first use, initialized
once under a per-source lock, and reused for the registry's lifetime.
"""

import asyncio
import logging
from typing import Callable

from strim.adapters.base import SourceAdapter
from strim.adapters.dramabox import DramaBoxAdapter
from strim.adapters.dramadash import DramaDashAdapter
from strim.config import Settings
from strim.db.schemas import (
    AggregatedHome,
    ApiResponse,
    EpisodePointer,
    NormalizedDrama,
    NormalizedDramaDetail,
    NormalizedEpisode,
    NormalizedHomeData,
    Source,
    SourceHome,
    StreamInfo,
)

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[], SourceAdapter]


class UnsupportedSourceError(ValueError):
    """Raised when a source key has no registered adapter."""

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Unsupported source: {source}")


def default_factories(settings: Settings) -> dict[str, AdapterFactory]:
    """Factories for every built-in provider, filtered to the enabled sources."""
    factories: dict[str, AdapterFactory] = {
        Source.DRAMADASH.value: lambda: DramaDashAdapter(
            settings.dramadash_api_url,
            settings.dramadash_timeout,
            enrich_limit=settings.enrich_limit,
        ),
        Source.DRAMABOX.value: lambda: DramaBoxAdapter(
            settings.dramabox_api_url,
            settings.dramabox_timeout,
            enrich_limit=settings.enrich_limit,
        ),
    }
    return {
        source: factory
        for source, factory in factories.items()
        if source in settings.enabled_sources
    }


class AdapterRegistry:
    """Source key -> adapter, plus the cross-source operations."""

    def __init__(self, factories: dict[str, AdapterFactory]):
        self._factories = dict(factories)
        self._adapters: dict[str, SourceAdapter] = {}
        self._locks = {source: asyncio.Lock() for source in self._factories}

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdapterRegistry":
        return cls(default_factories(settings))

    def is_supported(self, source: str | None) -> bool:
        return source is not None and source in self._factories

    def supported_sources(self) -> list[str]:
        return list(self._factories)

    async def get_adapter(self, source: str) -> SourceAdapter:
        """Get (creating and initializing on first use) the adapter for a source."""
        if not self.is_supported(source):
            raise UnsupportedSourceError(source)

        adapter = self._adapters.get(source)
        if adapter is not None:
            return adapter

        async with self._locks[source]:
            adapter = self._adapters.get(source)
            if adapter is None:
                adapter = self._factories[source]()
                await adapter.init()
                self._adapters[source] = adapter
                logger.info(f"Initialized adapter for {source}")
        return adapter

    async def close(self):
        """Close every initialized adapter's HTTP client."""
        for adapter in list(self._adapters.values()):
            await adapter.close()
        self._adapters.clear()

    # =========================================================================
    # Per-source operations
    # =========================================================================

    async def get_home(self, source: str) -> ApiResponse[NormalizedHomeData]:
        adapter = await self.get_adapter(source)
        return await adapter.get_home()

    async def search(self, source: str, query: str) -> ApiResponse[list[NormalizedDrama]]:
        adapter = await self.get_adapter(source)
        return await adapter.search(query)

    async def get_drama(self, source: str, drama_id: str) -> ApiResponse[NormalizedDramaDetail]:
        adapter = await self.get_adapter(source)
        return await adapter.get_drama(drama_id)

    async def get_episode(
        self, source: str, drama_id: str, episode_number: int
    ) -> ApiResponse[NormalizedEpisode]:
        adapter = await self.get_adapter(source)
        return await adapter.get_episode(drama_id, episode_number)

    async def get_stream_info(
        self, source: str, drama_id: str, episode_number: int
    ) -> ApiResponse[StreamInfo]:
        """
        Playback info for one episode with previous/next pointers.

        Pointers follow episode-number order, not the provider's list order.
        """
        adapter = await self.get_adapter(source)
        detail = await adapter.get_drama(drama_id)
        if detail.status != 200:
            return ApiResponse(status=detail.status, error=detail.error)
        if detail.data is None:
            return ApiResponse(status=404, error="Drama not found")

        drama = detail.data
        episodes = sorted(drama.episodes, key=lambda ep: ep.episode_number)
        index = next(
            (i for i, ep in enumerate(episodes) if ep.episode_number == episode_number),
            None,
        )
        if index is None:
            return ApiResponse(status=404, error="Episode not found")

        episode = episodes[index]
        previous_ep = episodes[index - 1] if index > 0 else None
        next_ep = episodes[index + 1] if index + 1 < len(episodes) else None

        info = StreamInfo(
            episode_id=episode.id,
            episode_number=episode.episode_number,
            title=f"Episode {episode.episode_number} - {drama.title}",
            streams=episode.streams,
            subtitles=episode.subtitles,
            poster=drama.poster or None,
            previous_episode=(
                EpisodePointer(episode_number=previous_ep.episode_number, id=previous_ep.id)
                if previous_ep else None
            ),
            next_episode=(
                EpisodePointer(episode_number=next_ep.episode_number, id=next_ep.id)
                if next_ep else None
            ),
        )
        return ApiResponse(status=200, data=info)

    # =========================================================================
    # Cross-source operations
    # =========================================================================

    async def get_aggregated_home(self) -> ApiResponse[AggregatedHome]:
        """
        Home data from every source, fetched concurrently.

        A source that raises or returns a failed envelope is left out; the
        others are still returned.
        """
        sources = self.supported_sources()
        results = await asyncio.gather(
            *(self.get_home(source) for source in sources),
            return_exceptions=True,
        )

        homes = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(f"Aggregated home: {source} raised {type(result).__name__}: {result}")
                continue
            if not result.ok:
                logger.warning(f"Aggregated home: {source} returned {result.status}: {result.error}")
                continue
            homes.append(SourceHome(source=source, data=result.data))

        return ApiResponse(status=200, data=AggregatedHome(sources=homes))
