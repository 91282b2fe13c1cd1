"""
Base adapter: the contract every upstream provider implements.

Adapters never raise for expected upstream failures (timeouts, non-2xx,
malformed payloads). Every public method returns an ApiResponse envelope;
only programmer errors propagate.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from strim.db.schemas import (
    ApiResponse,
    NormalizedDrama,
    NormalizedDramaDetail,
    NormalizedEpisode,
    NormalizedHomeData,
)

logger = logging.getLogger(__name__)

# Upstream failures converted into 500 envelopes at the adapter boundary.
# ValueError covers invalid JSON; Key/Type/AttributeError cover payloads
# that don't match the expected shape.
UPSTREAM_ERRORS = (
    httpx.HTTPError,
    asyncio.TimeoutError,
    ValueError,
    KeyError,
    TypeError,
    AttributeError,
)

USER_AGENT = "Mozilla/5.0 (compatible; Strim/1.0)"


class SourceAdapter(ABC):
    """Async adapter for one upstream provider."""

    source: str
    display_name: str

    def __init__(
        self,
        api_url: str,
        timeout: float,
        *,
        enrich_limit: int = 15,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        self.timeout = timeout
        self.enrich_limit = enrich_limit
        self._client = client

    # =========================================================================
    # HTTP
    # =========================================================================

    def default_headers(self) -> dict[str, str]:
        return {"User-Agent": USER_AGENT, "Accept": "application/json"}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> Any:
        """Single request, no retry. Raises on transport errors and non-2xx."""
        client = await self._get_client()
        response = await client.request(
            method,
            endpoint,
            params=params,
            json=json_data,
            headers=self.default_headers(),
        )
        response.raise_for_status()
        return response.json()

    def _failure(self, action: str, error: Exception) -> ApiResponse:
        """Envelope for a caught upstream error. Upstream 404s stay 404."""
        if isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 404:
            logger.info(f"[{self.display_name}] Not found while {action}")
            return ApiResponse(status=404, data=None, error="Not found")
        logger.error(f"[{self.display_name}] Error {action}: {type(error).__name__}: {error}")
        return ApiResponse(status=500, data=None, error=str(error) or type(error).__name__)

    # =========================================================================
    # Contract
    # =========================================================================

    @abstractmethod
    async def init(self) -> "SourceAdapter":
        """One-time setup (auth tokens etc). Must fail soft."""

    @abstractmethod
    async def get_home(self) -> ApiResponse[NormalizedHomeData]:
        """Banners, trending and latest lists."""

    @abstractmethod
    async def search(self, query: str) -> ApiResponse[list[NormalizedDrama]]:
        """Search titles by free text."""

    @abstractmethod
    async def get_drama(self, drama_id: str) -> ApiResponse[NormalizedDramaDetail]:
        """Full detail including the episode list."""

    async def get_episode(
        self, drama_id: str, episode_number: int
    ) -> ApiResponse[NormalizedEpisode]:
        """One episode. Default: fetch the drama and scan its episodes."""
        detail = await self.get_drama(drama_id)
        if detail.status != 200:
            return ApiResponse(status=detail.status, error=detail.error)
        if detail.data is None:
            return ApiResponse(status=404, error="Drama not found")

        for episode in detail.data.episodes:
            if episode.episode_number == episode_number:
                return ApiResponse(status=200, data=episode)
        return ApiResponse(status=404, error="Episode not found")

    async def get_trending(self) -> ApiResponse[list[NormalizedDrama]]:
        home = await self.get_home()
        return ApiResponse(
            status=home.status,
            data=home.data.trending if home.data else None,
            error=home.error,
        )

    async def get_latest(self) -> ApiResponse[list[NormalizedDrama]]:
        home = await self.get_home()
        return ApiResponse(
            status=home.status,
            data=home.data.latest if home.data else None,
            error=home.error,
        )

    # =========================================================================
    # Enrichment
    # =========================================================================

    async def enrich_with_details(self, dramas: list[NormalizedDrama]) -> list[NormalizedDrama]:
        """
        Fill total_episodes for the first enrich_limit items via detail fetches.

        Items past the limit keep total_episodes=None. A failed detail fetch
        leaves that item unchanged.
        """
        enriched = list(dramas)
        targets = [
            i for i, drama in enumerate(enriched[: self.enrich_limit])
            if drama.total_episodes is None
        ]
        if not targets:
            return enriched

        details = await asyncio.gather(
            *(self.get_drama(enriched[i].id) for i in targets),
            return_exceptions=True,
        )
        for i, result in zip(targets, details):
            if isinstance(result, ApiResponse) and result.ok:
                enriched[i] = enriched[i].model_copy(
                    update={"total_episodes": result.data.total_episodes}
                )
            elif isinstance(result, Exception):
                logger.warning(f"[{self.display_name}] Enrichment failed for {enriched[i].id}: {result}")
        return enriched
