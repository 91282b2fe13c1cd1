"""DramaDash adapter: token-authenticated mobile API."""

import logging
import uuid

import httpx

from strim.adapters.base import UPSTREAM_ERRORS, SourceAdapter
from strim.adapters.normalize import infer_stream_type, parse_genres, resolve_episode_number
from strim.db.schemas import (
    ApiResponse,
    NormalizedDrama,
    NormalizedDramaDetail,
    NormalizedEpisode,
    NormalizedHomeData,
    Source,
    StreamSource,
    Subtitle,
)

logger = logging.getLogger(__name__)


def generate_device_id() -> str:
    """16 hex chars, the shape the app sends as android_id."""
    return uuid.uuid4().hex[:16]


class DramaDashAdapter(SourceAdapter):
    source = Source.DRAMADASH.value
    display_name = "DramaDash"

    def __init__(
        self,
        api_url: str = "https://www.dramadash.app/api/",
        timeout: float = 15.0,
        *,
        enrich_limit: int = 15,
        client: httpx.AsyncClient | None = None,
        device_id: str | None = None,
    ):
        super().__init__(api_url, timeout, enrich_limit=enrich_limit, client=client)
        self.device_id = device_id or generate_device_id()
        self.device_token: str | None = None

    def default_headers(self) -> dict[str, str]:
        headers = {
            "app-version": "70",
            "lang": "id",
            "platform": "android",
            "tz": "Asia/Bangkok",
            "device-type": "phone",
            "content-type": "application/json; charset=UTF-8",
            "accept-encoding": "gzip",
            "user-agent": "okhttp/5.1.0",
        }
        if self.device_token:
            headers["authorization"] = f"Bearer {self.device_token}"
        return headers

    async def init(self) -> "DramaDashAdapter":
        """Acquire a device token. On failure, continue unauthenticated."""
        try:
            res = await self._request("POST", "landing", json_data={"android_id": self.device_id})
            self.device_token = (res or {}).get("token") or None
        except UPSTREAM_ERRORS as e:
            logger.error(f"[DramaDash] Failed to get token: {type(e).__name__}: {e}")
        return self

    async def get_home(self) -> ApiResponse[NormalizedHomeData]:
        try:
            res = await self._request("GET", "home")
            banner_list = (res.get("bannerDramaList") or {}).get("list") or []
            banners = [self._transform_drama(item) for item in banner_list]
            trending = [self._transform_drama(item) for item in res.get("trendingSearches") or []]

            # dramaList is a list of sections, each with its own list
            latest = [
                self._transform_drama(item)
                for section in res.get("dramaList") or []
                if isinstance(section.get("list"), list)
                for item in section["list"]
            ]
        except UPSTREAM_ERRORS as e:
            return self._failure("fetching home", e)

        latest = await self.enrich_with_details(latest)
        return ApiResponse(
            status=200,
            data=NormalizedHomeData(banners=banners, trending=trending, latest=latest),
        )

    async def search(self, query: str) -> ApiResponse[list[NormalizedDrama]]:
        try:
            res = await self._request("POST", "search/text", json_data={"search": query})
            data = [self._transform_drama(item) for item in res.get("result") or []]
        except UPSTREAM_ERRORS as e:
            return self._failure("searching", e)
        return ApiResponse(status=200, data=data)

    async def get_drama(self, drama_id: str) -> ApiResponse[NormalizedDramaDetail]:
        try:
            res = await self._request("GET", f"drama/{drama_id}")
            drama = res.get("drama")
            if not drama:
                return ApiResponse(status=404, error="Drama not found")

            episodes = [
                self._transform_episode(ep, position)
                for position, ep in enumerate(drama.get("episodes") or [])
            ]
            data = NormalizedDramaDetail(
                id=str(drama["id"]),
                source=self.source,
                title=drama.get("name") or "Unknown",
                poster=drama.get("poster") or "",
                description=drama.get("description") or drama.get("desc") or "",
                genres=parse_genres(drama),
                total_episodes=len(episodes),
                episodes=episodes,
            )
        except UPSTREAM_ERRORS as e:
            return self._failure("fetching drama", e)
        return ApiResponse(status=200, data=data)

    # =========================================================================
    # Transformation
    # =========================================================================

    def _transform_drama(self, item: dict) -> NormalizedDrama:
        return NormalizedDrama(
            id=str(item["id"]),
            source=self.source,
            title=item.get("name") or "Unknown",
            poster=item.get("poster") or "",
            description=item.get("desc") or item.get("description") or "",
            genres=parse_genres(item),
            view_count=item.get("viewCount"),
        )

    def _transform_episode(self, ep: dict, position: int) -> NormalizedEpisode:
        # DramaDash serves a single adaptive stream per episode
        streams = []
        video_url = ep.get("videoUrl")
        if video_url:
            streams.append(
                StreamSource(quality="auto", url=video_url, type=infer_stream_type(video_url, "hls"))
            )

        subtitles = [
            Subtitle(
                label=sub.get("label") or sub.get("language") or "Unknown",
                language=sub.get("language") or "en",
                url=sub["url"],
            )
            for sub in ep.get("subtitles") or []
            if sub.get("url")
        ]

        return NormalizedEpisode(
            id=str(ep.get("id") or position + 1),
            episode_number=resolve_episode_number(
                explicit=ep.get("episodeNumber"),
                label=ep.get("name"),
                position=position,
            ),
            title=ep.get("name"),
            thumbnail=ep.get("thumbnail"),
            duration=ep.get("duration"),
            is_locked=bool(ep.get("isLocked")),
            streams=streams,
            subtitles=subtitles,
        )
