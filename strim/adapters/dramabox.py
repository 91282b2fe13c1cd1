"""DramaBox adapter: public JSON mirror, no authentication.

List endpoints return either a bare array or an object wrapping one under
data/list/result. Episodes come from a separate /allepisode call whose
streams are grouped per CDN.
"""

import asyncio
import logging

from strim.adapters.base import UPSTREAM_ERRORS, SourceAdapter
from strim.adapters.normalize import (
    infer_stream_type,
    parse_genres,
    parse_quality,
    resolve_episode_number,
)
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

BANNER_COUNT = 5


def _unwrap_list(res) -> list:
    if isinstance(res, list):
        return res
    if isinstance(res, dict):
        for field in ("data", "list", "result", "episodes"):
            items = res.get(field)
            if isinstance(items, list):
                return items
    return []


class DramaBoxAdapter(SourceAdapter):
    source = Source.DRAMABOX.value
    display_name = "DramaBox"

    def __init__(
        self,
        api_url: str = "https://dramabox.sansekai.my.id/api/dramabox",
        timeout: float = 60.0,
        **kwargs,
    ):
        # /allepisode is slow, hence the long default timeout
        super().__init__(api_url, timeout, **kwargs)

    async def init(self) -> "DramaBoxAdapter":
        return self

    async def get_home(self) -> ApiResponse[NormalizedHomeData]:
        """
        Trending, latest and for-you lists fetched concurrently.

        A failing list comes back empty; only when all three fail is the
        home call itself a failure.
        """
        results = await asyncio.gather(
            self._request("GET", "/trending"),
            self._request("GET", "/latest"),
            self._request("GET", "/foryou"),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        for error in errors:
            if not isinstance(error, UPSTREAM_ERRORS):
                raise error
        if len(errors) == len(results):
            return self._failure("fetching home", errors[0])

        try:
            trending_res, latest_res, foryou_res = (
                None if isinstance(r, BaseException) else r for r in results
            )
            trending = self._transform_drama_list(trending_res)
            latest = self._transform_drama_list(latest_res)
            banners = self._transform_drama_list(foryou_res)[:BANNER_COUNT]
        except UPSTREAM_ERRORS as e:
            return self._failure("fetching home", e)

        if errors:
            logger.warning(f"[DramaBox] {len(errors)} of 3 home lists failed: {errors[0]}")

        latest = await self.enrich_with_details(latest)
        return ApiResponse(
            status=200,
            data=NormalizedHomeData(banners=banners, trending=trending, latest=latest),
        )

    async def search(self, query: str) -> ApiResponse[list[NormalizedDrama]]:
        try:
            res = await self._request("GET", "/search", params={"query": query})
            data = self._transform_drama_list(res)
        except UPSTREAM_ERRORS as e:
            return self._failure("searching", e)
        return ApiResponse(status=200, data=data)

    async def get_drama(self, drama_id: str) -> ApiResponse[NormalizedDramaDetail]:
        detail_res, episodes_res = await asyncio.gather(
            self._request("GET", "/detail", params={"bookId": drama_id}),
            self._request("GET", "/allepisode", params={"bookId": drama_id}),
            return_exceptions=True,
        )
        for result in (detail_res, episodes_res):
            if isinstance(result, BaseException) and not isinstance(result, UPSTREAM_ERRORS):
                raise result
        if isinstance(detail_res, BaseException):
            return self._failure("fetching drama", detail_res)

        # The detail alone is still worth serving without its episode list
        episodes_failed = isinstance(episodes_res, BaseException)
        if episodes_failed:
            logger.warning(f"[DramaBox] Episode list failed for {drama_id}: {episodes_res}")
            episodes_res = None

        try:
            # Detail is {data: {book: {...}}}, {data: {...}} or the book itself
            drama = detail_res
            if isinstance(drama, dict) and isinstance(drama.get("data"), dict):
                drama = drama["data"].get("book") or drama["data"]
            if not isinstance(drama, dict) or not drama:
                return ApiResponse(status=404, error="Drama not found")

            episodes = self._transform_episode_list(_unwrap_list(episodes_res))
            data = NormalizedDramaDetail(
                id=str(drama.get("bookId") or drama.get("id") or drama_id),
                source=self.source,
                title=drama.get("bookName") or drama.get("name") or drama.get("title") or "Unknown",
                poster=drama.get("coverWap") or drama.get("cover") or drama.get("poster") or "",
                description=drama.get("introduction") or drama.get("description") or "",
                genres=parse_genres(drama),
                # Unknown rather than zero, so a stored count is kept
                total_episodes=None if episodes_failed else len(episodes),
                episodes=episodes,
            )
        except UPSTREAM_ERRORS as e:
            return self._failure("fetching drama", e)
        return ApiResponse(status=200, data=data)

    # =========================================================================
    # Transformation
    # =========================================================================

    def _transform_drama_list(self, res) -> list[NormalizedDrama]:
        return [
            self._transform_drama(item)
            for item in _unwrap_list(res)
            if isinstance(item, dict) and (item.get("bookId") or item.get("id"))
        ]

    def _transform_drama(self, item: dict) -> NormalizedDrama:
        return NormalizedDrama(
            id=str(item.get("bookId") or item.get("id")),
            source=self.source,
            title=item.get("bookName") or item.get("name") or item.get("title") or "Unknown",
            poster=item.get("coverWap") or item.get("cover") or item.get("poster") or "",
            description=item.get("introduction") or item.get("description") or "",
            genres=parse_genres(item),
            view_count=item.get("viewCount") or item.get("readCount"),
        )

    def _transform_episode_list(self, episodes: list) -> list[NormalizedEpisode]:
        """Normalize episodes; a repeated episode number keeps its first occurrence."""
        normalized = []
        seen = set()
        for position, ep in enumerate(episodes):
            if not isinstance(ep, dict):
                continue
            episode = self._transform_episode(ep, position)
            if episode.episode_number in seen:
                continue
            seen.add(episode.episode_number)
            normalized.append(episode)
        return normalized

    def _transform_episode(self, ep: dict, position: int) -> NormalizedEpisode:
        streams = self._parse_streams(ep)
        subtitles = [
            Subtitle(
                label=sub.get("label") or sub.get("language") or "Unknown",
                language=sub.get("language") or "en",
                url=sub["url"],
            )
            for sub in ep.get("subtitles") or []
            if sub.get("url")
        ]
        label = ep.get("chapterName") or ep.get("title") or ep.get("name")

        return NormalizedEpisode(
            id=str(ep.get("chapterId") or ep.get("id") or ep.get("episodeId") or position + 1),
            episode_number=resolve_episode_number(
                explicit=ep.get("episodeNumber") or ep.get("serialNumber"),
                label=ep.get("chapterName"),
                chapter_index=ep.get("chapterIndex"),
                position=position,
            ),
            title=label,
            thumbnail=ep.get("cover") or ep.get("thumbnail"),
            duration=ep.get("duration"),
            is_locked=ep.get("isCharge") == 1 or bool(ep.get("isLock") or ep.get("isLocked")),
            streams=streams,
            subtitles=subtitles,
        )

    def _parse_streams(self, ep: dict) -> list[StreamSource]:
        streams = []

        # Per-CDN quality ladders: use the default CDN, else the first
        cdn_list = ep.get("cdnList")
        if isinstance(cdn_list, list) and cdn_list:
            cdn = next((c for c in cdn_list if c.get("isDefault") == 1), cdn_list[0])
            for path in cdn.get("videoPathList") or []:
                url = path.get("videoPath")
                if url:
                    streams.append(
                        StreamSource(
                            quality=parse_quality(path.get("quality")),
                            url=url,
                            type=infer_stream_type(url),
                        )
                    )

        # Direct URL only when no CDN ladder was usable
        video_url = ep.get("videoUrl") or ep.get("playUrl") or ep.get("url")
        if video_url and not streams:
            streams.append(StreamSource(quality="auto", url=video_url, type=infer_stream_type(video_url)))

        for src in ep.get("sources") or []:
            url = src.get("url")
            if url:
                streams.append(
                    StreamSource(
                        quality=parse_quality(src.get("quality") or src.get("label")),
                        url=url,
                        type=infer_stream_type(url, src.get("type")),
                    )
                )
        return streams
