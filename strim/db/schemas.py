"""Pydantic schemas: the normalized content model and API request/response shapes.

All models serialize to camelCase on the wire (episodeNumber, totalEpisodes,
nextCursor, ...) and accept either spelling on input.
"""

from datetime import datetime
from enum import Enum
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")

StreamQuality = Literal["1080p", "720p", "540p", "480p", "360p", "auto"]
StreamType = Literal["hls", "mp4", "dash"]


class Source(str, Enum):
    """Supported upstream providers."""
    DRAMADASH = "dramadash"
    DRAMABOX = "dramabox"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============ Envelope ============

class ApiResponse(CamelModel, Generic[T]):
    """Uniform {status, data, error?} envelope used by adapters and the API."""
    status: int
    data: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300 and self.data is not None


# ============ Normalized Content Model ============

class Subtitle(CamelModel):
    label: str
    language: str
    url: str


class StreamSource(CamelModel):
    """One quality level of an episode stream."""
    quality: StreamQuality = "auto"
    url: str
    type: StreamType = "mp4"


class NormalizedEpisode(CamelModel):
    id: str
    episode_number: int  # 1-based, unique within a drama
    title: str | None = None
    thumbnail: str | None = None
    duration: int | None = None  # seconds
    is_locked: bool = False
    streams: list[StreamSource] = []
    subtitles: list[Subtitle] = []


class NormalizedDrama(CamelModel):
    """A title from any source. (source, id) is the natural key."""
    id: str
    source: str  # a Source value
    title: str
    poster: str = ""
    description: str | None = None
    genres: list[str] = []
    release_year: int | None = None
    rating: float | None = None
    total_episodes: int | None = None
    view_count: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.id)


class NormalizedDramaDetail(NormalizedDrama):
    episodes: list[NormalizedEpisode] = []


class NormalizedHomeData(CamelModel):
    banners: list[NormalizedDrama] = []
    trending: list[NormalizedDrama] = []
    latest: list[NormalizedDrama] = []


class SourceHome(CamelModel):
    source: str  # a Source value
    data: NormalizedHomeData


class AggregatedHome(CamelModel):
    sources: list[SourceHome] = []


class EpisodePointer(CamelModel):
    episode_number: int
    id: str


class StreamInfo(CamelModel):
    """Episode playback info plus prev/next navigation."""
    episode_id: str
    episode_number: int
    title: str
    streams: list[StreamSource] = []
    subtitles: list[Subtitle] = []
    poster: str | None = None
    next_episode: EpisodePointer | None = None
    previous_episode: EpisodePointer | None = None


# ============ Persisted Video Views ============

class VideoOut(CamelModel):
    """A persisted video with its counters and (optionally) a ranking score."""
    id: int
    source: str
    external_id: str
    title: str
    poster: str | None = None
    description: str | None = None
    genres: list[str] | None = None
    release_year: int | None = None
    rating: float | None = None
    total_episodes: int | None = None
    views_total: int = 0
    views_24h: int = 0
    score: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ExploreItem(CamelModel):
    """A row of the precomputed explore index."""
    id: int
    source: str
    external_id: str
    title: str
    poster: str | None = None
    description: str | None = None
    genres: list[str] | None = None
    release_year: int | None = None
    total_episodes: int | None = None
    popularity_score: int = 0
    latest_score: int = 0
    rating_score: int = 0


class AllVideosResult(CamelModel):
    """Offset page over all persisted videos."""
    videos: list[VideoOut] = []
    total: int = 0
    limit: int = 20
    offset: int = 0
    sources: list[str] = []


class CursorPage(CamelModel, Generic[T]):
    """Cursor page. next_cursor is set only when has_more is true."""
    items: list[T] = []
    next_cursor: str | None = None
    has_more: bool = False


class SyncResult(CamelModel):
    synced: int = 0
    errors: list[str] = []


class IndexRebuildResult(CamelModel):
    count: int = 0
    pruned: int = 0
    elapsed_ms: int = 0


# ============ Events ============

class ViewEvent(CamelModel):
    source: str = Field(min_length=1)
    external_id: str = Field(min_length=1)


class WatchEvent(CamelModel):
    source: str = Field(min_length=1)
    external_id: str = Field(min_length=1)
    episode_number: int = Field(ge=1)
    progress: int = Field(ge=0)  # Seconds watched
    user_id: str | None = None
