"""Provider-independent normalization rules shared by every adapter."""

import re
from typing import Any, Iterable
from urllib.parse import urlsplit

from strim.db.schemas import NormalizedDrama, StreamQuality, StreamType

_QUALITY_STEPS: list[tuple[str, StreamQuality]] = [
    ("1080", "1080p"),
    ("720", "720p"),
    ("540", "540p"),
    ("480", "480p"),
    ("360", "360p"),
]
_STREAM_TYPES = ("hls", "mp4", "dash")
_DIGITS = re.compile(r"\d+")


def parse_quality(quality: Any) -> StreamQuality:
    """Canonicalize a provider quality label ("HD 720", 1080, "540P") by digit match."""
    if quality is None or isinstance(quality, bool):
        return "auto"
    q = str(quality).lower()
    for digits, canonical in _QUALITY_STEPS:
        if digits in q:
            return canonical
    return "auto"


def infer_stream_type(url: str, explicit: str | None = None) -> StreamType:
    """Use the provider's type if valid, else .m3u8 => hls, anything else => mp4."""
    if explicit and explicit.lower() in _STREAM_TYPES:
        return explicit.lower()
    if urlsplit(url).path.lower().endswith(".m3u8"):
        return "hls"
    return "mp4"


def _positive_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def resolve_episode_number(
    explicit: Any = None,
    label: str | None = None,
    chapter_index: Any = None,
    position: int = 0,
) -> int:
    """
    Episode number, first usable source wins:

    1. explicit numeric field
    2. first integer in a human label ("EP 12" -> 12)
    3. zero-based chapter index + 1
    4. zero-based array position + 1
    """
    number = _positive_int(explicit)
    if number is not None:
        return number

    if label:
        match = _DIGITS.search(str(label))
        if match:
            number = _positive_int(match.group(0))
            if number is not None:
                return number

    if chapter_index is not None and not isinstance(chapter_index, bool):
        try:
            return int(chapter_index) + 1
        except (TypeError, ValueError):
            pass

    return position + 1


def parse_genres(item: dict, category_field: str = "categoryName") -> list[str]:
    """
    Genre names in provider order.

    Accepts plain strings or {name|displayName} objects; falls back to the
    single category field, then to an empty list.
    """
    genres = item.get("genres")
    if isinstance(genres, list) and genres:
        names = []
        for genre in genres:
            if isinstance(genre, str):
                name = genre
            elif isinstance(genre, dict):
                name = genre.get("name") or genre.get("displayName") or ""
            else:
                continue
            if name:
                names.append(name)
        return names

    category = item.get(category_field)
    if category:
        return [str(category)]
    return []


def dedupe_dramas(dramas: Iterable[NormalizedDrama]) -> list[NormalizedDrama]:
    """Drop repeated (source, id) pairs, keeping the first occurrence and order."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for drama in dramas:
        if drama.key in seen:
            continue
        seen.add(drama.key)
        unique.append(drama)
    return unique
