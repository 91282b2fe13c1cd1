"""
SQLAlchemy ORM models for the durable store.

============================================================================
OWNERSHIP
============================================================================
- Video / VideoStats: written only by AggregatorService (sync + view events)
- ExploreIndexEntry: written only by ExploreIndexService (batch rebuild)
- UserWatchHistory: append-only, written by watch events

explore_index is a denormalized projection of videos + video_stats. It can be
dropped and rebuilt at any time; it is never the source of truth.

Data flow: Adapters → AggregatorService → videos/video_stats
           → ExploreIndexService → explore_index → API endpoints
============================================================================
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Float, Text, DateTime, ForeignKey, JSON, Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from strim.db.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Video(Base):
    """A title from one source, keyed by (source, external_id)."""

    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String(50), nullable=False)  # e.g. "dramadash", "dramabox"
    external_id = Column(String(100), nullable=False)  # ID assigned by the source
    title = Column(Text, nullable=False)
    poster = Column(Text)
    description = Column(Text)
    genres = Column(JSON)  # Ordered list of genre names
    release_year = Column(Integer)
    rating = Column(Float)
    total_episodes = Column(Integer)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    stats = relationship(
        "VideoStats",
        back_populates="video",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_videos_source_external_id"),
        Index("idx_videos_source", "source"),
        Index("idx_videos_created_id", "created_at", "id"),
        Index("idx_videos_updated", "updated_at"),
    )


class VideoStats(Base):
    """View counters for a video (one row per video)."""

    __tablename__ = "video_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(
        Integer,
        ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    views_total = Column(Integer, default=0, nullable=False)  # Lifetime, monotonic
    views_24h = Column(Integer, default=0, nullable=False)  # Trailing window, decayed by batch
    last_viewed_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    video = relationship("Video", back_populates="stats")

    __table_args__ = (
        Index("idx_video_stats_views_total", views_total.desc()),
        Index("idx_video_stats_views_24h", views_24h.desc()),
    )


class ExploreIndexEntry(Base):
    """Precomputed browse row. NO JOINS needed at read time."""

    __tablename__ = "explore_index"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String(50), nullable=False)
    external_id = Column(String(100), nullable=False)
    title = Column(Text, nullable=False)
    poster = Column(Text)
    description = Column(Text)
    genres = Column(JSON)
    release_year = Column(Integer)
    total_episodes = Column(Integer)
    # Precomputed scores - no runtime calculation
    popularity_score = Column(Integer, default=0, nullable=False)
    latest_score = Column(Integer, default=0, nullable=False)
    rating_score = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_explore_source_external_id"),
        Index("idx_explore_popularity", "popularity_score", "id"),
        Index("idx_explore_latest", "latest_score", "id"),
        Index("idx_explore_rating", "rating_score", "id"),
        Index("idx_explore_source", "source"),
        # Composite indexes for filtering by source AND sorting
        Index("idx_explore_source_popularity", "source", "popularity_score", "id"),
        Index("idx_explore_source_latest", "source", "latest_score", "id"),
        Index("idx_explore_source_rating", "source", "rating_score", "id"),
    )


class UserWatchHistory(Base):
    """Per-user watch progress events."""

    __tablename__ = "user_watch_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False)  # Anonymous or authenticated user ID
    video_id = Column(
        Integer,
        ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False,
    )
    episode_number = Column(Integer, nullable=False)
    progress = Column(Integer, default=0)  # Seconds watched
    watched_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_watch_history_user_video", "user_id", "video_id"),
    )
