"""Create videos, video_stats, explore_index and user_watch_history.

Revision ID: 001_initial_schema
Revises:
"""

from alembic import op
import sqlalchemy as sa

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "videos",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("external_id", sa.String(100), nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("poster", sa.Text),
        sa.Column("description", sa.Text),
        sa.Column("genres", sa.JSON),
        sa.Column("release_year", sa.Integer),
        sa.Column("rating", sa.Float),
        sa.Column("total_episodes", sa.Integer),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("source", "external_id", name="uq_videos_source_external_id"),
    )
    op.create_index("idx_videos_source", "videos", ["source"])
    op.create_index("idx_videos_created_id", "videos", ["created_at", "id"])
    op.create_index("idx_videos_updated", "videos", ["updated_at"])

    op.create_table(
        "video_stats",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "video_id",
            sa.Integer,
            sa.ForeignKey("videos.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("views_total", sa.Integer, nullable=False, server_default="0"),
        sa.Column("views_24h", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_viewed_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_video_stats_views_total", "video_stats", [sa.text("views_total DESC")])
    op.create_index("idx_video_stats_views_24h", "video_stats", [sa.text("views_24h DESC")])

    op.create_table(
        "explore_index",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("external_id", sa.String(100), nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("poster", sa.Text),
        sa.Column("description", sa.Text),
        sa.Column("genres", sa.JSON),
        sa.Column("release_year", sa.Integer),
        sa.Column("total_episodes", sa.Integer),
        sa.Column("popularity_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("latest_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rating_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("source", "external_id", name="uq_explore_source_external_id"),
    )
    op.create_index("idx_explore_popularity", "explore_index", ["popularity_score", "id"])
    op.create_index("idx_explore_latest", "explore_index", ["latest_score", "id"])
    op.create_index("idx_explore_rating", "explore_index", ["rating_score", "id"])
    op.create_index("idx_explore_source", "explore_index", ["source"])
    op.create_index("idx_explore_source_popularity", "explore_index", ["source", "popularity_score", "id"])
    op.create_index("idx_explore_source_latest", "explore_index", ["source", "latest_score", "id"])
    op.create_index("idx_explore_source_rating", "explore_index", ["source", "rating_score", "id"])

    op.create_table(
        "user_watch_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column(
            "video_id",
            sa.Integer,
            sa.ForeignKey("videos.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("episode_number", sa.Integer, nullable=False),
        sa.Column("progress", sa.Integer, server_default="0"),
        sa.Column("watched_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_watch_history_user_video", "user_watch_history", ["user_id", "video_id"])


def downgrade() -> None:
    op.drop_index("idx_watch_history_user_video", table_name="user_watch_history")
    op.drop_table("user_watch_history")

    for name in (
        "idx_explore_source_rating",
        "idx_explore_source_latest",
        "idx_explore_source_popularity",
        "idx_explore_source",
        "idx_explore_rating",
        "idx_explore_latest",
        "idx_explore_popularity",
    ):
        op.drop_index(name, table_name="explore_index")
    op.drop_table("explore_index")

    op.drop_index("idx_video_stats_views_24h", table_name="video_stats")
    op.drop_index("idx_video_stats_views_total", table_name="video_stats")
    op.drop_table("video_stats")

    op.drop_index("idx_videos_updated", table_name="videos")
    op.drop_index("idx_videos_created_id", table_name="videos")
    op.drop_index("idx_videos_source", table_name="videos")
    op.drop_table("videos")
