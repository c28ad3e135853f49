"""initial library schema

Revision ID: aa01tv000001
Revises:
Create Date: 2026-10-19 12:00:00.000000

Hey future me - this is the FIRST migration. It creates the library tables the
scanner/TMDB workers/ffprobe write to, plus scan_history and app_settings.

Tasks themselves are NOT persisted (in-memory registry), only scan statistics
and the max parallel tasks setting survive a restart.

To run this migration:
    alembic upgrade head
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "aa01tv000001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create library, scan history and settings tables."""
    op.create_table(
        "tv_shows",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("folder_name", sa.String(500), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("tmdb_id", sa.Integer(), nullable=True),
        sa.Column("poster_path", sa.String(500), nullable=True),
        sa.Column("backdrop_path", sa.String(500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("vote_average", sa.Float(), nullable=True),
        sa.Column("first_air_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("network_status", sa.String(50), nullable=True),
        sa.Column("tmdb_season_count", sa.Integer(), nullable=True),
        sa.Column("tmdb_episode_count", sa.Integer(), nullable=True),
        sa.Column("last_metadata_sync", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_tv_shows_title", "tv_shows", ["title"])
    op.create_index("ix_tv_shows_tmdb_id", "tv_shows", ["tmdb_id"])

    op.create_table(
        "seasons",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "tv_show_id",
            sa.Integer(),
            sa.ForeignKey("tv_shows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("season_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("tmdb_season_id", sa.Integer(), nullable=True),
        sa.Column("poster_path", sa.String(500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("air_date", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("tv_show_id", "season_number", name="uq_season_show_number"),
    )
    op.create_index("ix_seasons_tv_show_id", "seasons", ["tv_show_id"])

    op.create_table(
        "episodes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "season_id",
            sa.Integer(),
            sa.ForeignKey("seasons.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("episode_number", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(500), nullable=True),
        sa.Column("tmdb_episode_id", sa.Integer(), nullable=True),
        sa.Column("still_path", sa.String(500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("air_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("runtime", sa.Integer(), nullable=True),
        sa.Column("vote_average", sa.Float(), nullable=True),
        sa.Column("monitor_status", sa.String(20), nullable=False, server_default="wanted"),
        sa.UniqueConstraint("season_id", "episode_number", name="uq_episode_season_number"),
    )
    op.create_index("ix_episodes_season_id", "episodes", ["season_id"])

    op.create_table(
        "episode_files",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "episode_id",
            sa.Integer(),
            sa.ForeignKey("episodes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("filepath", sa.String(2000), nullable=False, unique=True),
        sa.Column("filename", sa.String(500), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("date_modified", sa.DateTime(timezone=True), nullable=False),
        sa.Column("file_exists", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("codec", sa.String(50), nullable=True),
        sa.Column("resolution", sa.String(20), nullable=True),
        sa.Column("bitrate", sa.BigInteger(), nullable=True),
        sa.Column("container", sa.String(50), nullable=True),
        sa.Column("audio_format", sa.String(50), nullable=True),
        sa.Column("hdr_type", sa.String(30), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("audio_languages", sa.JSON(), nullable=True),
        sa.Column("subtitle_languages", sa.JSON(), nullable=True),
        sa.Column("metadata_source", sa.String(20), nullable=True),
        sa.Column("media_info_extracted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("media_info_error", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_episode_files_episode_id", "episode_files", ["episode_id"])
    op.create_index("ix_episode_files_status", "episode_files", ["status"])

    op.create_table(
        "media_tracks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "episode_file_id",
            sa.Integer(),
            sa.ForeignKey("episode_files.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("track_type", sa.String(20), nullable=False),
        sa.Column("track_index", sa.Integer(), nullable=False),
        sa.Column("codec", sa.String(50), nullable=True),
        sa.Column("codec_long", sa.String(255), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("bit_depth", sa.Integer(), nullable=True),
        sa.Column("frame_rate", sa.Float(), nullable=True),
        sa.Column("hdr_type", sa.String(30), nullable=True),
        sa.Column("profile", sa.String(100), nullable=True),
        sa.Column("channels", sa.Integer(), nullable=True),
        sa.Column("channel_layout", sa.String(50), nullable=True),
        sa.Column("sample_rate", sa.Integer(), nullable=True),
        sa.Column("language", sa.String(20), nullable=True),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("bitrate", sa.BigInteger(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_forced", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_media_tracks_episode_file_id", "media_tracks", ["episode_file_id"])

    op.create_table(
        "scan_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("scan_type", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("files_scanned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("files_added", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("files_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("files_deleted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
    )

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("value_type", sa.String(20), nullable=False, server_default="string"),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    """Drop everything (reverse FK order)."""
    op.drop_table("app_settings")
    op.drop_table("scan_history")
    op.drop_index("ix_media_tracks_episode_file_id", table_name="media_tracks")
    op.drop_table("media_tracks")
    op.drop_index("ix_episode_files_status", table_name="episode_files")
    op.drop_index("ix_episode_files_episode_id", table_name="episode_files")
    op.drop_table("episode_files")
    op.drop_index("ix_episodes_season_id", table_name="episodes")
    op.drop_table("episodes")
    op.drop_index("ix_seasons_tv_show_id", table_name="seasons")
    op.drop_table("seasons")
    op.drop_index("ix_tv_shows_tmdb_id", table_name="tv_shows")
    op.drop_index("ix_tv_shows_title", table_name="tv_shows")
    op.drop_table("tv_shows")
