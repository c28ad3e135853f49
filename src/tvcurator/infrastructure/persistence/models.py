"""SQLAlchemy ORM models for tvcurator."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from tvcurator.domain.entities import FileStatus, MonitorStatus, ScanStatus


# Hey future me, utc_now() ensures ALL timestamps are UTC! Never use datetime.now() without
# a timezone - naive datetimes break comparisons the moment the server TZ changes.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! Datetimes come back naive. The scanner
# compares stored mtimes against fresh os.stat() values, so ALWAYS normalize with this first or
# every file looks "updated" on a rescan.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models.

    All models inherit from this to use the same metadata registry.
    """

    pass


# Listen up, TVShowModel is the root of the library hierarchy: show -> season -> episode -> file.
# Shows are created by the scanner (from folder/file names) and enriched by TMDB workers.
# tmdb_id stays NULL until a bulk-match or manual match succeeds. Deleting a show cascades all
# the way down to files and media tracks!
class TVShowModel(Base):
    """SQLAlchemy model for a TV show."""

    __tablename__ = "tv_shows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    folder_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # TMDB metadata (filled by workers)
    tmdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    poster_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    backdrop_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    vote_average: Mapped[float | None] = mapped_column(Float, nullable=True)
    first_air_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    network_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tmdb_season_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tmdb_episode_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_metadata_sync: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    seasons: Mapped[list["SeasonModel"]] = relationship(
        "SeasonModel", back_populates="tv_show", cascade="all, delete-orphan"
    )


class SeasonModel(Base):
    """SQLAlchemy model for a season of a show."""

    __tablename__ = "seasons"
    __table_args__ = (
        UniqueConstraint("tv_show_id", "season_number", name="uq_season_show_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tv_show_id: Mapped[int] = mapped_column(
        ForeignKey("tv_shows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    season_number: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tmdb_season_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    air_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tv_show: Mapped["TVShowModel"] = relationship("TVShowModel", back_populates="seasons")
    episodes: Mapped[list["EpisodeModel"]] = relationship(
        "EpisodeModel", back_populates="season", cascade="all, delete-orphan"
    )


class EpisodeModel(Base):
    """SQLAlchemy model for an episode."""

    __tablename__ = "episodes"
    __table_args__ = (
        UniqueConstraint("season_id", "episode_number", name="uq_episode_season_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(
        ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    episode_number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    tmdb_episode_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    still_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    air_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    runtime: Mapped[int | None] = mapped_column(Integer, nullable=True)
    vote_average: Mapped[float | None] = mapped_column(Float, nullable=True)
    monitor_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MonitorStatus.WANTED.value
    )

    season: Mapped["SeasonModel"] = relationship("SeasonModel", back_populates="episodes")
    files: Mapped[list["EpisodeFileModel"]] = relationship(
        "EpisodeFileModel", back_populates="episode", cascade="all, delete-orphan"
    )


# Yo, EpisodeFileModel is what the scanner writes! filepath is UNIQUE - one row per file on disk.
# file_size + date_modified are the change detection keys (no hashing, too slow for TB libraries).
# file_exists=False + status="deleted" means "we saw it once, it's gone now" - we keep the row so
# quality history isn't lost when a drive is temporarily unmounted.
class EpisodeFileModel(Base):
    """SQLAlchemy model for a video file belonging to an episode."""

    __tablename__ = "episode_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    episode_id: Mapped[int] = mapped_column(
        ForeignKey("episodes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filepath: Mapped[str] = mapped_column(String(2000), nullable=False, unique=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    date_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    file_exists: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FileStatus.ACTIVE.value, index=True
    )

    # Media info summary (ffprobe)
    codec: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)
    bitrate: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    container: Mapped[str | None] = mapped_column(String(50), nullable=True)
    audio_format: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hdr_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    audio_languages: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    subtitle_languages: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    metadata_source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    media_info_extracted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    media_info_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    episode: Mapped["EpisodeModel"] = relationship("EpisodeModel", back_populates="files")
    tracks: Mapped[list["MediaTrackModel"]] = relationship(
        "MediaTrackModel", back_populates="episode_file", cascade="all, delete-orphan"
    )


class MediaTrackModel(Base):
    """One video/audio/subtitle stream of an episode file (from ffprobe)."""

    __tablename__ = "media_tracks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    episode_file_id: Mapped[int] = mapped_column(
        ForeignKey("episode_files.id", ondelete="CASCADE"), nullable=False, index=True
    )
    track_type: Mapped[str] = mapped_column(String(20), nullable=False)
    track_index: Mapped[int] = mapped_column(Integer, nullable=False)
    codec: Mapped[str | None] = mapped_column(String(50), nullable=True)
    codec_long: Mapped[str | None] = mapped_column(String(255), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bit_depth: Mapped[int | None] = mapped_column(Integer, nullable=True)
    frame_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    hdr_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    profile: Mapped[str | None] = mapped_column(String(100), nullable=True)
    channels: Mapped[int | None] = mapped_column(Integer, nullable=True)
    channel_layout: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sample_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    language: Mapped[str | None] = mapped_column(String(20), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bitrate: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_forced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    episode_file: Mapped["EpisodeFileModel"] = relationship(
        "EpisodeFileModel", back_populates="tracks"
    )


# Hey future me - ScanHistoryModel is written by the scan orchestrator at start (status=running)
# and again at the end with the final counts. Tasks themselves are in-memory only, so this is
# the ONLY trace of a scan after the task's retention window expires.
class ScanHistoryModel(Base):
    """Persisted statistics of one library scan."""

    __tablename__ = "scan_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    files_scanned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_deleted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ScanStatus.RUNNING.value
    )


# =============================================================================
# APP SETTINGS MODEL (Dynamic Configuration without Restart)
# =============================================================================
# Hey future me - KEY-VALUE storage for runtime config! Unlike env-based Settings
# (pydantic-settings), these change from the Settings page without a restart.
# Right now it carries "tasks.max_parallel_tasks"; value_type tells the service how
# to parse the string ('string', 'integer', 'boolean', 'json').
# =============================================================================


class AppSettingsModel(Base):
    """Dynamic application settings stored in DB."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_type: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="string", default="string"
    )
    category: Mapped[str] = mapped_column(
        String(50), nullable=False, server_default="general", default="general"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
