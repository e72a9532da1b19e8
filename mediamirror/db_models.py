"""SQLAlchemy ORM models backing the mirrored catalog and sessions."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .utils import utcnow


SESSION_SOURCE_NATIVE = "native"
SESSION_SOURCE_HISTORICAL = "historical_import"


class Server(Base):
    """A remote media server whose catalog is mirrored locally."""

    __tablename__ = "servers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    url: Mapped[str] = mapped_column(String(512), unique=True)
    internal_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    api_key: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    libraries: Mapped[list["Library"]] = relationship(
        back_populates="server", cascade="all, delete-orphan"
    )

    @property
    def base_url(self) -> str:
        """Address used for server-to-server requests."""

        return self.internal_url or self.url


class Library(Base):
    """A top-level media folder on the remote server."""

    __tablename__ = "libraries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(64))
    server_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("servers.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    server: Mapped[Server] = relationship(back_populates="libraries")


class User(Base):
    """A user account mirrored from the remote server."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    server_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("servers.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class Activity(Base):
    """One entry of the remote server's activity log."""

    __tablename__ = "activities"
    __table_args__ = (Index("ix_activities_server_date", "server_id", "date"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text)
    short_overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(128))
    date: Mapped[datetime] = mapped_column(DateTime)
    severity: Mapped[str] = mapped_column(String(32))
    server_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("servers.id", ondelete="CASCADE")
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Item(Base):
    """A catalog item (movie, episode, series, season...)."""

    __tablename__ = "items"
    __table_args__ = (
        Index("ix_items_server_library", "server_id", "library_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    server_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("servers.id", ondelete="CASCADE")
    )
    library_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("libraries.id", ondelete="CASCADE")
    )

    name: Mapped[str] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(64))
    original_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    etag: Mapped[str | None] = mapped_column(String(128), nullable=True)
    date_created: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    container: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sort_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    premiere_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    path: Mapped[str | None] = mapped_column(Text, nullable=True)
    official_rating: Mapped[str | None] = mapped_column(String(32), nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)

    community_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    runtime_ticks: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    production_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_folder: Mapped[bool] = mapped_column(Boolean, default=False)
    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    media_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)

    series_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    series_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    season_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    season_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    index_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parent_index_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    video_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    has_subtitles: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    primary_image_aspect_ratio: Mapped[float | None] = mapped_column(
        Float, nullable=True
    )
    primary_image_tag: Mapped[str | None] = mapped_column(String(128), nullable=True)
    series_primary_image_tag: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    primary_image_thumb_tag: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    primary_image_logo_tag: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    parent_thumb_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    parent_thumb_image_tag: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    parent_logo_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    parent_logo_image_tag: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    backdrop_image_tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    parent_backdrop_item_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    parent_backdrop_image_tags: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True
    )
    image_blur_hashes: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True
    )
    image_tags: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)

    can_delete: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    can_download: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    play_access: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_hd: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    provider_ids: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    series_studio: Mapped[str | None] = mapped_column(Text, nullable=True)

    raw_data: Mapped[dict[str, Any]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class Session(Base):
    """A native or reconstructed viewing session."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_user_item_start", "user_id", "item_id", "start_time"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    server_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("servers.id", ondelete="CASCADE")
    )
    # Weak references: rows outlive the users and items they point at.
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    user_name: Mapped[str] = mapped_column(String(255))
    item_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    series_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    series_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    season_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    device_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    play_method: Mapped[str | None] = mapped_column(String(32), nullable=True)

    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_activity_date: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    play_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    runtime_ticks: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    percent_complete: Mapped[float | None] = mapped_column(Float, nullable=True)

    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    is_transcoded: Mapped[bool] = mapped_column(Boolean, default=False)

    source: Mapped[str] = mapped_column(String(32), default=SESSION_SOURCE_NATIVE)
    raw_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class JobResult(Base):
    """Outcome of one scheduled job run."""

    __tablename__ = "job_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(255))
    job_name: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(50))
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
