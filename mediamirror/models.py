"""Pydantic models describing remote payloads and sync results."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .utils import parse_remote_datetime

SyncStatus = Literal["success", "partial", "error"]

DataT = TypeVar("DataT")


class RemoteItem(BaseModel):
    """The subset of a remote ``BaseItemDto`` mirrored into the items table."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str | None = Field(default=None, alias="Id")
    name: str | None = Field(default=None, alias="Name")
    type: str | None = Field(default=None, alias="Type")
    original_title: str | None = Field(default=None, alias="OriginalTitle")
    etag: str | None = Field(default=None, alias="Etag")
    date_created: str | None = Field(default=None, alias="DateCreated")
    container: str | None = Field(default=None, alias="Container")
    sort_name: str | None = Field(default=None, alias="SortName")
    premiere_date: str | None = Field(default=None, alias="PremiereDate")
    path: str | None = Field(default=None, alias="Path")
    official_rating: str | None = Field(default=None, alias="OfficialRating")
    overview: str | None = Field(default=None, alias="Overview")
    community_rating: float | None = Field(default=None, alias="CommunityRating")
    runtime_ticks: int | None = Field(default=None, alias="RunTimeTicks")
    production_year: int | None = Field(default=None, alias="ProductionYear")
    is_folder: bool = Field(default=False, alias="IsFolder")
    parent_id: str | None = Field(default=None, alias="ParentId")
    media_type: str | None = Field(default=None, alias="MediaType")
    width: int | None = Field(default=None, alias="Width")
    height: int | None = Field(default=None, alias="Height")
    series_name: str | None = Field(default=None, alias="SeriesName")
    series_id: str | None = Field(default=None, alias="SeriesId")
    season_id: str | None = Field(default=None, alias="SeasonId")
    season_name: str | None = Field(default=None, alias="SeasonName")
    index_number: int | None = Field(default=None, alias="IndexNumber")
    parent_index_number: int | None = Field(default=None, alias="ParentIndexNumber")
    video_type: str | None = Field(default=None, alias="VideoType")
    has_subtitles: bool | None = Field(default=None, alias="HasSubtitles")
    channel_id: str | None = Field(default=None, alias="ChannelId")
    location_type: str | None = Field(default=None, alias="LocationType")
    genres: list[str] | None = Field(default=None, alias="Genres")
    primary_image_aspect_ratio: float | None = Field(
        default=None, alias="PrimaryImageAspectRatio"
    )
    image_tags: dict[str, str] | None = Field(default=None, alias="ImageTags")
    series_primary_image_tag: str | None = Field(
        default=None, alias="SeriesPrimaryImageTag"
    )
    parent_thumb_item_id: str | None = Field(default=None, alias="ParentThumbItemId")
    parent_thumb_image_tag: str | None = Field(
        default=None, alias="ParentThumbImageTag"
    )
    parent_logo_item_id: str | None = Field(default=None, alias="ParentLogoItemId")
    parent_logo_image_tag: str | None = Field(default=None, alias="ParentLogoImageTag")
    backdrop_image_tags: list[str] | None = Field(
        default=None, alias="BackdropImageTags"
    )
    parent_backdrop_item_id: str | None = Field(
        default=None, alias="ParentBackdropItemId"
    )
    parent_backdrop_image_tags: list[str] | None = Field(
        default=None, alias="ParentBackdropImageTags"
    )
    image_blur_hashes: dict[str, Any] | None = Field(
        default=None, alias="ImageBlurHashes"
    )
    can_delete: bool | None = Field(default=None, alias="CanDelete")
    can_download: bool | None = Field(default=None, alias="CanDownload")
    play_access: str | None = Field(default=None, alias="PlayAccess")
    is_hd: bool | None = Field(default=None, alias="IsHD")
    provider_ids: dict[str, str] | None = Field(default=None, alias="ProviderIds")
    tags: list[str] | None = Field(default=None, alias="Tags")
    series_studio: str | None = Field(default=None, alias="SeriesStudio")

    @field_validator("provider_ids", mode="before")
    @classmethod
    def _stringify_provider_ids(cls, value: object) -> object:
        """Drop empty provider entries and coerce ids to strings."""

        if not isinstance(value, dict):
            return value
        return {
            str(provider): str(external_id)
            for provider, external_id in value.items()
            if external_id not in (None, "")
        }


class RemoteLibrary(BaseModel):
    """A media folder reported by the remote server."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="Id")
    name: str = Field(alias="Name")
    collection_type: str | None = Field(default=None, alias="CollectionType")


class RemoteActivity(BaseModel):
    """A single activity-log entry reported by the remote server."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="Id")
    name: str = Field(alias="Name")
    short_overview: str | None = Field(default=None, alias="ShortOverview")
    type: str = Field(default="Unknown", alias="Type")
    date: datetime = Field(alias="Date")
    severity: str = Field(default="Information", alias="Severity")
    user_id: str | None = Field(default=None, alias="UserId")
    item_id: str | None = Field(default=None, alias="ItemId")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: object) -> object:
        return parse_remote_datetime(value)

    @field_validator("user_id", "item_id", mode="before")
    @classmethod
    def _blank_ids(cls, value: object) -> object:
        # The server reports "no user" as an all-zero GUID.
        if isinstance(value, str) and (not value.strip() or set(value) <= {"0", "-"}):
            return None
        return value


class ItemsPage(BaseModel):
    """One page of raw item payloads plus the reported catalog size."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    total_count: int | None = None


class ActivityPage(BaseModel):
    """One page of activity-log entries plus the reported log size."""

    items: list[RemoteActivity] = Field(default_factory=list)
    total_count: int | None = None


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class SyncMetrics(_CamelModel):
    """Counters collected while a sync runs."""

    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int = 0
    api_requests: int = 0
    database_operations: int = 0
    libraries_processed: int = 0
    items_processed: int = 0
    items_inserted: int = 0
    items_updated: int = 0
    items_unchanged: int = 0
    items_migrated: int = 0
    errors: int = 0


class ItemSyncData(_CamelModel):
    """Item counts reported by a catalog sync."""

    libraries_processed: int = 0
    items_processed: int = 0
    items_inserted: int = 0
    items_updated: int = 0
    items_unchanged: int = 0


class ActivitySyncData(_CamelModel):
    """Counts reported by an activity-log refresh."""

    activities_processed: int = 0
    activities_inserted: int = 0
    activities_updated: int = 0
    pages_fetched: int = 0


class SyncResult(_CamelModel, Generic[DataT]):
    """Structured outcome of one sync run, consumed by the scheduler."""

    status: SyncStatus
    data: DataT
    metrics: SyncMetrics
    error: str | None = None
    errors: list[str] = Field(default_factory=list)


class ErrorDetail(_CamelModel):
    """A recoverable failure recorded during the historical backfill."""

    activity_id: str | None = None
    error: str
    timestamp: datetime


class HistoricalSessionResult(_CamelModel):
    """Counts reported by the historical session backfill."""

    activities_synced: int = 0
    activities_processed: int = 0
    sessions_created: int = 0
    sessions_skipped: int = 0
    duplicates_found: int = 0
    errors: int = 0
    error_details: list[ErrorDetail] = Field(default_factory=list)
