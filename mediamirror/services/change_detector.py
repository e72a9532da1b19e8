"""Decide whether a fetched catalog item differs from its stored row."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from typing import Any

from ..db_models import Item
from ..utils import deep_equal


class ChangeKind(str, enum.Enum):
    NEW = "new"
    UNCHANGED = "unchanged"
    UPDATED = "updated"


# Columns refreshed in place when an item changes upstream.
TRACKED_FIELDS: tuple[str, ...] = (
    "name",
    "original_title",
    "etag",
    "container",
    "sort_name",
    "premiere_date",
    "path",
    "official_rating",
    "overview",
    "community_rating",
    "runtime_ticks",
    "production_year",
    "is_folder",
    "parent_id",
    "media_type",
    "width",
    "height",
    "series_name",
    "series_id",
    "season_id",
    "season_name",
    "index_number",
    "parent_index_number",
    "primary_image_aspect_ratio",
    "primary_image_tag",
    "series_primary_image_tag",
    "primary_image_thumb_tag",
    "primary_image_logo_tag",
    "parent_thumb_item_id",
    "parent_thumb_image_tag",
    "parent_logo_item_id",
    "parent_logo_image_tag",
    "backdrop_image_tags",
    "parent_backdrop_item_id",
    "parent_backdrop_image_tags",
    "image_blur_hashes",
    "image_tags",
    "can_delete",
    "can_download",
    "play_access",
    "is_hd",
    "provider_ids",
    "tags",
    "series_studio",
    "video_type",
    "has_subtitles",
    "channel_id",
    "location_type",
    "genres",
)

IMAGE_FIELDS: tuple[str, ...] = (
    "primary_image_tag",
    "series_primary_image_tag",
    "primary_image_thumb_tag",
    "primary_image_logo_tag",
    "primary_image_aspect_ratio",
    "parent_thumb_item_id",
    "parent_thumb_image_tag",
    "parent_logo_item_id",
    "parent_logo_image_tag",
    "backdrop_image_tags",
    "parent_backdrop_item_id",
    "parent_backdrop_image_tags",
    "image_blur_hashes",
    "image_tags",
    "can_delete",
    "can_download",
    "play_access",
    "is_hd",
    "provider_ids",
    "tags",
    "series_studio",
)

# The version tag is compared separately as the fast path.
CONTENT_FIELDS: tuple[str, ...] = tuple(
    field for field in TRACKED_FIELDS if field != "etag"
)

# Raw payload keys that can change without the top-level image tags changing.
RAW_IMAGE_KEYS: tuple[str, ...] = ("BackdropImageTags", "ImageBlurHashes")


def _stored_value(stored: Item | Mapping[str, Any], field: str) -> Any:
    if isinstance(stored, Mapping):
        return stored.get(field)
    return getattr(stored, field, None)


def has_fields_changed(
    stored: Item | Mapping[str, Any],
    candidate: Mapping[str, Any],
    fields: tuple[str, ...] = TRACKED_FIELDS,
) -> bool:
    """Return True if any of ``fields`` differs between the two records."""

    for field in fields:
        if not deep_equal(_stored_value(stored, field), candidate.get(field)):
            return True
    return False


def has_image_fields_changed(
    stored: Item | Mapping[str, Any], candidate: Mapping[str, Any]
) -> bool:
    """Return True if image metadata differs, including nested raw payload tags."""

    if has_fields_changed(stored, candidate, IMAGE_FIELDS):
        return True

    stored_raw = _stored_value(stored, "raw_data") or {}
    candidate_raw = candidate.get("raw_data") or {}
    return any(
        not deep_equal(stored_raw.get(key), candidate_raw.get(key))
        for key in RAW_IMAGE_KEYS
    )


def classify(candidate: Mapping[str, Any], stored: Item | None) -> ChangeKind:
    """Classify a mapped remote item against the stored row, if any."""

    if stored is None:
        return ChangeKind.NEW
    version_tag = candidate.get("etag")
    if version_tag is not None and version_tag == stored.etag:
        return ChangeKind.UNCHANGED
    if has_fields_changed(stored, candidate, CONTENT_FIELDS) or has_image_fields_changed(
        stored, candidate
    ):
        return ChangeKind.UPDATED
    return ChangeKind.UNCHANGED
