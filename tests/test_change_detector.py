"""Tests for the item change classification rules."""

from __future__ import annotations

from typing import Any

from mediamirror.db_models import Item
from mediamirror.services.change_detector import (
    ChangeKind,
    classify,
    has_fields_changed,
    has_image_fields_changed,
)
from mediamirror.services.item_sync import map_remote_item


def build_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "Id": "movie-1",
        "Name": "Heat",
        "Type": "Movie",
        "Etag": "v1",
        "Overview": "A heist.",
        "ProductionYear": 1995,
        "RunTimeTicks": 102_000_000_000,
        "Path": "/media/movies/Heat (1995)/Heat.mkv",
        "ProviderIds": {"Tmdb": "949", "Imdb": "tt0113277"},
        "ImageTags": {"Primary": "p1"},
        "BackdropImageTags": ["b1"],
        "Genres": ["Action", "Crime"],
    }
    payload.update(overrides)
    return payload


def build_row(**overrides: Any) -> dict[str, Any]:
    return map_remote_item(build_payload(**overrides), "lib-1", 1)


def stored_item(**overrides: Any) -> Item:
    return Item(**build_row(**overrides))


def test_unknown_id_is_new() -> None:
    assert classify(build_row(), None) is ChangeKind.NEW


def test_equal_version_tag_short_circuits() -> None:
    """A matching version tag wins even if other fields differ."""

    stored = stored_item(Overview="Old overview.")
    candidate = build_row(Overview="New overview.")

    assert classify(candidate, stored) is ChangeKind.UNCHANGED


def test_changed_overview_with_new_tag_is_updated() -> None:
    stored = stored_item()
    candidate = build_row(Etag="v2", Overview="Now with a director's cut.")

    assert classify(candidate, stored) is ChangeKind.UPDATED


def test_tag_bump_without_content_change_is_unchanged() -> None:
    stored = stored_item()
    candidate = build_row(Etag="v2")

    assert classify(candidate, stored) is ChangeKind.UNCHANGED


def test_missing_tag_falls_back_to_field_diff() -> None:
    stored = stored_item(Etag=None)

    assert classify(build_row(Etag=None), stored) is ChangeKind.UNCHANGED
    assert (
        classify(build_row(Etag=None, Genres=["Action"]), stored)
        is ChangeKind.UPDATED
    )


def test_provider_key_order_is_not_a_change() -> None:
    stored = stored_item(ProviderIds={"Imdb": "tt0113277", "Tmdb": "949"})
    candidate = build_row(ProviderIds={"Tmdb": "949", "Imdb": "tt0113277"})

    assert not has_fields_changed(stored, candidate)
    assert classify({**candidate, "etag": "v2"}, stored) is ChangeKind.UNCHANGED


def test_image_tags_detected() -> None:
    stored = stored_item()

    assert has_image_fields_changed(stored, build_row(ImageTags={"Primary": "p2"}))
    assert not has_image_fields_changed(stored, build_row())


def test_nested_raw_image_keys_are_compared() -> None:
    stored = stored_item(ImageBlurHashes={"Primary": {"p1": "hash-a"}})
    candidate = build_row(ImageBlurHashes={"Primary": {"p1": "hash-b"}})

    assert has_image_fields_changed(stored, candidate)
    assert classify({**candidate, "etag": "v2"}, stored) is ChangeKind.UPDATED


def test_mapping_records_compare_like_rows() -> None:
    """The diff helpers also accept plain row mappings."""

    assert has_fields_changed(build_row(), build_row(Name="Heat (Remastered)"))
    assert not has_fields_changed(build_row(), build_row())
