"""Incremental mirroring of remote catalog items into the items table."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import Item, Library, Server
from ..errors import IdentityMigrationError, ItemMappingError
from ..models import ItemSyncData, RemoteItem, SyncResult
from ..utils import parse_remote_datetime, utcnow
from .change_detector import (
    TRACKED_FIELDS,
    ChangeKind,
    classify,
    has_fields_changed,
    has_image_fields_changed,
)
from .identity import IdentityMigration, find_potential_duplicate
from .jellyfin import CatalogClient
from .metrics import SyncMetricsTracker, create_sync_result

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ItemSyncOptions:
    """Tunables for one catalog sync run."""

    item_page_size: int = 500
    max_library_concurrency: int = 2
    item_concurrency: int = 10
    api_request_delay_ms: int = 100
    recent_items_limit: int = 100
    page_fetch_timeout_seconds: float = 60.0
    item_timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "ItemSyncOptions":
        options = cls(
            item_page_size=settings.item_page_size,
            max_library_concurrency=settings.max_library_concurrency,
            item_concurrency=settings.item_concurrency,
            api_request_delay_ms=settings.api_request_delay_ms,
            recent_items_limit=settings.recent_items_limit,
            page_fetch_timeout_seconds=settings.page_fetch_timeout_seconds,
            item_timeout_seconds=settings.item_timeout_seconds,
        )
        return replace(options, **overrides) if overrides else options


class LibraryServerCache:
    """Process-scoped library id -> server id lookup with a time-to-live."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[int, float]] = {}

    def prime(self, library_id: str, server_id: int) -> None:
        self._entries[library_id] = (server_id, self._clock() + self._ttl)

    def invalidate(self, library_id: str | None = None) -> None:
        """Forget one library, or every library when no id is given."""

        if library_id is None:
            self._entries.clear()
        else:
            self._entries.pop(library_id, None)

    def peek(self, library_id: str) -> int | None:
        entry = self._entries.get(library_id)
        if entry is None:
            return None
        server_id, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[library_id]
            return None
        return server_id

    async def get_server_id(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        library_id: str,
    ) -> int:
        cached = self.peek(library_id)
        if cached is not None:
            return cached
        async with session_factory() as session:
            server_id = await session.scalar(
                select(Library.server_id).where(Library.id == library_id)
            )
        if server_id is None:
            raise LookupError(f"Library not found: {library_id}")
        self.prime(library_id, server_id)
        return server_id


def map_remote_item(
    payload: Mapping[str, Any], library_id: str, server_id: int
) -> dict[str, Any]:
    """Translate a raw remote item payload into an items-table row."""

    raw_id = payload.get("Id") if isinstance(payload, Mapping) else None
    try:
        remote = RemoteItem.model_validate(payload)
    except ValidationError as exc:
        raise ItemMappingError(
            str(raw_id) if raw_id else None,
            f"invalid payload ({exc.error_count()} validation errors)",
        ) from exc

    if not remote.id:
        raise ItemMappingError(None, "missing Id")
    if not remote.name:
        raise ItemMappingError(remote.id, "missing Name")
    if not remote.type:
        raise ItemMappingError(remote.id, "missing Type")

    try:
        date_created = parse_remote_datetime(remote.date_created)
        premiere_date = parse_remote_datetime(remote.premiere_date)
    except ValueError as exc:
        raise ItemMappingError(remote.id, f"invalid date: {exc}") from exc

    image_tags = remote.image_tags or {}
    return {
        "id": remote.id,
        "server_id": server_id,
        "library_id": library_id,
        "name": remote.name,
        "type": remote.type,
        "original_title": remote.original_title,
        "etag": remote.etag,
        "date_created": date_created,
        "container": remote.container,
        "sort_name": remote.sort_name,
        "premiere_date": premiere_date,
        "path": remote.path,
        "official_rating": remote.official_rating,
        "overview": remote.overview,
        "community_rating": remote.community_rating,
        "runtime_ticks": remote.runtime_ticks,
        "production_year": remote.production_year,
        "is_folder": remote.is_folder,
        "parent_id": remote.parent_id,
        "media_type": remote.media_type,
        "width": remote.width,
        "height": remote.height,
        "series_name": remote.series_name,
        "series_id": remote.series_id,
        "season_id": remote.season_id,
        "season_name": remote.season_name,
        "index_number": remote.index_number,
        "parent_index_number": remote.parent_index_number,
        "video_type": remote.video_type,
        "has_subtitles": remote.has_subtitles,
        "channel_id": remote.channel_id,
        "location_type": remote.location_type,
        "genres": remote.genres,
        "primary_image_aspect_ratio": remote.primary_image_aspect_ratio,
        "primary_image_tag": image_tags.get("Primary"),
        "series_primary_image_tag": remote.series_primary_image_tag,
        "primary_image_thumb_tag": image_tags.get("Thumb"),
        "primary_image_logo_tag": image_tags.get("Logo"),
        "parent_thumb_item_id": remote.parent_thumb_item_id,
        "parent_thumb_image_tag": remote.parent_thumb_image_tag,
        "parent_logo_item_id": remote.parent_logo_item_id,
        "parent_logo_image_tag": remote.parent_logo_image_tag,
        "backdrop_image_tags": remote.backdrop_image_tags,
        "parent_backdrop_item_id": remote.parent_backdrop_item_id,
        "parent_backdrop_image_tags": remote.parent_backdrop_image_tags,
        "image_blur_hashes": remote.image_blur_hashes,
        "image_tags": remote.image_tags,
        "can_delete": remote.can_delete,
        "can_download": remote.can_download,
        "play_access": remote.play_access,
        "is_hd": remote.is_hd,
        "provider_ids": remote.provider_ids,
        "tags": remote.tags,
        "series_studio": remote.series_studio,
        "raw_data": dict(payload),
    }


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _tracked_values(row: Mapping[str, Any]) -> dict[str, Any]:
    values = {field: row.get(field) for field in TRACKED_FIELDS}
    values["raw_data"] = row["raw_data"]
    values["updated_at"] = utcnow()
    return values


def upsert_items_statement(dialect_name: str, rows: Sequence[Mapping[str, Any]]):
    """Build an insert that updates the existing row when the id already exists."""

    dialect_insert = postgresql.insert if dialect_name == "postgresql" else sqlite.insert
    now = utcnow()
    values = [{**row, "created_at": now, "updated_at": now} for row in rows]
    statement = dialect_insert(Item).values(values)
    excluded = statement.excluded
    update_columns = {
        column: getattr(excluded, column)
        for column in values[0]
        if column not in ("id", "created_at")
    }
    return statement.on_conflict_do_update(
        index_elements=[Item.id], set_=update_columns
    )


@dataclass(slots=True)
class _LibraryOutcome:
    completed: bool
    error: str | None = None


class ItemSyncService:
    """Mirrors the remote catalog, one library at a time."""

    def __init__(
        self,
        settings: Settings,
        client: CatalogClient,
        session_factory: async_sessionmaker[AsyncSession],
        library_cache: LibraryServerCache | None = None,
    ):
        self._settings = settings
        self._client = client
        self._session_factory = session_factory
        self._library_cache = library_cache or LibraryServerCache(
            settings.library_cache_ttl_seconds
        )

    async def sync_items(
        self, server: Server, options: ItemSyncOptions | None = None
    ) -> SyncResult[ItemSyncData]:
        """Run a full paginated sync of every stored library of ``server``."""

        options = options or ItemSyncOptions.from_settings(self._settings)
        metrics = SyncMetricsTracker()
        errors: list[str] = []

        logger.info("Starting items sync for server %s", server.name)
        try:
            libraries = await self._load_libraries(server.id)
        except Exception as exc:
            logger.exception("Items sync failed for server %s", server.name)
            return create_sync_result(
                "error",
                self._item_data(metrics),
                metrics.finish(),
                error=_describe(exc),
            )
        logger.info("Found %s libraries to sync", len(libraries))

        library_limit = asyncio.Semaphore(options.max_library_concurrency)

        async def _run_library(library: Library) -> None:
            async with library_limit:
                logger.info("Starting sync for library: %s (%s)", library.name, library.id)
                outcome = await self._sync_library_items(
                    library, metrics, errors, options
                )
                if outcome.completed:
                    metrics.increment_libraries_processed()
                    logger.info("Completed sync for library: %s", library.name)
                else:
                    errors.append(f"Library {library.name}: {outcome.error}")

        await asyncio.gather(*(_run_library(library) for library in libraries))

        final_metrics = metrics.finish()
        data = self._item_data(metrics)
        logger.info(
            "Items sync completed for server %s: %s",
            server.name,
            data.model_dump(by_alias=True),
        )
        status = "partial" if errors else "success"
        return create_sync_result(status, data, final_metrics, errors=errors)

    async def _load_libraries(self, server_id: int) -> list[Library]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Library)
                .where(Library.server_id == server_id)
                .order_by(Library.name, Library.id)
            )
            libraries = list(result.scalars())
        for library in libraries:
            self._library_cache.prime(library.id, library.server_id)
        return libraries

    async def _sync_library_items(
        self,
        library: Library,
        metrics: SyncMetricsTracker,
        errors: list[str],
        options: ItemSyncOptions,
    ) -> _LibraryOutcome:
        item_limit = asyncio.Semaphore(options.item_concurrency)
        start_index = 0

        async def _guarded(payload: dict[str, Any]) -> None:
            async with item_limit:
                try:
                    await asyncio.wait_for(
                        self._process_item(payload, library.id, metrics),
                        timeout=options.item_timeout_seconds,
                    )
                except Exception as exc:
                    item_id = payload.get("Id", "<unknown>")
                    logger.exception("Error processing item %s", item_id)
                    metrics.increment_errors()
                    if isinstance(exc, (ItemMappingError, IdentityMigrationError)):
                        errors.append(str(exc))
                    else:
                        errors.append(f"Item {item_id}: {_describe(exc)}")

        while True:
            if start_index > 0 and options.api_request_delay_ms:
                await asyncio.sleep(options.api_request_delay_ms / 1000)

            logger.info(
                "Fetching items %s to %s for library %s",
                start_index,
                start_index + options.item_page_size,
                library.id,
            )
            try:
                metrics.increment_api_requests()
                page = await asyncio.wait_for(
                    self._client.fetch_items_page(
                        library.id, start_index, options.item_page_size
                    ),
                    timeout=options.page_fetch_timeout_seconds,
                )
            except Exception as exc:
                logger.error(
                    "Error fetching items page for library %s at offset %s: %s",
                    library.id,
                    start_index,
                    exc,
                )
                metrics.increment_errors()
                return _LibraryOutcome(
                    completed=False,
                    error=f"page fetch at offset {start_index} failed: "
                    f"{_describe(exc)}",
                )

            await asyncio.gather(*(_guarded(payload) for payload in page.items))

            start_index += len(page.items)
            logger.info(
                "Processed batch for library %s: %s/%s items",
                library.id,
                start_index,
                page.total_count,
            )
            if page.total_count is None:
                finished = len(page.items) < options.item_page_size
            else:
                finished = start_index >= page.total_count
            if not page.items or finished:
                return _LibraryOutcome(completed=True)

    async def _process_item(
        self,
        payload: dict[str, Any],
        library_id: str,
        metrics: SyncMetricsTracker,
    ) -> None:
        server_id = await self._library_cache.get_server_id(
            self._session_factory, library_id
        )
        row = map_remote_item(payload, library_id, server_id)

        async with self._session_factory() as session:
            stored = await session.get(Item, row["id"])
            kind = classify(row, stored)
            match = None
            if kind is ChangeKind.NEW:
                match = await find_potential_duplicate(
                    session, row, library_id, server_id
                )
            stale_tag = (
                kind is ChangeKind.UNCHANGED
                and stored is not None
                and stored.etag != row["etag"]
            )

        if kind is ChangeKind.UNCHANGED:
            if stale_tag:
                await self._refresh_version_tag(row)
            metrics.increment_items_unchanged()
            metrics.increment_items_processed()
            return

        if match is not None:
            # A failed migration leaves both rows untouched for the next pass.
            await IdentityMigration(match.item.id, row).apply(self._session_factory)
            metrics.increment_items_migrated()
            metrics.increment_items_updated()
        elif kind is ChangeKind.NEW:
            await self._upsert_items([row])
            metrics.increment_items_inserted()
        else:
            await self._update_tracked_fields(row)
            metrics.increment_items_updated()

        metrics.increment_database_operations()
        metrics.increment_items_processed()

    async def _upsert_items(self, rows: Sequence[Mapping[str, Any]]) -> None:
        if not rows:
            return
        async with self._session_factory() as session:
            dialect_name = session.get_bind().dialect.name
            await session.execute(upsert_items_statement(dialect_name, rows))
            await session.commit()

    async def _update_tracked_fields(self, row: Mapping[str, Any]) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Item)
                .where(Item.id == row["id"], Item.server_id == row["server_id"])
                .values(**_tracked_values(row))
            )
            await session.commit()

    async def _refresh_version_tag(self, row: Mapping[str, Any]) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Item)
                .where(Item.id == row["id"], Item.server_id == row["server_id"])
                .values(etag=row["etag"], raw_data=row["raw_data"])
            )
            await session.commit()

    @staticmethod
    def _item_data(metrics: SyncMetricsTracker) -> ItemSyncData:
        current = metrics.current
        return ItemSyncData(
            libraries_processed=current.libraries_processed,
            items_processed=current.items_processed,
            items_inserted=current.items_inserted,
            items_updated=current.items_updated,
            items_unchanged=current.items_unchanged,
        )

    async def sync_recently_added_items(
        self, server: Server, limit: int | None = None
    ) -> SyncResult[ItemSyncData]:
        """Refresh only the newest items of each library, without paginating.

        Libraries that disappeared from the server are reported and skipped,
        never deleted: they still anchor historical statistics.
        """

        limit = limit or self._settings.recent_items_limit
        metrics = SyncMetricsTracker()
        errors: list[str] = []

        logger.info(
            "Starting recently added items sync for server %s (limit: %s)",
            server.name,
            limit,
        )
        try:
            metrics.increment_api_requests()
            remote_libraries = await self._client.fetch_libraries()
            remote_ids = {library.id for library in remote_libraries}
            stored_libraries = await self._load_libraries(server.id)
        except Exception as exc:
            logger.exception(
                "Recently added items sync failed for server %s", server.name
            )
            return create_sync_result(
                "error",
                ItemSyncData(items_processed=metrics.current.items_processed),
                metrics.finish(),
                error=_describe(exc),
            )

        valid_libraries = [lib for lib in stored_libraries if lib.id in remote_ids]
        removed_libraries = [
            lib for lib in stored_libraries if lib.id not in remote_ids
        ]
        if removed_libraries:
            logger.info(
                "Libraries no longer on server (not automatically removed): %s",
                ", ".join(f"{lib.name} ({lib.id})" for lib in removed_libraries),
            )
        logger.info(
            "Found %s valid libraries to sync (%s removed libraries skipped)",
            len(valid_libraries),
            len(removed_libraries),
        )

        mapped: dict[str, dict[str, Any]] = {}
        for library in valid_libraries:
            try:
                metrics.increment_api_requests()
                payloads = await asyncio.wait_for(
                    self._client.fetch_recent_items(library.id, limit),
                    timeout=self._settings.page_fetch_timeout_seconds,
                )
            except Exception as exc:
                logger.error(
                    "API error when fetching items from library %s: %s",
                    library.name,
                    exc,
                )
                metrics.increment_errors()
                errors.append(f"Library {library.name}: {_describe(exc)}")
                continue

            metrics.increment_items_processed(len(payloads))
            logger.info(
                "Retrieved %s recently added items from library %s",
                len(payloads),
                library.name,
            )
            for payload in payloads:
                try:
                    row = map_remote_item(payload, library.id, server.id)
                except ItemMappingError as exc:
                    logger.error("Error mapping item: %s", exc)
                    metrics.increment_errors()
                    errors.append(str(exc))
                    continue
                mapped[row["id"]] = row

        inserted = updated = unchanged = 0
        if mapped:
            metrics.increment_database_operations()
            inserted, updated, unchanged = await self._apply_recent_items(
                list(mapped.values()), server.id, metrics, errors
            )
        else:
            logger.info("No recently added items found across libraries")

        final_metrics = metrics.finish()
        data = ItemSyncData(
            libraries_processed=len(valid_libraries),
            items_processed=final_metrics.items_processed,
            items_inserted=inserted,
            items_updated=updated,
            items_unchanged=unchanged,
        )
        logger.info(
            "Recently added items sync completed for server %s: %s",
            server.name,
            data.model_dump(by_alias=True),
        )
        status = "partial" if errors else "success"
        return create_sync_result(status, data, final_metrics, errors=errors)

    async def _apply_recent_items(
        self,
        rows: list[dict[str, Any]],
        server_id: int,
        metrics: SyncMetricsTracker,
        errors: list[str],
    ) -> tuple[int, int, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Item).where(
                    Item.id.in_([row["id"] for row in rows]),
                    Item.server_id == server_id,
                )
            )
            existing = {item.id: item for item in result.scalars()}

            to_insert: list[dict[str, Any]] = []
            to_migrate: list[IdentityMigration] = []
            to_update: list[dict[str, Any]] = []
            unchanged = 0
            # A stored item can be re-keyed to at most one new id per batch.
            claimed: set[str] = set()
            for row in rows:
                stored = existing.get(row["id"])
                if stored is None:
                    match = await find_potential_duplicate(
                        session, row, row["library_id"], server_id
                    )
                    if match is None or match.item.id in claimed:
                        to_insert.append(row)
                    else:
                        claimed.add(match.item.id)
                        to_migrate.append(IdentityMigration(match.item.id, row))
                elif has_fields_changed(stored, row) or has_image_fields_changed(
                    stored, row
                ):
                    to_update.append(row)
                else:
                    unchanged += 1

        inserted = 0
        if to_insert:
            try:
                await self._upsert_items(to_insert)
                inserted = len(to_insert)
                logger.info("Inserted %s new items", inserted)
            except Exception as exc:
                logger.exception("Error inserting items")
                metrics.increment_errors()
                errors.append(
                    f"Insert of {len(to_insert)} items failed: {_describe(exc)}"
                )

        updated = 0
        for migration in to_migrate:
            try:
                await migration.apply(self._session_factory)
            except IdentityMigrationError as exc:
                metrics.increment_errors()
                errors.append(str(exc))
                continue
            metrics.increment_items_migrated()
            updated += 1
        for row in to_update:
            try:
                await self._update_tracked_fields(row)
            except Exception as exc:
                logger.error("Error updating item %s: %s", row["id"], exc)
                metrics.increment_errors()
                errors.append(f"Item {row['id']}: {_describe(exc)}")
                continue
            updated += 1
        if updated:
            logger.info("Updated %s items", updated)

        metrics.increment_items_inserted(inserted)
        metrics.increment_items_updated(updated)
        metrics.increment_items_unchanged(unchanged)
        return inserted, updated, unchanged
