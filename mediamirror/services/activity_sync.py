"""Mirror the remote activity log into the activities table."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Activity, Server
from ..models import ActivityPage, ActivitySyncData, RemoteActivity, SyncResult
from ..utils import utcnow
from .metrics import SyncMetricsTracker, create_sync_result

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActivitySyncOptions:
    """Paging knobs for an activity-log refresh.

    ``intelligent`` stops at the first page that holds no unseen entries;
    a full sync walks the log until it runs out or ``max_pages`` is hit.
    """

    page_size: int = 100
    max_pages: int = 1000
    concurrency: int = 1
    api_request_delay_ms: int = 100
    intelligent: bool = True


class ActivityLogClient(Protocol):
    async def fetch_activity_page(self, offset: int, limit: int) -> ActivityPage: ...


class ActivitySyncer(Protocol):
    """Anything able to refresh the stored activity log of a server."""

    async def sync_activities(
        self, server: Server, options: ActivitySyncOptions
    ) -> SyncResult[ActivitySyncData]: ...


def upsert_activities_statement(
    dialect_name: str, server_id: int, entries: Sequence[RemoteActivity]
):
    dialect_insert = postgresql.insert if dialect_name == "postgresql" else sqlite.insert
    now = utcnow()
    statement = dialect_insert(Activity).values(
        [
            {
                "id": entry.id,
                "name": entry.name,
                "short_overview": entry.short_overview,
                "type": entry.type,
                "date": entry.date,
                "severity": entry.severity,
                "server_id": server_id,
                "user_id": entry.user_id,
                "item_id": entry.item_id,
                "created_at": now,
            }
            for entry in entries
        ]
    )
    excluded = statement.excluded
    return statement.on_conflict_do_update(
        index_elements=[Activity.id],
        set_={
            "name": excluded.name,
            "short_overview": excluded.short_overview,
            "type": excluded.type,
            "date": excluded.date,
            "severity": excluded.severity,
            "user_id": excluded.user_id,
            "item_id": excluded.item_id,
        },
    )


class ActivitySyncService:
    """Pages the remote activity log and upserts every entry."""

    def __init__(
        self,
        client: ActivityLogClient,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._client = client
        self._session_factory = session_factory

    async def sync_activities(
        self, server: Server, options: ActivitySyncOptions | None = None
    ) -> SyncResult[ActivitySyncData]:
        options = options or ActivitySyncOptions()
        metrics = SyncMetricsTracker()
        data = ActivitySyncData()
        errors: list[str] = []
        concurrency = max(1, options.concurrency)

        logger.info(
            "Starting activity sync for server %s (page size %s, max pages %s)",
            server.name,
            options.page_size,
            options.max_pages,
        )

        page_index = 0
        finished = False
        while not finished and page_index < options.max_pages:
            if page_index > 0 and options.api_request_delay_ms:
                await asyncio.sleep(options.api_request_delay_ms / 1000)

            last_page = min(page_index + concurrency, options.max_pages)
            wave = list(range(page_index, last_page))
            metrics.increment_api_requests(len(wave))
            results = await asyncio.gather(
                *(
                    self._client.fetch_activity_page(
                        index * options.page_size, options.page_size
                    )
                    for index in wave
                ),
                return_exceptions=True,
            )

            for index, result in zip(wave, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.error(
                        "Error fetching activity page %s for server %s: %s",
                        index,
                        server.name,
                        result,
                    )
                    metrics.increment_errors()
                    errors.append(f"Activity page {index}: {result}")
                    finished = True
                    break

                data.pages_fetched += 1
                if result.items:
                    inserted = await self._store_page(server.id, result.items)
                    metrics.increment_database_operations()
                    data.activities_processed += len(result.items)
                    data.activities_inserted += inserted
                    data.activities_updated += len(result.items) - inserted
                    if options.intelligent and inserted == 0:
                        logger.info("No new activities on page %s, stopping", index)
                        finished = True
                        break

                fetched_through = index * options.page_size + len(result.items)
                if len(result.items) < options.page_size or (
                    result.total_count is not None
                    and fetched_through >= result.total_count
                ):
                    finished = True
                    break

            page_index += len(wave)

        final_metrics = metrics.finish()
        logger.info(
            "Activity sync completed for server %s: %s",
            server.name,
            data.model_dump(by_alias=True),
        )
        if errors and data.pages_fetched == 0:
            return create_sync_result(
                "error", data, final_metrics, error=errors[0], errors=errors
            )
        status = "partial" if errors else "success"
        return create_sync_result(status, data, final_metrics, errors=errors)

    async def _store_page(self, server_id: int, entries: Sequence[RemoteActivity]) -> int:
        """Upsert one page of entries and return how many were not stored before."""

        unique = list({entry.id: entry for entry in entries}.values())
        async with self._session_factory() as session:
            known = set(
                await session.scalars(
                    select(Activity.id).where(
                        Activity.id.in_([entry.id for entry in unique])
                    )
                )
            )
            dialect_name = session.get_bind().dialect.name
            await session.execute(
                upsert_activities_statement(dialect_name, server_id, unique)
            )
            await session.commit()
        return len(unique) - len(known)
