"""Tests for the activity-log mirror."""

from __future__ import annotations

import asyncio
from typing import Any

from sqlalchemy import func, select

from mediamirror.database import Database
from mediamirror.db_models import Activity, Server
from mediamirror.errors import JellyfinAPIError
from mediamirror.models import ActivityPage, RemoteActivity
from mediamirror.services.activity_sync import ActivitySyncOptions, ActivitySyncService


def entry(entry_id: int, name: str = "alice is playing Heat", **overrides: Any) -> RemoteActivity:
    payload: dict[str, Any] = {
        "Id": entry_id,
        "Name": name,
        "Type": "VideoPlayback",
        "Date": f"2025-05-01T20:{entry_id:02d}:00.0000000Z",
        "Severity": "Information",
        "UserId": "u1",
        "ItemId": "m1",
    }
    payload.update(overrides)
    return RemoteActivity.model_validate(payload)


class FakeActivityLog:
    def __init__(self, entries: list[RemoteActivity], failing_offsets: set[int] | None = None):
        self.entries = entries
        self.failing_offsets = failing_offsets or set()
        self.offsets: list[int] = []

    async def fetch_activity_page(self, offset: int, limit: int) -> ActivityPage:
        self.offsets.append(offset)
        if offset in self.failing_offsets:
            raise JellyfinAPIError("activity log unavailable", status_code=502)
        return ActivityPage(
            items=self.entries[offset : offset + limit], total_count=len(self.entries)
        )


FULL_SYNC = ActivitySyncOptions(
    page_size=2, max_pages=50, concurrency=2, api_request_delay_ms=0, intelligent=False
)


async def _setup(tmp_path, name: str) -> tuple[Database, Server]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / name}")
    await database.create_all()
    async with database.session_factory() as session:
        server = Server(id=1, name="Home", url="http://jellyfin.local", api_key="key")
        session.add(server)
        await session.commit()
    return database, server


async def _count(database: Database) -> int:
    async with database.session_factory() as session:
        return await session.scalar(select(func.count()).select_from(Activity))


def test_full_sync_walks_every_page(tmp_path) -> None:
    async def runner() -> None:
        database, server = await _setup(tmp_path, "full.db")
        log = FakeActivityLog([entry(index) for index in range(1, 6)])
        service = ActivitySyncService(log, database.session_factory)

        first = await service.sync_activities(server, FULL_SYNC)
        second = await service.sync_activities(server, FULL_SYNC)

        assert first.status == "success"
        assert first.data.pages_fetched == 3
        assert first.data.activities_inserted == 5
        assert second.data.activities_inserted == 0
        assert second.data.activities_updated == 5
        assert await _count(database) == 5

        async with database.session_factory() as session:
            stored = await session.get(Activity, "3")
        assert stored.user_id == "u1"
        assert stored.server_id == 1

        await database.dispose()

    asyncio.run(runner())


def test_intelligent_sync_stops_at_known_entries(tmp_path) -> None:
    async def runner() -> None:
        database, server = await _setup(tmp_path, "intelligent.db")
        log = FakeActivityLog([entry(index) for index in range(1, 6)])
        service = ActivitySyncService(log, database.session_factory)
        await service.sync_activities(server, FULL_SYNC)

        log.entries.insert(0, entry(9, "bob is playing Ronin"))
        log.offsets.clear()
        result = await service.sync_activities(
            server,
            ActivitySyncOptions(
                page_size=2, max_pages=50, concurrency=1, api_request_delay_ms=0
            ),
        )

        assert result.data.activities_inserted == 1
        assert result.data.pages_fetched == 2
        assert log.offsets == [0, 2]
        assert await _count(database) == 6

        await database.dispose()

    asyncio.run(runner())


def test_page_failure_yields_partial(tmp_path) -> None:
    async def runner() -> None:
        database, server = await _setup(tmp_path, "partial.db")
        log = FakeActivityLog(
            [entry(index) for index in range(1, 6)], failing_offsets={2}
        )
        result = await ActivitySyncService(log, database.session_factory).sync_activities(
            server, FULL_SYNC
        )

        assert result.status == "partial"
        assert result.data.activities_inserted == 2
        assert len(result.errors) == 1
        assert await _count(database) == 2

        await database.dispose()

    asyncio.run(runner())


def test_unreachable_log_is_an_error(tmp_path) -> None:
    async def runner() -> None:
        database, server = await _setup(tmp_path, "error.db")
        log = FakeActivityLog([entry(1)], failing_offsets={0})
        result = await ActivitySyncService(log, database.session_factory).sync_activities(
            server, FULL_SYNC
        )

        assert result.status == "error"
        assert "activity log unavailable" in result.error
        assert result.data.pages_fetched == 0

        await database.dispose()

    asyncio.run(runner())


def test_max_pages_bounds_the_walk(tmp_path) -> None:
    async def runner() -> None:
        database, server = await _setup(tmp_path, "bounded.db")
        log = FakeActivityLog([entry(index) for index in range(1, 11)])
        options = ActivitySyncOptions(
            page_size=2, max_pages=3, concurrency=2, api_request_delay_ms=0, intelligent=False
        )
        result = await ActivitySyncService(log, database.session_factory).sync_activities(
            server, options
        )

        assert result.data.pages_fetched == 3
        assert sorted(log.offsets) == [0, 2, 4]
        assert await _count(database) == 6

        await database.dispose()

    asyncio.run(runner())
