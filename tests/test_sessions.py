"""Tests for activity grouping and historical session reconstruction."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from mediamirror.database import Database
from mediamirror.db_models import Item, Library, Server, Session, User
from mediamirror.services.sessions import (
    DUPLICATE_WINDOW,
    SessionCandidate,
    SessionReconstructor,
    estimate_completion,
    estimate_play_duration,
    group_activities,
)

TWO_HOURS_TICKS = 7_200 * 10_000_000


def event(
    event_id: int,
    name: str,
    when: datetime,
    user_id: str | None = "u1",
    item_id: str | None = "m1",
) -> SimpleNamespace:
    return SimpleNamespace(
        id=str(event_id), name=name, date=when, user_id=user_id, item_id=item_id
    )


def test_grouping_buckets_by_user_item_and_hour() -> None:
    base = datetime(2025, 5, 1, 20, 5)
    events = [
        event(1, "alice is playing Heat", base),
        event(2, "Heat paused", base + timedelta(minutes=20)),
        event(3, "bob is playing Heat", base, user_id="u2"),
        event(4, "alice is playing Heat", base + timedelta(hours=1)),
        event(5, "alice is playing Ronin", base, item_id="m2"),
        event(6, "system event", base, user_id=None),
        event(7, "system event", base, item_id=None),
    ]

    candidates = group_activities(events)

    assert [(c.user_id, c.item_id, [e.id for e in c.events]) for c in candidates] == [
        ("u1", "m1", ["1", "2"]),
        ("u2", "m1", ["3"]),
        ("u1", "m1", ["4"]),
        ("u1", "m2", ["5"]),
    ]


def test_grouping_splits_across_hour_boundary() -> None:
    events = [
        event(1, "playing", datetime(2025, 5, 1, 20, 55)),
        event(2, "stopped", datetime(2025, 5, 1, 21, 5)),
    ]

    assert len(group_activities(events)) == 2


def test_play_duration_has_one_minute_floor() -> None:
    start = datetime(2025, 5, 1, 20, 0)

    assert estimate_play_duration(start, start) == 60
    assert estimate_play_duration(start, start + timedelta(seconds=10)) == 60
    assert estimate_play_duration(start, start + timedelta(seconds=30)) == 60
    assert estimate_play_duration(start, start + timedelta(hours=1)) == 2_880


def test_completion_uses_runtime_when_known() -> None:
    assert estimate_completion(7_000, TWO_HOURS_TICKS, False)[0] is True
    assert estimate_completion(6_984, TWO_HOURS_TICKS, False) == (True, pytest.approx(97.0))
    completed, percent = estimate_completion(2_880, TWO_HOURS_TICKS, False)
    assert completed is False
    assert percent == pytest.approx(40.0)
    assert estimate_completion(2_880, TWO_HOURS_TICKS, True) == (True, pytest.approx(40.0))
    assert estimate_completion(20_000, TWO_HOURS_TICKS, False) == (True, 100.0)


def test_completion_without_runtime_uses_event_names() -> None:
    assert estimate_completion(600, None, True) == (True, 95.0)
    assert estimate_completion(600, None, False) == (False, 50.0)
    assert estimate_completion(600, 0, False) == (False, 50.0)


async def _setup(tmp_path, name: str) -> Database:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / name}")
    await database.create_all()
    async with database.session_factory() as session:
        session.add(Server(id=1, name="Home", url="http://jellyfin.local", api_key="key"))
        session.add(Library(id="lib-1", name="Movies", type="movies", server_id=1))
        session.add(User(id="u1", name="alice", server_id=1))
        session.add(
            Item(
                id="m1",
                server_id=1,
                library_id="lib-1",
                name="Heat",
                type="Movie",
                runtime_ticks=TWO_HOURS_TICKS,
                raw_data={"Id": "m1"},
            )
        )
        await session.commit()
    return database


def test_reconstruct_marks_long_viewing_complete(tmp_path) -> None:
    """A 145.5 minute span of a two hour film is 97% watched."""

    async def runner() -> None:
        database = await _setup(tmp_path, "reconstruct.db")
        start = datetime(2025, 5, 1, 20, 0)
        candidate = SessionCandidate(
            user_id="u1",
            item_id="m1",
            events=[
                event(2, "alice is playing Heat", start + timedelta(seconds=8_730)),
                event(1, "alice is playing Heat", start),
            ],
        )

        data = await SessionReconstructor(database.session_factory).reconstruct(candidate)

        assert data is not None
        assert data.start_time == start
        assert data.end_time == start + timedelta(seconds=8_730)
        assert data.play_duration == 6_984
        assert data.percent_complete == pytest.approx(97.0)
        assert data.completed is True
        assert data.user_name == "alice"
        assert data.item_name == "Heat"
        assert data.activity_ids == ["1", "2"]

        await database.dispose()

    asyncio.run(runner())


def test_reconstruct_skips_unknown_item_or_user(tmp_path) -> None:
    async def runner() -> None:
        database = await _setup(tmp_path, "missing.db")
        reconstructor = SessionReconstructor(database.session_factory)
        when = datetime(2025, 5, 1, 20, 0)

        missing_item = SessionCandidate("u1", "gone", [event(1, "playing", when, item_id="gone")])
        missing_user = SessionCandidate("ghost", "m1", [event(2, "playing", when, user_id="ghost")])

        assert await reconstructor.reconstruct(missing_item) is None
        assert await reconstructor.reconstruct(missing_user) is None
        assert await reconstructor.reconstruct(SessionCandidate("u1", "m1")) is None

        await database.dispose()

    asyncio.run(runner())


def test_persist_skips_sessions_within_the_duplicate_window(tmp_path) -> None:
    async def runner() -> None:
        database = await _setup(tmp_path, "persist.db")
        reconstructor = SessionReconstructor(database.session_factory)
        start = datetime(2025, 5, 1, 20, 0)
        data = await reconstructor.reconstruct(
            SessionCandidate("u1", "m1", [event(1, "Playback stopped", start)])
        )
        assert data is not None

        first = await reconstructor.persist(1, data)
        again = await reconstructor.persist(1, data)
        data.start_time = start + DUPLICATE_WINDOW
        inside = await reconstructor.persist(1, data)
        data.start_time = start + DUPLICATE_WINDOW + timedelta(minutes=1)
        outside = await reconstructor.persist(1, data)

        async with database.session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(Session))
            stored = (
                await session.scalars(select(Session).order_by(Session.start_time))
            ).first()

        assert (first.created, first.duplicate) == (True, False)
        assert (again.created, again.duplicate) == (False, True)
        assert inside.duplicate is True
        assert outside.created is True
        assert count == 2
        assert stored.source == "historical_import"
        assert stored.device_name == "Historical Import"
        assert stored.client_name == "Historical Import"
        assert stored.play_method == "Unknown"
        assert stored.completed is True
        assert stored.raw_data["source"] == "historical_import"
        assert stored.raw_data["originalActivities"]["itemId"] == "m1"

        await database.dispose()

    asyncio.run(runner())
