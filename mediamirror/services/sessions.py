"""Rebuild viewing sessions from activity-log events.

The activity log records discrete events (started, paused, stopped) but no
session records. Events for the same user and item are bucketed by wall-clock
hour and each bucket is turned into one estimated session. Sessions that span
an hour boundary are split into two candidates; that approximation is
accepted.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import SESSION_SOURCE_HISTORICAL, Item, Session, User
from ..utils import epoch_seconds, ticks_to_seconds
from .activity_heuristics import has_completion_event

logger = logging.getLogger(__name__)

BUCKET_SECONDS = 3600
DUPLICATE_WINDOW = timedelta(minutes=30)
MIN_PLAY_DURATION_SECONDS = 60
WATCH_TIME_RATIO = 0.8
COMPLETION_PERCENT_THRESHOLD = 90
HISTORICAL_DEVICE_NAME = "Historical Import"
UNKNOWN_PLAY_METHOD = "Unknown"


class ActivityEvent(Protocol):
    id: Any
    name: str
    date: datetime
    user_id: str | None
    item_id: str | None


@dataclass(slots=True)
class SessionCandidate:
    """Events judged to belong to one viewing of one item by one user."""

    user_id: str
    item_id: str
    events: list[ActivityEvent] = field(default_factory=list)


def group_activities(events: Iterable[ActivityEvent]) -> list[SessionCandidate]:
    """Bucket events by ``(user, item, hour)``; events without both ids are dropped."""

    buckets: dict[tuple[str, str, int], SessionCandidate] = {}
    for event in events:
        if not event.user_id or not event.item_id:
            continue
        hour = math.floor(epoch_seconds(event.date) / BUCKET_SECONDS)
        key = (event.user_id, event.item_id, hour)
        candidate = buckets.get(key)
        if candidate is None:
            candidate = SessionCandidate(user_id=event.user_id, item_id=event.item_id)
            buckets[key] = candidate
        candidate.events.append(event)
    return list(buckets.values())


@dataclass(slots=True)
class HistoricalSession:
    """An estimated session reconstructed from a candidate's events."""

    user_id: str
    user_name: str
    item_id: str
    item_name: str
    start_time: datetime
    end_time: datetime
    play_duration: int
    completed: bool
    percent_complete: float
    series_id: str | None = None
    series_name: str | None = None
    season_id: str | None = None
    activity_ids: list[str] = field(default_factory=list)

    def to_raw(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "itemId": self.item_id,
            "itemName": self.item_name,
            "seriesId": self.series_id,
            "seriesName": self.series_name,
            "seasonId": self.season_id,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "playDuration": self.play_duration,
            "completed": self.completed,
            "percentComplete": self.percent_complete,
            "activityIds": list(self.activity_ids),
        }


@dataclass(frozen=True, slots=True)
class PersistOutcome:
    created: bool
    duplicate: bool


def estimate_play_duration(start_time: datetime, end_time: datetime) -> int:
    """Assume 80% of the span was spent watching, with a one minute floor."""

    elapsed = math.floor((end_time - start_time).total_seconds())
    return max(MIN_PLAY_DURATION_SECONDS, math.floor(elapsed * WATCH_TIME_RATIO))


def estimate_completion(
    play_duration: int, runtime_ticks: int | None, completion_event: bool
) -> tuple[bool, float]:
    """Return ``(completed, percent_complete)`` for an estimated session."""

    runtime_seconds = ticks_to_seconds(runtime_ticks) if runtime_ticks else None
    if runtime_seconds:
        percent = min(100.0, play_duration / runtime_seconds * 100)
        return percent > COMPLETION_PERCENT_THRESHOLD or completion_event, percent
    if completion_event:
        return True, 95.0
    return False, 50.0


class SessionReconstructor:
    """Turns session candidates into stored historical sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def reconstruct(self, candidate: SessionCandidate) -> HistoricalSession | None:
        if not candidate.events:
            return None

        events = sorted(candidate.events, key=lambda event: event.date)
        first, last = events[0], events[-1]

        async with self._session_factory() as session:
            item = await session.get(Item, candidate.item_id)
            if item is None:
                logger.warning(
                    'Item %s not found for activity "%s", skipping session',
                    candidate.item_id,
                    first.name,
                )
                return None
            user = await session.get(User, candidate.user_id)
            if user is None:
                logger.warning("User %s not found, skipping session", candidate.user_id)
                return None

        play_duration = estimate_play_duration(first.date, last.date)
        completed, percent = estimate_completion(
            play_duration, item.runtime_ticks, has_completion_event(events)
        )
        return HistoricalSession(
            user_id=user.id,
            user_name=user.name,
            item_id=item.id,
            item_name=item.name or "Unknown",
            series_id=item.series_id,
            series_name=item.series_name,
            season_id=item.season_id,
            start_time=first.date,
            end_time=last.date,
            play_duration=play_duration,
            completed=completed,
            percent_complete=percent,
            activity_ids=[str(event.id) for event in events],
        )

    async def persist(self, server_id: int, data: HistoricalSession) -> PersistOutcome:
        """Store ``data`` unless a session already starts within the window."""

        async with self._session_factory() as session:
            existing = await session.scalar(
                select(Session.id)
                .where(
                    Session.server_id == server_id,
                    Session.user_id == data.user_id,
                    Session.item_id == data.item_id,
                    Session.start_time >= data.start_time - DUPLICATE_WINDOW,
                    Session.start_time <= data.start_time + DUPLICATE_WINDOW,
                )
                .limit(1)
            )
            if existing is not None:
                logger.debug(
                    "Duplicate session found for %s - %s at %s, skipping",
                    data.user_name,
                    data.item_name,
                    data.start_time,
                )
                return PersistOutcome(created=False, duplicate=True)

            session.add(
                Session(
                    id=str(uuid.uuid4()),
                    server_id=server_id,
                    user_id=data.user_id,
                    item_id=data.item_id,
                    user_name=data.user_name,
                    item_name=data.item_name,
                    series_id=data.series_id,
                    series_name=data.series_name,
                    season_id=data.season_id,
                    device_name=HISTORICAL_DEVICE_NAME,
                    client_name=HISTORICAL_DEVICE_NAME,
                    play_method=UNKNOWN_PLAY_METHOD,
                    start_time=data.start_time,
                    end_time=data.end_time,
                    last_activity_date=data.end_time,
                    play_duration=data.play_duration,
                    percent_complete=data.percent_complete,
                    completed=data.completed,
                    is_paused=False,
                    is_active=False,
                    is_transcoded=False,
                    source=SESSION_SOURCE_HISTORICAL,
                    raw_data={
                        "source": SESSION_SOURCE_HISTORICAL,
                        "originalActivities": data.to_raw(),
                    },
                )
            )
            await session.commit()

        logger.info(
            "Created historical session for %s - %s at %s",
            data.user_name,
            data.item_name,
            data.start_time,
        )
        return PersistOutcome(created=True, duplicate=False)
