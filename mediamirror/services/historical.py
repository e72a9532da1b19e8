"""Backfill session records from the stored activity log."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import Activity, JobResult, Server
from ..errors import HistoricalSessionError
from ..models import ErrorDetail, HistoricalSessionResult
from ..utils import utcnow
from .activity_heuristics import PLAYBACK_KEYWORDS
from .activity_sync import ActivitySyncer, ActivitySyncOptions
from .sessions import SessionReconstructor, group_activities

logger = logging.getLogger(__name__)

JOB_NAME = "process-historical-sessions"


@dataclass(frozen=True, slots=True)
class HistoricalSessionOptions:
    """Date range and batch size for one backfill run.

    Unset values fall back to the configured start date, today and the
    configured batch size.
    """

    start_date: date | None = None
    end_date: date | None = None
    batch_size: int | None = None


class HistoricalSessionJob:
    """Refreshes the activity log, then rebuilds sessions from it in batches."""

    def __init__(
        self,
        settings: Settings,
        activity_syncer: ActivitySyncer,
        session_factory: async_sessionmaker[AsyncSession],
        reconstructor: SessionReconstructor | None = None,
    ):
        self._settings = settings
        self._activity_syncer = activity_syncer
        self._session_factory = session_factory
        self._reconstructor = reconstructor or SessionReconstructor(session_factory)

    def activity_sync_options(self) -> ActivitySyncOptions:
        return ActivitySyncOptions(
            page_size=self._settings.historical_activity_page_size,
            max_pages=self._settings.historical_activity_max_pages,
            concurrency=self._settings.historical_activity_concurrency,
            api_request_delay_ms=self._settings.historical_activity_delay_ms,
            intelligent=False,
        )

    async def run(
        self,
        job_id: str,
        server_id: int,
        options: HistoricalSessionOptions | None = None,
    ) -> HistoricalSessionResult:
        options = options or HistoricalSessionOptions()
        start_date = options.start_date or self._settings.historical_start_date
        end_date = options.end_date or utcnow().date()
        batch_size = options.batch_size or self._settings.historical_batch_size

        started = time.monotonic()
        stats = HistoricalSessionResult()
        logger.info(
            "Starting historical sessions job for server %s (%s to %s, batch size %s)",
            server_id,
            start_date,
            end_date,
            batch_size,
        )

        try:
            server = await self._load_server(server_id)
            await self._sync_activities(server, stats)

            offset = 0
            while True:
                batch = await self._fetch_playback_activities(
                    server_id, start_date, end_date, batch_size, offset
                )
                if not batch:
                    break

                logger.info(
                    "Processing batch %s: %s activities (offset: %s)",
                    offset // batch_size + 1,
                    len(batch),
                    offset,
                )
                await self._process_batch(server_id, batch, stats)

                stats.activities_processed += len(batch)
                offset += batch_size
                if len(batch) < batch_size:
                    break
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            elapsed = self._elapsed_ms(started)
            logger.error(
                "Historical sessions job failed after %.2fs: %s",
                elapsed / 1000,
                message,
            )
            await self._record_job_result(
                job_id,
                "failed",
                {**self._dump(stats), "finalError": message},
                elapsed,
                error=message,
            )
            raise HistoricalSessionError(
                f"Historical sessions processing failed: {message}"
            ) from exc

        elapsed = self._elapsed_ms(started)
        await self._record_job_result(job_id, "completed", self._dump(stats), elapsed)
        logger.info(
            "Historical sessions job completed in %.2fs: %s",
            elapsed / 1000,
            self._dump(stats),
        )
        if stats.errors:
            for detail in stats.error_details[:5]:
                logger.warning("Historical sessions error: %s", detail.error)
        return stats

    async def _load_server(self, server_id: int) -> Server:
        async with self._session_factory() as session:
            server = await session.get(Server, server_id)
        if server is None:
            raise HistoricalSessionError(f"Server {server_id} not found")
        return server

    async def _sync_activities(
        self, server: Server, stats: HistoricalSessionResult
    ) -> None:
        sync_options = self.activity_sync_options()
        logger.info("Starting activity sync with options: %s", sync_options)
        result = await self._activity_syncer.sync_activities(server, sync_options)

        if result.status == "error":
            message = f"Activity sync failed: {result.error or 'Unknown error'}"
            stats.errors += 1
            stats.error_details.append(ErrorDetail(error=message, timestamp=utcnow()))
            raise HistoricalSessionError(message)

        stats.activities_synced = result.data.activities_processed
        logger.info(
            "Activity sync finished with status %s: %s",
            result.status,
            result.data.model_dump(by_alias=True),
        )
        if result.status == "partial":
            logger.warning(
                "Activity sync completed with %s errors: %s",
                len(result.errors),
                result.errors[:3],
            )

    async def _fetch_playback_activities(
        self,
        server_id: int,
        start_date: date,
        end_date: date,
        limit: int,
        offset: int,
    ) -> list[Activity]:
        range_start = datetime.combine(start_date, datetime.min.time())
        range_end = datetime.combine(end_date + timedelta(days=1), datetime.min.time())
        async with self._session_factory() as session:
            result = await session.execute(
                select(Activity)
                .where(
                    Activity.server_id == server_id,
                    Activity.date >= range_start,
                    Activity.date < range_end,
                    or_(
                        *(
                            Activity.name.ilike(f"%{keyword}%")
                            for keyword in PLAYBACK_KEYWORDS
                        )
                    ),
                )
                .order_by(Activity.date, Activity.id)
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars())

    async def _process_batch(
        self,
        server_id: int,
        batch: list[Activity],
        stats: HistoricalSessionResult,
    ) -> None:
        candidates = group_activities(batch)
        logger.info("Found %s session groups in this batch", len(candidates))

        for candidate in candidates:
            try:
                data = await self._reconstructor.reconstruct(candidate)
                if data is None:
                    continue
                outcome = await self._reconstructor.persist(server_id, data)
            except Exception as exc:
                logger.exception(
                    "Error creating session for user %s, item %s",
                    candidate.user_id,
                    candidate.item_id,
                )
                first_event = candidate.events[0] if candidate.events else None
                stats.errors += 1
                stats.error_details.append(
                    ErrorDetail(
                        activity_id=str(first_event.id) if first_event else None,
                        error=f"Session creation failed: {exc}",
                        timestamp=utcnow(),
                    )
                )
                continue

            if outcome.created:
                stats.sessions_created += 1
            elif outcome.duplicate:
                stats.duplicates_found += 1
                stats.sessions_skipped += 1

    async def _record_job_result(
        self,
        job_id: str,
        status: str,
        result: dict[str, Any],
        processing_time: int,
        error: str | None = None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                session.add(
                    JobResult(
                        job_id=job_id,
                        job_name=JOB_NAME,
                        status=status,
                        result=result,
                        error=error,
                        processing_time=processing_time,
                    )
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record %s job result for %s", status, job_id)

    @staticmethod
    def _dump(stats: HistoricalSessionResult) -> dict[str, Any]:
        return stats.model_dump(mode="json", by_alias=True)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
