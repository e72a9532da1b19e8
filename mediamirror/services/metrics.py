"""Counters and result envelopes shared by the sync services."""

from __future__ import annotations

from typing import TypeVar

from ..models import SyncMetrics, SyncResult, SyncStatus
from ..utils import utcnow

DataT = TypeVar("DataT")


class SyncMetricsTracker:
    """Accumulates counters for a single sync run.

    Workers share one tracker on the event loop; increments never await, so
    no locking is needed.
    """

    def __init__(self) -> None:
        self._metrics = SyncMetrics(started_at=utcnow())

    @property
    def current(self) -> SyncMetrics:
        return self._metrics

    def increment_api_requests(self, count: int = 1) -> None:
        self._metrics.api_requests += count

    def increment_database_operations(self, count: int = 1) -> None:
        self._metrics.database_operations += count

    def increment_libraries_processed(self, count: int = 1) -> None:
        self._metrics.libraries_processed += count

    def increment_items_processed(self, count: int = 1) -> None:
        self._metrics.items_processed += count

    def increment_items_inserted(self, count: int = 1) -> None:
        self._metrics.items_inserted += count

    def increment_items_updated(self, count: int = 1) -> None:
        self._metrics.items_updated += count

    def increment_items_unchanged(self, count: int = 1) -> None:
        self._metrics.items_unchanged += count

    def increment_items_migrated(self, count: int = 1) -> None:
        self._metrics.items_migrated += count

    def increment_errors(self, count: int = 1) -> None:
        self._metrics.errors += count

    def finish(self) -> SyncMetrics:
        """Stamp the end time and return a snapshot of the counters."""

        finished = utcnow()
        elapsed = finished - self._metrics.started_at
        return self._metrics.model_copy(
            update={
                "finished_at": finished,
                "duration_ms": int(elapsed.total_seconds() * 1000),
            }
        )


def create_sync_result(
    status: SyncStatus,
    data: DataT,
    metrics: SyncMetrics,
    error: str | None = None,
    errors: list[str] | None = None,
) -> SyncResult[DataT]:
    """Bundle a sync outcome for the scheduling layer."""

    return SyncResult[type(data)](  # type: ignore[misc]
        status=status,
        data=data,
        metrics=metrics,
        error=error,
        errors=list(errors or []),
    )
