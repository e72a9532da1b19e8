"""Detect remote items that were recreated under a new id and re-key them.

The remote server deletes and recreates items with fresh ids on library
re-scans and provider re-matches. Treating those as new items would orphan
every session recorded against the old id, so an unseen id is first scored
against the items already stored for its library. A match above
``DUPLICATE_MIN_CONFIDENCE`` is migrated: the new row is inserted, sessions are
repointed and the old row is deleted, all in one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Item, Session
from ..errors import IdentityMigrationError
from ..utils import TICKS_PER_SECOND

logger = logging.getLogger(__name__)

DUPLICATE_MIN_CONFIDENCE = 40
MAX_CONFIDENCE = 100
RUNTIME_TOLERANCE_TICKS = 5 * 60 * TICKS_PER_SECOND

PATH_MATCH_SCORE = 50
PROVIDER_MATCH_SCORE = 40
EPISODE_MATCH_SCORE = 30
MOVIE_ATTRIBUTE_SCORE = 10
NAME_TYPE_MATCH_SCORE = 10


def _value(record: Item | Mapping[str, Any], field: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(field)
    return getattr(record, field, None)


def has_matching_provider_ids(
    first: Mapping[str, str] | None, second: Mapping[str, str] | None
) -> bool:
    """Return True if any external catalog assigns both records the same id."""

    if not first or not second:
        return False
    for provider in set(first) | set(second):
        left = first.get(provider)
        right = second.get(provider)
        if left and right and left == right:
            return True
    return False


def calculate_match_confidence(
    candidate: Item | Mapping[str, Any], existing: Item | Mapping[str, Any]
) -> int:
    """Score how likely two item records describe the same content (0-100)."""

    confidence = 0
    name = _value(candidate, "name")
    item_type = _value(candidate, "type")

    path = _value(candidate, "path")
    if path and path == _value(existing, "path"):
        confidence += PATH_MATCH_SCORE

    if has_matching_provider_ids(
        _value(candidate, "provider_ids"), _value(existing, "provider_ids")
    ):
        confidence += PROVIDER_MATCH_SCORE

    if (
        item_type == "Episode"
        and _value(existing, "type") == "Episode"
        and _value(candidate, "series_name") == _value(existing, "series_name")
        and _value(candidate, "index_number") == _value(existing, "index_number")
        and (_value(candidate, "parent_index_number") or 1)
        == (_value(existing, "parent_index_number") or 1)
    ):
        confidence += EPISODE_MATCH_SCORE

    if (
        item_type == "Movie"
        and _value(existing, "type") == "Movie"
        and name == _value(existing, "name")
    ):
        confidence += MOVIE_ATTRIBUTE_SCORE

        year = _value(candidate, "production_year")
        if year and year == _value(existing, "production_year"):
            confidence += MOVIE_ATTRIBUTE_SCORE

        runtime = _value(candidate, "runtime_ticks")
        existing_runtime = _value(existing, "runtime_ticks")
        if (
            runtime
            and existing_runtime
            and abs(runtime - existing_runtime) < RUNTIME_TOLERANCE_TICKS
        ):
            confidence += MOVIE_ATTRIBUTE_SCORE

    if name == _value(existing, "name") and item_type == _value(existing, "type"):
        confidence += NAME_TYPE_MATCH_SCORE

    return min(confidence, MAX_CONFIDENCE)


@dataclass(slots=True)
class IdentityMatch:
    """A stored item judged to be the same content as an unseen remote id."""

    item: Item
    confidence: int


def select_best_match(
    candidate: Mapping[str, Any], existing_items: list[Item]
) -> IdentityMatch | None:
    """Pick the highest-scoring stored item at or above the threshold.

    Ties keep the earliest item in ``existing_items``.
    """

    best: IdentityMatch | None = None
    for existing in existing_items:
        if existing.id == candidate.get("id"):
            continue
        confidence = calculate_match_confidence(candidate, existing)
        if confidence < DUPLICATE_MIN_CONFIDENCE:
            continue
        if best is None or confidence > best.confidence:
            best = IdentityMatch(item=existing, confidence=confidence)
    return best


async def find_potential_duplicate(
    session: AsyncSession,
    candidate: Mapping[str, Any],
    library_id: str,
    server_id: int,
) -> IdentityMatch | None:
    """Look for a stored item in the same library that ``candidate`` replaces."""

    if not candidate.get("name"):
        return None

    result = await session.execute(
        select(Item)
        .where(Item.server_id == server_id, Item.library_id == library_id)
        .order_by(Item.created_at, Item.id)
    )
    match = select_best_match(candidate, list(result.scalars()))
    if match is not None:
        logger.info(
            'Found potential duplicate for %s "%s": existing ID %s -> new ID %s '
            "(confidence: %s%%)",
            candidate.get("type"),
            candidate.get("name"),
            match.item.id,
            candidate.get("id"),
            match.confidence,
        )
    return match


class IdentityMigration:
    """Unit of work re-keying a stored item to the id the server now reports."""

    def __init__(self, old_id: str, new_row: Mapping[str, Any]):
        self.old_id = old_id
        self.new_row = dict(new_row)

    @property
    def new_id(self) -> str:
        return self.new_row["id"]

    async def apply(self, session_factory: async_sessionmaker[AsyncSession]) -> int:
        """Run the migration atomically and return the number of sessions moved.

        Any failure rolls the whole migration back and raises
        :class:`IdentityMigrationError`; nothing is partially applied.
        """

        logger.info("Migrating duplicate item: %s -> %s", self.old_id, self.new_id)
        try:
            async with session_factory() as session:
                async with session.begin():
                    await session.execute(insert(Item).values(**self.new_row))
                    repointed = await session.execute(
                        update(Session)
                        .where(Session.item_id == self.old_id)
                        .values(item_id=self.new_id)
                    )
                    await session.execute(delete(Item).where(Item.id == self.old_id))
        except Exception as exc:
            logger.error(
                "Failed to migrate duplicate item %s -> %s: %s",
                self.old_id,
                self.new_id,
                exc,
            )
            raise IdentityMigrationError(self.old_id, self.new_id, exc) from exc

        moved = repointed.rowcount or 0
        logger.info(
            "Migrated item %s -> %s and repointed %s sessions",
            self.old_id,
            self.new_id,
            moved,
        )
        return moved
