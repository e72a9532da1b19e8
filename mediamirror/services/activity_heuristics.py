"""Free-text rules for reading playback intent out of activity-log names.

The activity log only carries human readable event names ("alice is playing
Heat", "bob has finished playing Heat"), so these keyword matches are the
only signal available. They are kept here so they can be tuned in one place.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

PLAYBACK_KEYWORDS: tuple[str, ...] = (
    "playback",
    "playing",
    "started",
    "stopped",
    "paused",
    "resumed",
    "completed",
    "watched",
    "viewing",
)

COMPLETION_KEYWORDS: tuple[str, ...] = ("stopped", "completed")


def _contains_any(name: str | None, keywords: Iterable[str]) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(keyword in lowered for keyword in keywords)


def is_playback_event(name: str | None) -> bool:
    return _contains_any(name, PLAYBACK_KEYWORDS)


def is_completion_event(name: str | None) -> bool:
    return _contains_any(name, COMPLETION_KEYWORDS)


def has_completion_event(events: Iterable[Any]) -> bool:
    """Return True if any event (an object with a ``name``) signals completion."""

    return any(is_completion_event(getattr(event, "name", None)) for event in events)
