"""Table-driven tests for the activity-log keyword rules."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from mediamirror.services.activity_heuristics import (
    has_completion_event,
    is_completion_event,
    is_playback_event,
)


@pytest.mark.parametrize(
    ("name", "playback", "completion"),
    [
        ("alice is playing Heat on Living Room TV", True, False),
        ("alice has finished playing Heat on Living Room TV", True, False),
        ("Playback started for Heat", True, False),
        ("PLAYBACK STOPPED", True, True),
        ("Heat paused by bob", True, False),
        ("Heat resumed by bob", True, False),
        ("Episode completed", True, True),
        ("bob watched Severance", True, False),
        ("Now viewing the library", True, False),
        ("Transcode stopped", True, True),
        ("alice successfully authenticated", False, False),
        ("Library scan finished", False, False),
        ("Plugin updated", False, False),
        ("", False, False),
        (None, False, False),
    ],
)
def test_keyword_table(name, playback, completion) -> None:
    assert is_playback_event(name) is playback
    assert is_completion_event(name) is completion


def test_has_completion_event_scans_all_events() -> None:
    events = [
        SimpleNamespace(name="alice is playing Heat"),
        SimpleNamespace(name="Heat paused"),
    ]

    assert has_completion_event(events) is False
    events.append(SimpleNamespace(name="Playback stopped for Heat"))
    assert has_completion_event(events) is True
    assert has_completion_event([]) is False
