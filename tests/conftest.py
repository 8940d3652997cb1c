from __future__ import annotations

import json

import pytest

from fakes import FakeCamera, ManualScheduler, RecordingCuePlayer


@pytest.fixture
def cue_player() -> RecordingCuePlayer:
    return RecordingCuePlayer()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def camera() -> FakeCamera:
    return FakeCamera()


@pytest.fixture
def roster_reply() -> str:
    return json.dumps(
        {
            "players": [
                {"name": "Casey Hart", "jerseyNumber": "2", "position": "Attack"},
                {"name": "Jordan Lee", "jerseyNumber": "22", "position": "Midfield"},
            ]
        }
    )
