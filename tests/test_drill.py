import threading

import pytest
from PIL import Image

from fakes import FakeCamera, FixedRandom, ManualScheduler, RecordingCuePlayer

from lax_tracker.drill import (
    CAMERA_ERROR,
    FEED_ERROR,
    TIMEOUT_ERROR,
    DrillEvent,
    DrillState,
    MotionDetector,
    ReactionDrill,
    SessionConfig,
    SessionState,
    SessionSummary,
    TimerScheduler,
    mean_abs_difference,
    to_luma,
)

# 5 beeps, "down" at 5.0 s, "set" at 5.75 s, then the fixed 1000 ms random delay.
WHISTLE_AT = 6.75


def _drill(camera, scheduler, player=None, **kwargs) -> tuple[ReactionDrill, list[list[int]]]:
    completed: list[list[int]] = []
    drill = ReactionDrill(
        camera,
        cue_player=player or RecordingCuePlayer(),
        scheduler=scheduler,
        rng=FixedRandom(1000),
        now=scheduler.now,
        on_session_complete=completed.append,
        **kwargs,
    )
    return drill, completed


def test_single_rep_measures_reaction(camera: FakeCamera, scheduler: ManualScheduler) -> None:
    player = RecordingCuePlayer()
    drill, completed = _drill(camera, scheduler, player)
    drill.begin_session(SessionConfig(kind="count", value=1))
    assert drill.state == DrillState.COUNTDOWN
    assert camera.is_open

    scheduler.advance(4.0)
    assert player.cues == ["countdown"] * 5
    assert drill.status_message() == "Get Ready... 1"

    scheduler.advance(1.0)
    assert drill.state == DrillState.SET
    scheduler.advance(0.75)
    assert player.cues[-2:] == ["down", "set"]

    scheduler.advance(1.0)
    assert drill.state == DrillState.MEASURING
    assert player.cues[-1] == "whistle"

    scheduler.advance(0.2)
    assert drill.state == DrillState.MEASURING
    camera.moving = True
    scheduler.advance(0.1)

    assert drill.session_state == SessionState.FINISHED
    assert len(drill.reaction_times) == 1
    assert 200 <= drill.reaction_times[0] <= 220
    assert completed == [drill.reaction_times]
    assert camera.is_open is False
    assert scheduler.pending == 0


def test_camera_failure_enters_error_without_retry(scheduler: ManualScheduler) -> None:
    camera = FakeCamera(fail_open=True)
    drill, _completed = _drill(camera, scheduler)
    drill.begin_session(SessionConfig())
    assert drill.state == DrillState.ERROR
    assert drill.error == CAMERA_ERROR
    assert drill.status_message() == CAMERA_ERROR
    assert scheduler.pending == 0


def test_missing_reference_frame(scheduler: ManualScheduler) -> None:
    camera = FakeCamera(fail_read=True)
    drill, _completed = _drill(camera, scheduler)
    drill.begin_session(SessionConfig())
    scheduler.advance(WHISTLE_AT)
    assert drill.state == DrillState.ERROR
    assert drill.error == FEED_ERROR
    assert camera.is_open is False


def test_cancel_clears_pending_callbacks(camera: FakeCamera, scheduler: ManualScheduler) -> None:
    player = RecordingCuePlayer()
    drill, _completed = _drill(camera, scheduler, player)
    drill.begin_session(SessionConfig())
    scheduler.advance(2.0)
    drill.cancel()
    assert drill.state == DrillState.IDLE
    assert camera.is_open is False
    assert scheduler.pending == 0

    heard = list(player.cues)
    scheduler.advance(10.0)
    assert player.cues == heard


def test_next_rep_starts_after_pause(camera: FakeCamera, scheduler: ManualScheduler) -> None:
    drill, completed = _drill(camera, scheduler)
    drill.begin_session(SessionConfig(kind="count", value=2))
    scheduler.advance(WHISTLE_AT)
    camera.moving = True
    scheduler.advance(0.05)
    assert drill.state == DrillState.RESULT
    assert "Next drill starts soon" in drill.status_message()
    assert camera.close_count == 1

    camera.moving = False
    scheduler.advance(5.0)
    assert drill.state == DrillState.COUNTDOWN
    assert camera.open_count == 2

    scheduler.advance(WHISTLE_AT)
    camera.moving = True
    scheduler.advance(0.05)
    assert drill.session_state == SessionState.FINISHED
    assert len(completed) == 1
    assert len(completed[0]) == 2


def test_timed_session_ends_when_time_runs_out(camera: FakeCamera, scheduler: ManualScheduler) -> None:
    drill, completed = _drill(camera, scheduler)
    drill.begin_session(SessionConfig(kind="timed", value=1))
    assert drill.time_remaining == 60
    scheduler.advance(59.0)
    assert drill.session_state == SessionState.RUNNING
    scheduler.advance(1.0)
    assert drill.session_state == SessionState.FINISHED
    assert completed == [[]]
    assert camera.is_open is False
    assert scheduler.pending == 0


def test_timed_session_stops_when_too_little_time_left(camera: FakeCamera, scheduler: ManualScheduler) -> None:
    drill, completed = _drill(camera, scheduler)
    drill.begin_session(SessionConfig(kind="timed", value=1))
    drill.time_remaining = 10
    scheduler.advance(WHISTLE_AT)
    camera.moving = True
    scheduler.advance(0.05)
    assert drill.time_remaining <= 5
    assert drill.session_state == SessionState.FINISHED
    assert len(completed[0]) == 1


def test_motion_timeout_is_optional(camera: FakeCamera, scheduler: ManualScheduler) -> None:
    drill, _completed = _drill(camera, scheduler, motion_timeout=2.0)
    drill.begin_session(SessionConfig())
    scheduler.advance(WHISTLE_AT + 2.1)
    assert drill.state == DrillState.ERROR
    assert drill.error == TIMEOUT_ERROR

    patient, _ = _drill(FakeCamera(), ManualScheduler())
    assert patient.motion_timeout is None


def test_audio_failure_enters_error(camera: FakeCamera, scheduler: ManualScheduler) -> None:
    drill, _completed = _drill(camera, scheduler, RecordingCuePlayer(fail_on="countdown"))
    drill.begin_session(SessionConfig())
    scheduler.advance(0.0)
    assert drill.state == DrillState.ERROR
    assert camera.is_open is False


def test_out_of_order_events_are_ignored(camera: FakeCamera, scheduler: ManualScheduler) -> None:
    drill, _completed = _drill(camera, scheduler)
    assert drill.transition(DrillEvent.START) is False
    drill.begin_session(SessionConfig())
    assert drill.transition(DrillEvent.FRAME) is False
    assert drill.transition(DrillEvent.GO) is False
    assert drill.state == DrillState.COUNTDOWN


def test_session_config_validation() -> None:
    with pytest.raises(ValueError):
        SessionConfig(kind="forever", value=1)
    with pytest.raises(ValueError):
        SessionConfig(kind="count", value=0)
    assert SessionConfig(kind="timed", value=5).duration_seconds == 300


def test_session_summary() -> None:
    summary = SessionSummary([300, 250, 410])
    assert (summary.count, summary.average, summary.best, summary.worst) == (3, 320, 250, 410)
    assert SessionSummary().as_dict()["average"] == 0


def test_luma_uses_weighted_channels() -> None:
    red = to_luma(Image.new("RGB", (4, 4), (255, 0, 0)))
    black = to_luma(Image.new("RGB", (4, 4), (0, 0, 0)))
    assert round(mean_abs_difference(black, red)) == 76


def test_motion_detector_threshold_and_region() -> None:
    base = Image.new("RGB", (40, 30), (100, 100, 100))
    changed = base.copy()
    changed.paste((255, 255, 255), (0, 0, 10, 10))

    detector = MotionDetector(threshold=10)
    detector.set_reference(base)
    assert detector.difference(base) == 0
    assert detector.detect(base) is False
    # 100 of 1200 pixels change by 155: mean about 12.9.
    assert detector.detect(changed) is True

    elsewhere = MotionDetector(threshold=10, region=(20, 10, 40, 30))
    elsewhere.set_reference(base)
    assert elsewhere.detect(changed) is False


def test_timer_scheduler_runs_callbacks_in_order_on_one_thread() -> None:
    scheduler = TimerScheduler()
    calls: list[tuple[int, threading.Thread]] = []
    done = threading.Event()

    def record(index: int) -> None:
        calls.append((index, threading.current_thread()))

    for index in range(10):
        scheduler.call_later(0.005 * (10 - index), lambda i=index: record(i))
    skipped = scheduler.call_later(0.02, lambda: record(99))
    skipped.cancel()
    scheduler.call_later(0.1, done.set)

    assert done.wait(timeout=2.0)
    assert [index for index, _thread in calls] == list(range(9, -1, -1))
    assert len({thread for _index, thread in calls}) == 1
