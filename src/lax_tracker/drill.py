"""Face-off reaction-time drill.

The drill is a finite state machine driven through ``ReactionDrill.transition``.
Every delayed step (countdown beeps, the randomized "go", frame polls, the
pause between repetitions) is a scheduler callback that feeds an event back
into ``transition``, so no step needs a forward reference to another.

    idle -> starting -> countdown -> set -> measuring -> result -> (starting | idle)
                 \\__________ any failure __________/-> error
"""

from __future__ import annotations

import heapq
import itertools
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from PIL import Image, ImageChops, ImageStat

from .audio import CuePlayer, LoggingCuePlayer
from .config import (
    DRILL_BEEP_SPACING,
    DRILL_COUNTDOWN_BEEPS,
    DRILL_FRAME_INTERVAL,
    DRILL_GO_DELAY_RANGE_MS,
    DRILL_NEXT_REP_PAUSE,
    DRILL_SET_CUE_DELAY,
    DRILL_TIMED_CUTOFF_SECONDS,
    SENSITIVITY_THRESHOLD,
)

logger = logging.getLogger(__name__)

CAMERA_ERROR = "Could not access camera. Please check permissions and try again."
FEED_ERROR = "Video feed not ready."
AUDIO_ERROR = "Audio cues are unavailable on this device."
TIMEOUT_ERROR = "No movement detected. Make sure you are in front of the camera."


class DrillState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    COUNTDOWN = "countdown"
    SET = "set"
    MEASURING = "measuring"
    RESULT = "result"
    ERROR = "error"


class SessionState(str, Enum):
    SETUP = "setup"
    RUNNING = "running"
    FINISHED = "finished"


class DrillEvent(str, Enum):
    START = "start"
    BEEP = "beep"
    DOWN = "down"
    SET_CUE = "set_cue"
    GO = "go"
    FRAME = "frame"
    NEXT = "next"
    SESSION_TICK = "session_tick"
    CANCEL = "cancel"


# Events accepted in each state; anything else is ignored.
ALLOWED_EVENTS: dict[DrillState, set[DrillEvent]] = {
    DrillState.IDLE: {DrillEvent.START},
    DrillState.STARTING: set(),
    DrillState.COUNTDOWN: {DrillEvent.BEEP, DrillEvent.DOWN},
    DrillState.SET: {DrillEvent.SET_CUE, DrillEvent.GO},
    DrillState.MEASURING: {DrillEvent.FRAME},
    DrillState.RESULT: {DrillEvent.NEXT, DrillEvent.START},
    DrillState.ERROR: {DrillEvent.START},
}


class FrameSource(Protocol):
    def open(self) -> None: ...

    def read(self) -> Image.Image: ...

    def close(self) -> None: ...


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle: ...


class _TimerHandle:
    __slots__ = ("callback", "cancelled")

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class TimerScheduler:
    """Runs callbacks in due-time order on a single background thread.

    The thread is started on demand and exits once the queue drains.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._queue: list[tuple[float, int, _TimerHandle]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._thread: threading.Thread | None = None

    def call_later(self, delay: float, callback: Callable[[], None]) -> _TimerHandle:
        handle = _TimerHandle(callback)
        with self._cond:
            heapq.heappush(self._queue, (self._clock() + max(0.0, delay), next(self._seq), handle))
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name="drill-scheduler", daemon=True)
                self._thread.start()
            self._cond.notify()
        return handle

    def _run(self) -> None:
        while True:
            with self._cond:
                if not self._queue:
                    self._thread = None
                    return
                due, _seq, handle = self._queue[0]
                wait = due - self._clock()
                if wait > 0:
                    self._cond.wait(wait)
                    continue
                heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            try:
                handle.callback()
            except Exception:
                logger.exception("drill callback failed")


@dataclass(frozen=True, slots=True)
class SessionConfig:
    kind: str = "count"
    value: int = 1

    def __post_init__(self) -> None:
        if self.kind not in {"count", "timed"}:
            raise ValueError(f"Unknown session kind: {self.kind}")
        if self.value < 1:
            raise ValueError("Session value must be at least 1.")

    @property
    def duration_seconds(self) -> int:
        return self.value * 60 if self.kind == "timed" else 0


@dataclass(slots=True)
class SessionSummary:
    reaction_times: list[int] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.reaction_times)

    @property
    def average(self) -> int:
        if not self.reaction_times:
            return 0
        return round(sum(self.reaction_times) / len(self.reaction_times))

    @property
    def best(self) -> int:
        return min(self.reaction_times) if self.reaction_times else 0

    @property
    def worst(self) -> int:
        return max(self.reaction_times) if self.reaction_times else 0

    def as_dict(self) -> dict[str, object]:
        return {
            "count": self.count,
            "average": self.average,
            "best": self.best,
            "worst": self.worst,
            "reaction_times": list(self.reaction_times),
        }


def to_luma(frame: Image.Image) -> Image.Image:
    # Pillow's "L" conversion is ITU-R 601-2 luma: 0.299 R + 0.587 G + 0.114 B.
    return frame if frame.mode == "L" else frame.convert("RGB").convert("L")


def mean_abs_difference(reference: Image.Image, current: Image.Image) -> float:
    if current.size != reference.size:
        current = current.resize(reference.size)
    diff = ImageChops.difference(reference, current)
    return float(ImageStat.Stat(diff).mean[0])


class MotionDetector:
    """Compares frames against a reference by mean absolute luma difference.

    ``region`` optionally restricts the comparison to a (left, top, right,
    bottom) box of the frame.
    """

    def __init__(
        self,
        threshold: float = SENSITIVITY_THRESHOLD,
        region: tuple[int, int, int, int] | None = None,
    ) -> None:
        self.threshold = threshold
        self.region = region
        self._reference: Image.Image | None = None

    def _prepare(self, frame: Image.Image) -> Image.Image:
        if self.region is not None:
            frame = frame.crop(self.region)
        return to_luma(frame)

    @property
    def has_reference(self) -> bool:
        return self._reference is not None

    def set_reference(self, frame: Image.Image) -> None:
        self._reference = self._prepare(frame)

    def clear(self) -> None:
        self._reference = None

    def difference(self, frame: Image.Image) -> float:
        if self._reference is None:
            raise RuntimeError("No reference frame captured.")
        return mean_abs_difference(self._reference, self._prepare(frame))

    def detect(self, frame: Image.Image) -> bool:
        return self.difference(frame) > self.threshold


class ReactionDrill:
    """Runs reaction-time sessions against a camera feed.

    When ``lock`` is given, every transition and the ``on_session_complete``
    callback run while holding it, so the drill can share state with its owner.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        cue_player: CuePlayer | None = None,
        scheduler: Scheduler | None = None,
        detector: MotionDetector | None = None,
        rng: random.Random | None = None,
        now: Callable[[], float] = time.monotonic,
        motion_timeout: float | None = None,
        on_session_complete: Callable[[list[int]], None] | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self.frame_source = frame_source
        self.cue_player: CuePlayer = cue_player or LoggingCuePlayer()
        self.scheduler: Scheduler = scheduler or TimerScheduler()
        self.detector = detector or MotionDetector()
        self._rng = rng or random.Random()
        self._now = now
        self.motion_timeout = motion_timeout
        self.on_session_complete = on_session_complete

        self.state = DrillState.IDLE
        self.session_state = SessionState.SETUP
        self.session_config: SessionConfig | None = None
        self.countdown = 0
        self.reaction_time: int | None = None
        self.reaction_times: list[int] = []
        self.time_remaining = 0
        self.error: str | None = None

        self._lock = lock if lock is not None else threading.RLock()
        self._pending: list[Handle] = []
        self._session_timer: Handle | None = None
        self._camera_open = False
        self._measure_started = 0.0

    # Session envelope

    @property
    def completed(self) -> int:
        return len(self.reaction_times)

    def summary(self) -> SessionSummary:
        return SessionSummary(reaction_times=list(self.reaction_times))

    def begin_session(self, config: SessionConfig) -> None:
        with self._lock:
            self._teardown()
            self.session_config = config
            self.session_state = SessionState.RUNNING
            self.reaction_times = []
            self.reaction_time = None
            self.state = DrillState.IDLE
            if config.kind == "timed":
                self.time_remaining = config.duration_seconds
                self._session_timer = self.scheduler.call_later(1.0, lambda: self.transition(DrillEvent.SESSION_TICK))
            logger.info("drill session started (%s %d)", config.kind, config.value)
            self.transition(DrillEvent.START)

    def cancel(self) -> None:
        """Leave the drill: release the camera and drop every pending callback."""
        self.transition(DrillEvent.CANCEL)

    def finish_session(self) -> None:
        with self._lock:
            self._teardown()
            self.state = DrillState.IDLE
            if self.session_state == SessionState.FINISHED:
                return
            self.session_state = SessionState.FINISHED
            logger.info("drill session finished with %d reps", self.completed)
            if self.on_session_complete is not None:
                self.on_session_complete(list(self.reaction_times))

    # State machine

    def transition(self, event: DrillEvent, value: int | None = None) -> bool:
        with self._lock:
            if event == DrillEvent.CANCEL:
                self._teardown()
                self.state = DrillState.IDLE
                return True
            if event == DrillEvent.SESSION_TICK:
                self._on_session_tick()
                return True
            if self.session_state != SessionState.RUNNING or event not in ALLOWED_EVENTS[self.state]:
                logger.debug("ignoring %s in state %s", event.value, self.state.value)
                return False

            if event in {DrillEvent.START, DrillEvent.NEXT}:
                self._on_start()
            elif event == DrillEvent.BEEP:
                self.countdown = int(value or 0)
                self._play("countdown")
            elif event == DrillEvent.DOWN:
                self.countdown = 0
                self.state = DrillState.SET
                self._play("down")
            elif event == DrillEvent.SET_CUE:
                self._play("set")
            elif event == DrillEvent.GO:
                self._on_go()
            elif event == DrillEvent.FRAME:
                self._on_frame()
            return True

    def _on_start(self) -> None:
        self._clear_pending()
        self.state = DrillState.STARTING
        self.reaction_time = None
        self.error = None
        self.detector.clear()
        try:
            if self._camera_open:
                self._close_camera()
            self.frame_source.open()
            self._camera_open = True
        except Exception as exc:
            logger.error("Error accessing camera: %s", exc)
            self._fail(CAMERA_ERROR)
            return
        self._schedule_sequence()

    def _schedule_sequence(self) -> None:
        """Queue the whole countdown as one batch so cancelling is a single sweep."""
        self.state = DrillState.COUNTDOWN
        delay = 0.0
        for count in range(DRILL_COUNTDOWN_BEEPS, 0, -1):
            self._later(delay, DrillEvent.BEEP, count)
            delay += DRILL_BEEP_SPACING
        self._later(delay, DrillEvent.DOWN)
        delay += DRILL_SET_CUE_DELAY
        self._later(delay, DrillEvent.SET_CUE)
        low, high = DRILL_GO_DELAY_RANGE_MS
        delay += self._rng.uniform(low, high) / 1000.0
        self._later(delay, DrillEvent.GO)

    def _on_go(self) -> None:
        self.state = DrillState.MEASURING
        self._play("whistle")
        if self.state != DrillState.MEASURING:
            return
        try:
            self.detector.set_reference(self.frame_source.read())
        except Exception as exc:
            logger.error("Could not capture reference frame: %s", exc)
            self._fail(FEED_ERROR)
            return
        self._measure_started = self._now()
        self._later(DRILL_FRAME_INTERVAL, DrillEvent.FRAME)

    def _on_frame(self) -> None:
        try:
            frame = self.frame_source.read()
            moved = self.detector.detect(frame)
        except Exception as exc:
            logger.error("Frame capture failed during measurement: %s", exc)
            self._fail(FEED_ERROR)
            return
        elapsed = self._now() - self._measure_started
        if moved:
            self._record_rep(round(elapsed * 1000))
            return
        if self.motion_timeout is not None and elapsed >= self.motion_timeout:
            self._fail(TIMEOUT_ERROR)
            return
        self._later(DRILL_FRAME_INTERVAL, DrillEvent.FRAME)

    def _record_rep(self, elapsed_ms: int) -> None:
        self._clear_pending()
        self._close_camera()
        self.reaction_time = elapsed_ms
        self.reaction_times.append(elapsed_ms)
        self.state = DrillState.RESULT
        logger.info("reaction time %d ms (rep %d)", elapsed_ms, self.completed)
        if self._session_over():
            self.finish_session()
            return
        self._later(DRILL_NEXT_REP_PAUSE, DrillEvent.NEXT)

    def _session_over(self) -> bool:
        config = self.session_config
        if config is None:
            return True
        if config.kind == "count":
            return self.completed >= config.value
        # Not enough time left for another full rep.
        return self.time_remaining <= DRILL_TIMED_CUTOFF_SECONDS

    def _on_session_tick(self) -> None:
        self._session_timer = None
        if self.session_state != SessionState.RUNNING:
            return
        self.time_remaining = max(0, self.time_remaining - 1)
        if self.time_remaining == 0:
            self.finish_session()
            return
        self._session_timer = self.scheduler.call_later(1.0, lambda: self.transition(DrillEvent.SESSION_TICK))

    # Helpers

    def _later(self, delay: float, event: DrillEvent, value: int | None = None) -> None:
        self._pending.append(self.scheduler.call_later(delay, lambda: self.transition(event, value)))

    def _clear_pending(self) -> None:
        pending, self._pending = self._pending, []
        for handle in pending:
            handle.cancel()

    def _close_camera(self) -> None:
        if not self._camera_open:
            return
        self._camera_open = False
        try:
            self.frame_source.close()
        except Exception as exc:
            logger.warning("Error releasing camera: %s", exc)

    def _teardown(self) -> None:
        self._clear_pending()
        if self._session_timer is not None:
            self._session_timer.cancel()
            self._session_timer = None
        self._close_camera()
        self.detector.clear()

    def _fail(self, message: str) -> None:
        self._teardown()
        self.error = message
        self.state = DrillState.ERROR

    def _play(self, cue: str) -> None:
        try:
            self.cue_player.play(cue)
        except Exception as exc:
            logger.error("Cue %s failed: %s", cue, exc)
            self._fail(AUDIO_ERROR)

    def status_message(self) -> str:
        if self.state == DrillState.IDLE:
            return "Session ended." if self.session_state == SessionState.FINISHED else ""
        if self.state == DrillState.STARTING:
            return "Starting camera..."
        if self.state == DrillState.COUNTDOWN:
            return f"Get Ready... {self.countdown}"
        if self.state == DrillState.SET:
            return "Listen for the tones and whistle..."
        if self.state == DrillState.MEASURING:
            return "GO!"
        if self.state == DrillState.RESULT:
            message = f"Time: {self.reaction_time}ms"
            if self.session_state == SessionState.RUNNING:
                message += " | Next drill starts soon..."
            return message
        return self.error or ""
