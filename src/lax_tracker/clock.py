from __future__ import annotations

import logging
import threading
from typing import Callable

from .audio import CuePlayer, LoggingCuePlayer
from .config import COUNTDOWN_CUE_SECONDS, PERIOD_LENGTH_SECONDS

logger = logging.getLogger(__name__)


class GameClock:
    """Period countdown clock.

    Remaining time is whole seconds and never drops below zero. ``tick`` is
    expected once per second from a fixed-period timer; there is no drift
    correction against wall time.
    """

    def __init__(
        self,
        remaining: int = PERIOD_LENGTH_SECONDS,
        cue_player: CuePlayer | None = None,
        period_length: int = PERIOD_LENGTH_SECONDS,
    ) -> None:
        self.period_length = period_length
        self._remaining = max(0, int(remaining))
        self._running = False
        self.cue_player: CuePlayer = cue_player or LoggingCuePlayer()

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running or self._remaining <= 0:
            return
        self._running = True

    def pause(self) -> None:
        if not self._running:
            return
        self._running = False
        self.cue_player.cancel_speech()

    def toggle(self) -> bool:
        if self._running:
            self.pause()
        else:
            self.start()
        return self._running

    def tick(self) -> int:
        if not self._running or self._remaining <= 0:
            return self._remaining
        self._remaining -= 1
        if 0 < self._remaining <= COUNTDOWN_CUE_SECONDS:
            self.cue_player.speak(str(self._remaining))
        elif self._remaining == 0:
            self._running = False
            self.cue_player.cancel_speech()
            self.cue_player.play("buzzer")
            logger.info("period clock expired")
        return self._remaining

    def adjust(self, delta_seconds: int) -> int:
        self._remaining = max(0, self._remaining + int(delta_seconds))
        if self._remaining == 0:
            self._running = False
        return self._remaining

    def reset(self, value: int | None = None) -> int:
        self._remaining = max(0, int(self.period_length if value is None else value))
        return self._remaining


class ClockTicker:
    """Background thread that ticks a clock once per interval while it runs.

    ``on_tick`` receives the new remaining value after every effective tick.
    When ``lock`` is given, each tick and its callback run while holding it, so
    the ticker can share state with request handlers.
    """

    def __init__(
        self,
        clock: GameClock,
        on_tick: Callable[[int], None] | None = None,
        interval: float = 1.0,
        lock: threading.Lock | threading.RLock | None = None,
    ) -> None:
        self.clock = clock
        self.on_tick = on_tick
        self.interval = interval
        self._lock = lock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.alive:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="clock-ticker", daemon=True)
        self._thread.start()

    def stop(self, wait: bool = True) -> None:
        """Stop ticking. No tick runs after this returns, even with ``wait=False``.

        Pass ``wait=False`` when the caller holds the shared lock: the thread
        may be blocked on it and would only exit once the lock is released.
        """
        self._stop.set()
        thread = self._thread
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval * 2 + 1.0)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            if self._lock is not None:
                with self._lock:
                    self._step()
            else:
                self._step()

    def _step(self) -> None:
        if self._stop.is_set() or not self.clock.running:
            return
        before = self.clock.remaining
        after = self.clock.tick()
        if after != before and self.on_tick is not None:
            try:
                self.on_tick(after)
            except Exception:
                logger.exception("clock tick callback failed")
