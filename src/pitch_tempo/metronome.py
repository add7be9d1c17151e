"""
Look-ahead metronome click scheduling.

Pure timing, no audio. The scheduler decides *when* each click should
sound; a playback collaborator receives the timestamps (via on_click) and
renders them against its own clock.

A coarse cadence (default 25 ms) wakes up and hands out every click that
falls inside a short look-ahead horizon (default 200 ms). Each click
carries its exact timestamp, so precision does not depend on how punctual
the cadence thread is, only that it wakes up within the horizon.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class ClickScheduler:
    """
    Emits click timestamps for one playback run.

    Click k is at start_time + beat_offset_seconds + k * 60 / bpm, for every
    k whose time is before start_time + duration_seconds.

    Usage:
        scheduler = ClickScheduler(
            bpm=120, start_time=clock() + 0.03, duration_seconds=12.0,
            beat_offset_seconds=estimate.beat_offset_seconds,
            on_click=lambda t: player.schedule_click(t),
        )
        scheduler.start()   # returns immediately
        ...
        scheduler.stop()    # idempotent; emitted clicks stay scheduled

    poll(now) runs one cadence tick synchronously, which is what start()
    calls from its thread. Tests drive poll() directly with a fake clock.
    """

    def __init__(
        self,
        bpm: float,
        start_time: float,
        duration_seconds: float,
        beat_offset_seconds: float = 0.0,
        *,
        lookahead_seconds: float = 0.2,
        cadence_seconds: float = 0.025,
        clock: Callable[[], float] = time.monotonic,
        on_click: Callable[[float], None] | None = None,
    ):
        if not math.isfinite(bpm) or bpm <= 0:
            raise ValueError(f"bpm must be a positive number, got {bpm}")
        if lookahead_seconds <= 0 or cadence_seconds <= 0:
            raise ValueError("lookahead_seconds and cadence_seconds must be positive")

        self.bpm = bpm
        self.interval = 60.0 / bpm
        self.start_time = start_time
        self.end_time = start_time + duration_seconds
        self.beat_offset_seconds = beat_offset_seconds
        self.lookahead_seconds = lookahead_seconds
        self.cadence_seconds = cadence_seconds

        self._clock = clock
        self._on_click = on_click
        self._next_index = 0
        self._emitted: list[float] = []
        self._skipped = 0
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def click_time(self, index: int) -> float:
        """Timestamp of click `index`, computed directly so error never accumulates."""
        return self.start_time + self.beat_offset_seconds + index * self.interval

    @property
    def emitted(self) -> list[float]:
        """Every timestamp handed out so far, in order."""
        with self._lock:
            return list(self._emitted)

    @property
    def skipped(self) -> int:
        """Clicks dropped because they were more than a cadence late when reached."""
        with self._lock:
            return self._skipped

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    @property
    def finished(self) -> bool:
        """True once every click of the run has been emitted or skipped."""
        with self._lock:
            index = self._next_index
        return self.click_time(index) >= self.end_time

    def poll(self, now: float | None = None) -> list[float]:
        """
        One cadence tick: emit every pending click before now + lookahead.

        A click up to one cadence period behind `now` is still emitted (the
        thread always wakes a little after a click due at start_time); older
        clicks are skipped rather than emitted late.

        Returns:
            Timestamps emitted by this tick (empty after stop()).
        """
        if now is None:
            now = self._clock()
        horizon = now + self.lookahead_seconds

        batch = []
        with self._lock:
            if self._stopped.is_set():
                return []
            while True:
                t = self.click_time(self._next_index)
                if t >= self.end_time or t >= horizon:
                    break
                self._next_index += 1
                if t < now - self.cadence_seconds:
                    self._skipped += 1
                    logger.debug("click at %.4f missed (now %.4f), skipping", t, now)
                    continue
                batch.append(t)
            self._emitted.extend(batch)

        if self._on_click is not None:
            for t in batch:
                self._on_click(t)
        return batch

    def start(self) -> None:
        """Start the cadence thread. Returns immediately; no-op if already running."""
        if self._thread is not None or self._stopped.is_set():
            return
        self._thread = threading.Thread(
            target=self._run, name="click-scheduler", daemon=True,
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stopped.is_set():
            self.poll()
            if self.finished:
                logger.debug("click schedule complete (%d emitted)", len(self._emitted))
                return
            self._stopped.wait(self.cadence_seconds)

    def stop(self) -> None:
        """Halt future ticks. Idempotent and non-blocking; never revokes emitted clicks."""
        self._stopped.set()


def schedule_clicks(
    bpm: float,
    start_time: float,
    duration_seconds: float,
    beat_offset_seconds: float = 0.0,
) -> list[float]:
    """
    All click timestamps for a run, computed in one go.

    For offline rendering, where there is no playback clock to chase.
    Equivalent to polling a ClickScheduler from start_time to the end.
    """
    scheduler = ClickScheduler(bpm, start_time, duration_seconds, beat_offset_seconds)
    now = start_time
    while not scheduler.finished:
        scheduler.poll(now)
        now += scheduler.lookahead_seconds
    return scheduler.emitted
