"""
Analysis session: the context object for one recording session.

Owns the sample queue, the frame windower and both estimators, so nothing
leaks between sessions and every component can be tested on its own.

Two independent cadences meet here:

    capture thread  --push(chunk)-->  inbox (SimpleQueue of read-only arrays)
    analysis tick   --drain inbox-->  SampleQueue --> FrameWindower
                                       --> PitchEstimator (per hop, returned)
                                       --> TempoEstimator (accumulated)

push() is the only method meant for the capture thread. Everything else
runs on the analysis side; a tick that arrives while another is still
running is dropped, never queued, so frames stay hop-aligned.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable

import numpy as np

from pitch_tempo.buffer import FrameWindower, SampleQueue
from pitch_tempo.config import AnalysisConfig
from pitch_tempo.metronome import ClickScheduler
from pitch_tempo.precision.pitch import PitchEstimator
from pitch_tempo.precision.tempo import TempoEstimator
from pitch_tempo.types import PitchEstimate, TempoEstimate

logger = logging.getLogger(__name__)


class AnalysisSession:
    """
    One recording session from first chunk to tempo estimate.

    Usage:
        session = AnalysisSession(AnalysisConfig(sample_rate=48000))
        # capture thread:
        session.push(block)
        # analysis timer, every ~hop:
        for estimate in session.tick():
            display(estimate)           # PitchEstimate or None, one per hop
        # end of recording:
        tempo = session.stop()          # TempoEstimate, idempotent

    Or let the session run its own ticker:
        session.start(on_pitch=display)
        ...
        tempo = session.stop()
    """

    def __init__(self, config: AnalysisConfig):
        self.config = config
        self._inbox: queue.SimpleQueue[np.ndarray] = queue.SimpleQueue()
        self._queue = SampleQueue()
        self._windower = FrameWindower(self._queue, config.frame_size, config.hop_size)
        self._pitch = PitchEstimator(
            config.sample_rate,
            config.min_freq,
            config.max_freq,
            silence_threshold=config.silence_rms_threshold,
            dip_threshold=config.cmnd_dip_threshold,
            reference_hz=config.tuning_reference_hz,
        )
        self._tempo = TempoEstimator(
            config.sample_rate,
            config.frame_size,
            config.hop_size,
            min_session_seconds=config.min_session_seconds,
            smoothing_radius=config.novelty_smoothing_radius,
            merge_tolerance=config.bpm_merge_tolerance,
        )

        self._tick_guard = threading.Lock()
        self._dropped_ticks = 0
        self._active = True
        self._result: TempoEstimate | None = None

        self._ticker: threading.Thread | None = None
        self._ticker_stop = threading.Event()

    # --- capture side ---

    def push(self, chunk: np.ndarray) -> None:
        """
        Hand a PCM chunk over from the capture thread. Never blocks.

        The chunk is copied into a read-only float32 array, so the producer
        may reuse its buffer immediately. Chunks pushed after stop() are
        discarded.

        Raises:
            ValueError: the chunk is not 1-D. Mix multi-channel blocks down
                first (see devices.microphone.to_mono).
        """
        if not self._active:
            return
        data = np.array(chunk, dtype=np.float32, copy=True)
        if data.ndim != 1:
            raise ValueError(f"PCM chunks must be 1-D mono, got shape {data.shape}")
        data.setflags(write=False)
        self._inbox.put(data)

    # --- analysis side ---

    @property
    def active(self) -> bool:
        return self._active

    @property
    def hops(self) -> int:
        """Successful frame updates so far."""
        return self._windower.hops

    @property
    def dropped_ticks(self) -> int:
        """Ticks discarded because the previous tick was still running."""
        return self._dropped_ticks

    @property
    def buffered_samples(self) -> int:
        """Samples waiting in the sample queue (after the last drain)."""
        return len(self._queue)

    @property
    def last_pitch(self) -> PitchEstimate | None:
        """Most recent successful pitch estimate, for display collaborators."""
        return self._pitch.last

    def hop_time(self, index: int) -> float:
        """Session time of hop `index` (centre of the newest hop in that frame)."""
        return self._tempo.hop_time(index)

    def current_time(self) -> float:
        """Session time of the current frame."""
        if self._windower.hops == 0:
            return 0.0
        return self.hop_time(self._windower.hops - 1)

    def tick(self) -> list[PitchEstimate | None]:
        """
        One analysis cadence tick.

        Drains the inbox into the sample queue, then advances the window by
        up to config.max_hops_per_tick whole hops. Each successful hop feeds
        both estimators.

        Returns:
            One entry per successful hop: its PitchEstimate, or None when
            that frame gave no estimate. Empty when no full hop was
            available, when the session is stopped, or when the tick
            overlapped a running one (then it is dropped and counted).
        """
        if not self._tick_guard.acquire(blocking=False):
            self._dropped_ticks += 1
            logger.debug("tick overlapped a running tick, dropped")
            return []
        try:
            if not self._active:
                return []
            self._drain_inbox()
            results = []
            for _ in range(self.config.max_hops_per_tick):
                if not self._windower.advance():
                    break
                frame = self._windower.frame
                results.append(self._pitch.push_frame(frame))
                self._tempo.push_frame(frame)
            return results
        finally:
            self._tick_guard.release()

    def _drain_inbox(self) -> None:
        while True:
            try:
                chunk = self._inbox.get_nowait()
            except queue.Empty:
                return
            self._queue.push(chunk)

    def finalize(self) -> TempoEstimate:
        """Resolve tempo from the hops accumulated so far (session stays open)."""
        return self._tempo.finalize(self.config.min_bpm, self.config.max_bpm)

    # --- lifecycle ---

    def start(self, on_pitch: Callable[[PitchEstimate | None], None] | None = None) -> None:
        """
        Run tick() on a daemon thread every hop duration.

        on_pitch, if given, is called from that thread once per successful
        hop. No-op if the ticker is already running or the session stopped.
        """
        if self._ticker is not None or not self._active:
            return
        self._ticker_stop = threading.Event()
        self._ticker = threading.Thread(
            target=self._run_ticker,
            args=(self._ticker_stop, on_pitch),
            name="analysis-ticker",
            daemon=True,
        )
        self._ticker.start()
        logger.debug("analysis ticker started (every %.1f ms)", self.config.hop_seconds * 1000)

    def _run_ticker(
        self,
        stop: threading.Event,
        on_pitch: Callable[[PitchEstimate | None], None] | None,
    ) -> None:
        while not stop.wait(self.config.hop_seconds):
            for estimate in self.tick():
                if on_pitch is not None:
                    on_pitch(estimate)

    def stop(self) -> TempoEstimate:
        """
        End the session: finalize tempo, then tear everything down.

        Idempotent. The first call computes the estimate and clears the
        queue and novelty history; later calls return the same estimate.
        Does not wait for the ticker thread to exit.
        """
        self._ticker_stop.set()
        with self._tick_guard:
            if self._result is not None:
                return self._result
            self._result = self.finalize()
            self._active = False
            self._clear()
        logger.debug(
            "session stopped: bpm=%s confidence=%.2f",
            self._result.bpm, self._result.confidence,
        )
        return self._result

    def reset(self) -> None:
        """
        Clear all session state and reopen the session for a new recording.

        Idempotent; safe to call on a fresh or already stopped session.
        """
        self._ticker_stop.set()
        with self._tick_guard:
            self._clear()
            self._result = None
            self._active = True
        self._ticker = None

    def _clear(self) -> None:
        self._drain_inbox()
        self._queue.reset()
        self._windower.reset()
        self._pitch.reset()
        self._tempo.reset()

    def click_scheduler(
        self,
        start_time: float,
        duration_seconds: float,
        **kwargs,
    ) -> ClickScheduler | None:
        """
        Build a ClickScheduler from this session's tempo estimate.

        Returns None when the session has no tempo (not stopped yet, or the
        estimate has no bpm). Extra keyword arguments go to ClickScheduler.
        """
        if self._result is None or self._result.bpm is None:
            return None
        kwargs.setdefault("lookahead_seconds", self.config.scheduler_lookahead_ms / 1000.0)
        kwargs.setdefault("cadence_seconds", self.config.scheduler_cadence_ms / 1000.0)
        return ClickScheduler(
            self._result.bpm,
            start_time,
            duration_seconds,
            self._result.beat_offset_seconds,
            **kwargs,
        )
