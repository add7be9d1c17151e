"""
Session tempo from onset novelty.

Pure numpy, two phases:

    Phase 1 (per hop, causal, cheap): record unnormalized onset cues,
        spectral flux and positive RMS change, for each analysis frame.
    Phase 2 (finalize, batch): normalize by session-wide maxima, smooth,
        autocorrelate over the BPM lag range, pick and fold peaks, merge
        near-duplicates, and phase-align the winner.

Phase 2 needs the whole session because normalization uses global extrema,
so it cannot be made causal without changing the result.
"""

import logging
import math

import numpy as np

from pitch_tempo.precision.pitch import frame_rms
from pitch_tempo.types import NoveltySample, TempoCandidate, TempoEstimate

logger = logging.getLogger(__name__)

FLUX_WEIGHT = 0.7
RMS_WEIGHT = 0.3
MAX_PEAKS = 8

_EPS = 1e-12


def magnitude_spectrum(frame: np.ndarray) -> np.ndarray:
    """Magnitude of the real FFT of the raw (unwindowed) frame."""
    return np.abs(np.fft.rfft(frame.astype(np.float64)))


def spectral_flux(magnitude: np.ndarray, previous: np.ndarray | None) -> float:
    """Sum of positive per-bin magnitude increases. 0.0 without a previous frame."""
    if previous is None:
        return 0.0
    rise = magnitude - previous
    return float(np.sum(rise[rise > 0]))


def combine_novelty(history: list[NoveltySample]) -> np.ndarray:
    """
    Normalize flux and RMS rise by their session maxima and blend them.

    novelty = 0.7 * flux / max(flux) + 0.3 * rms_diff / max(rms_diff)
    """
    flux = np.array([s.flux for s in history], dtype=np.float64)
    rms = np.array([s.rms_diff for s in history], dtype=np.float64)
    flux_max = max(float(flux.max()), _EPS) if len(flux) else _EPS
    rms_max = max(float(rms.max()), _EPS) if len(rms) else _EPS
    return FLUX_WEIGHT * flux / flux_max + RMS_WEIGHT * rms / rms_max


def smooth_novelty(novelty: np.ndarray, radius: int = 2) -> np.ndarray:
    """
    Edge-truncated moving average: each output is the mean of the inputs
    within +-radius that actually exist.
    """
    x = np.asarray(novelty, dtype=np.float64)
    n = len(x)
    if n == 0 or radius == 0:
        return x.copy()
    cumsum = np.concatenate(([0.0], np.cumsum(x)))
    i = np.arange(n)
    lo = np.maximum(0, i - radius)
    hi = np.minimum(n, i + radius + 1)
    return (cumsum[hi] - cumsum[lo]) / (hi - lo)


def autocorrelate(signal: np.ndarray, min_lag: int, max_lag: int) -> np.ndarray:
    """
    Raw autocorrelation acf[lag] = sum_i signal[i] * signal[i + lag].

    Returns an array of length max_lag + 1; lags below min_lag (or beyond
    the signal length) are zero.
    """
    acf = np.zeros(max_lag + 1)
    n = len(signal)
    for lag in range(min_lag, min(max_lag, n - 1) + 1):
        acf[lag] = np.dot(signal[: n - lag], signal[lag:])
    return acf


def pick_peaks(acf: np.ndarray, min_lag: int, max_lag: int, limit: int = MAX_PEAKS) -> list[tuple[int, float]]:
    """
    Strict interior local maxima with min_lag < lag < max_lag, strongest first.

    Returns:
        Up to `limit` (lag, value) pairs sorted by value descending.
    """
    peaks = []
    for lag in range(min_lag + 1, max_lag):
        if acf[lag] > acf[lag - 1] and acf[lag] > acf[lag + 1]:
            peaks.append((lag, float(acf[lag])))
    peaks.sort(key=lambda p: p[1], reverse=True)
    return peaks[:limit]


def fold_bpm(bpm: float, min_bpm: float, max_bpm: float) -> float:
    """
    Fold a BPM into [min_bpm, max_bpm] by octaves.

    Halves while above max_bpm, doubles while below min_bpm. Resolves the
    octave ambiguity of periodicity estimates (a 240 BPM pulse is read as
    120). Needs max_bpm >= 2 * min_bpm for every input to land in range.
    """
    if not math.isfinite(bpm) or bpm <= 0:
        raise ValueError(f"cannot fold non-positive BPM {bpm}")
    while bpm > max_bpm:
        bpm *= 0.5
    while bpm < min_bpm:
        bpm *= 2.0
    return bpm


def merge_candidates(candidates: list[TempoCandidate], tolerance: float = 2.5) -> list[TempoCandidate]:
    """
    Collapse candidates whose BPM values are within `tolerance` of each other.

    Candidates are sorted by BPM and merged left to right into the running
    group: BPM becomes the strength-weighted mean, strength the sum.

    Returns:
        Merged candidates sorted by strength descending.
    """
    merged: list[TempoCandidate] = []
    for c in sorted(candidates, key=lambda c: c.bpm):
        if merged and abs(merged[-1].bpm - c.bpm) < tolerance:
            last = merged[-1]
            total = last.strength + c.strength
            if total > 0:
                bpm = (last.bpm * last.strength + c.bpm * c.strength) / total
            else:
                bpm = (last.bpm + c.bpm) / 2.0
            merged[-1] = TempoCandidate(bpm=bpm, strength=total)
        else:
            merged.append(c)
    merged.sort(key=lambda c: c.strength, reverse=True)
    return merged


def beat_phase(novelty: np.ndarray, period_hops: float) -> int:
    """
    Hop index in [0, round(period_hops)) whose comb of beats best matches
    the novelty curve (highest mean novelty at phase + round(k * period)).
    """
    n = len(novelty)
    width = max(1, int(round(period_hops)))
    best_phase = 0
    best_score = -1.0
    for phase in range(min(width, n)):
        idx = np.round(phase + np.arange(0.0, n - phase, period_hops)).astype(int)
        idx = idx[idx < n]
        score = float(novelty[idx].mean())
        if score > best_score:
            best_phase = phase
            best_score = score
    return best_phase


class TempoEstimator:
    """
    Accumulates per-hop novelty for one session and resolves it at the end.

    Usage:
        tempo = TempoEstimator(sample_rate=48000, frame_size=1024, hop_size=480)
        for frame in frames:           # one call per successful hop
            tempo.push_frame(frame)
        estimate = tempo.finalize(min_bpm=40, max_bpm=200)
        tempo.reset()
    """

    def __init__(
        self,
        sample_rate: int,
        frame_size: int = 1024,
        hop_size: int = 480,
        *,
        min_session_seconds: float = 3.0,
        smoothing_radius: int = 2,
        merge_tolerance: float = 2.5,
    ):
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.hop_size = hop_size
        self.hop_seconds = hop_size / sample_rate
        self.min_session_seconds = min_session_seconds
        self.smoothing_radius = smoothing_radius
        self.merge_tolerance = merge_tolerance

        self._prev_rms = 0.0
        self._prev_mag: np.ndarray | None = None
        self._history: list[NoveltySample] = []

    @property
    def history(self) -> list[NoveltySample]:
        return list(self._history)

    @property
    def duration_seconds(self) -> float:
        """Time covered by the accumulated hops."""
        return len(self._history) * self.hop_seconds

    def push_frame(self, frame: np.ndarray) -> NoveltySample:
        """Record onset cues for one hop-advanced frame."""
        rms = frame_rms(frame)
        if not math.isfinite(rms):
            rms = 0.0
        rms_diff = max(0.0, rms - self._prev_rms)
        self._prev_rms = rms

        mag = magnitude_spectrum(frame)
        if not np.all(np.isfinite(mag)):
            mag = np.nan_to_num(mag, nan=0.0, posinf=0.0, neginf=0.0)
        flux = spectral_flux(mag, self._prev_mag)
        self._prev_mag = mag

        sample = NoveltySample(flux=flux, rms_diff=rms_diff)
        self._history.append(sample)
        return sample

    def hop_time(self, index: int) -> float:
        """Session time of hop `index`: centre of the newest hop in that frame."""
        return (self.frame_size - self.hop_size / 2.0 + index * self.hop_size) / self.sample_rate

    def finalize(self, min_bpm: float = 40.0, max_bpm: float = 200.0) -> TempoEstimate:
        """
        Resolve BPM, confidence and beat phase from the accumulated history.

        Returns:
            TempoEstimate. bpm is None (confidence 0) when the session covers
            less than min_session_seconds or the autocorrelation has no
            interior peak in the BPM lag range.
        """
        if self.duration_seconds < self.min_session_seconds:
            logger.debug(
                "finalize: %.2fs of support < %.2fs, no tempo",
                self.duration_seconds, self.min_session_seconds,
            )
            return TempoEstimate(bpm=None, confidence=0.0)

        novelty = combine_novelty(self._history)
        smoothed = smooth_novelty(novelty, self.smoothing_radius)

        min_lag = max(1, int((60.0 / max_bpm) / self.hop_seconds))
        max_lag = int((60.0 / min_bpm) / self.hop_seconds)
        acf = autocorrelate(smoothed, min_lag, max_lag)

        peaks = pick_peaks(acf, min_lag, max_lag)
        if not peaks:
            logger.debug("finalize: no autocorrelation peaks in lags %d-%d", min_lag, max_lag)
            return TempoEstimate(bpm=None, confidence=0.0)

        candidates = [
            TempoCandidate(
                bpm=fold_bpm(60.0 / (lag * self.hop_seconds), min_bpm, max_bpm),
                strength=strength,
            )
            for lag, strength in peaks
        ]
        merged = merge_candidates(candidates, self.merge_tolerance)

        best = merged[0]
        total = sum(c.strength for c in merged)
        confidence = best.strength / total if total > 0 else 0.0
        if not math.isfinite(best.bpm) or not math.isfinite(confidence):
            return TempoEstimate(bpm=None, confidence=0.0)

        period_seconds = 60.0 / best.bpm
        # Unsmoothed: the moving average turns each onset into a flat plateau
        phase = beat_phase(novelty, period_seconds / self.hop_seconds)
        offset = self.hop_time(phase) % period_seconds

        estimate = TempoEstimate(
            bpm=int(round(best.bpm)),
            confidence=round(min(1.0, confidence), 3),
            beat_offset_seconds=offset,
            candidates=merged,
        )
        logger.debug(
            "finalize: %d BPM (confidence %.2f, offset %.3fs) from %d hops",
            estimate.bpm, estimate.confidence, estimate.beat_offset_seconds, len(self._history),
        )
        return estimate

    def reset(self) -> None:
        """Forget all accumulated history so the estimator can serve a new session."""
        self._prev_rms = 0.0
        self._prev_mag = None
        self._history.clear()
