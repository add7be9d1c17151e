"""
Monophonic pitch estimation, YIN-lite.

Pure numpy. One frame in, one f0 (or None) out. Stateless across frames
apart from remembering the last good estimate for display purposes.

Algorithm (per frame):
    1. RMS gate: quiet frames are not worth estimating.
    2. Difference function d(tau) over the lag range implied by
       [min_freq, max_freq].
    3. Cumulative mean normalized difference (CMND), which suppresses the
       octave-low bias of plain autocorrelation.
    4. First dip below threshold, then walk down to the bottom of that dip.
    5. Parabolic interpolation for sub-sample lag.
"""

import math

import numpy as np

from pitch_tempo.types import PitchEstimate

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

# MIDI number of the tuning reference note (A4)
_REFERENCE_MIDI = 69

_EPS = 1e-12


def frame_rms(frame: np.ndarray) -> float:
    """Root mean square of a frame (0.0 for an empty frame)."""
    if len(frame) == 0:
        return 0.0
    x = frame.astype(np.float64)
    return float(np.sqrt(np.mean(x * x)))


def difference_function(frame: np.ndarray, min_lag: int, max_lag: int) -> np.ndarray:
    """
    YIN difference function d(tau) = sum_i (x[i] - x[i+tau])^2.

    Returns an array of length max_lag + 1. Entries below min_lag are left
    at zero (they are never searched).
    """
    x = frame.astype(np.float64)
    n = len(x)
    d = np.zeros(max_lag + 1)
    for tau in range(min_lag, max_lag + 1):
        diff = x[: n - tau] - x[tau:]
        d[tau] = np.dot(diff, diff)
    return d


def cumulative_mean_normalized_difference(d: np.ndarray) -> np.ndarray:
    """CMND: cmnd[0] = 1, cmnd[tau] = d[tau] * tau / sum(d[1..tau])."""
    cmnd = np.ones(len(d))
    if len(d) > 1:
        running = np.cumsum(d[1:])
        taus = np.arange(1, len(d))
        cmnd[1:] = d[1:] * taus / (running + _EPS)
    return cmnd


def find_dip(cmnd: np.ndarray, min_lag: int, threshold: float) -> int | None:
    """
    First lag >= min_lag with cmnd below threshold, refined to the bottom of
    its dip by walking forward while cmnd keeps strictly decreasing.
    """
    below = np.nonzero(cmnd[min_lag:] < threshold)[0]
    if len(below) == 0:
        return None
    tau = min_lag + int(below[0])
    while tau + 1 < len(cmnd) and cmnd[tau + 1] < cmnd[tau]:
        tau += 1
    return tau


def parabolic_interpolation(values: np.ndarray, i: int) -> float:
    """
    Sub-sample position of the extremum around index i.

    Falls back to i itself at the array edges or when the three points are
    (numerically) collinear.
    """
    if i - 1 < 0 or i + 1 >= len(values):
        return float(i)
    y0, y1, y2 = values[i - 1], values[i], values[i + 1]
    denom = y0 - 2.0 * y1 + y2
    if abs(denom) < _EPS:
        return float(i)
    return i + 0.5 * (y0 - y2) / denom


def estimate_f0(
    frame: np.ndarray,
    sample_rate: int,
    min_freq: float = 70.0,
    max_freq: float = 1600.0,
    *,
    silence_threshold: float = 0.01,
    dip_threshold: float = 0.12,
) -> float | None:
    """
    Estimate the fundamental frequency of one frame.

    Args:
        frame: Time-domain samples (mono float).
        sample_rate: Samples per second.
        min_freq: Lowest frequency to report (sets the longest lag).
        max_freq: Highest frequency to report (sets the shortest lag).
        silence_threshold: Frames with RMS below this are not estimated.
        dip_threshold: CMND value a lag must fall below to count as periodic.

    Returns:
        f0 in Hz within [min_freq, max_freq], or None if the frame is silent,
        aperiodic, or the result is out of range or non-finite.
    """
    rms = frame_rms(frame)
    if not math.isfinite(rms) or rms < silence_threshold:
        return None

    n = len(frame)
    min_lag = max(1, int(sample_rate // max_freq))
    max_lag = min(int(sample_rate // min_freq), n - 1)
    if max_lag <= min_lag:
        return None

    d = difference_function(frame, min_lag, max_lag)
    cmnd = cumulative_mean_normalized_difference(d)

    tau = find_dip(cmnd, min_lag, dip_threshold)
    if tau is None:
        return None

    refined = parabolic_interpolation(cmnd, tau)
    if refined <= 0:
        return None

    f0 = sample_rate / refined
    if not math.isfinite(f0) or f0 < min_freq or f0 > max_freq:
        return None
    return f0


def freq_to_note(freq_hz: float, reference_hz: float = 440.0) -> tuple[str, float]:
    """
    Nearest chromatic note and signed cents deviation.

    Args:
        freq_hz: Frequency to name (must be positive).
        reference_hz: Tuning of A4.

    Returns:
        (note_name, cents), e.g. ("A4", 0.0) for 440 Hz or ("C#5", -12.3).
    """
    semitones = 12.0 * math.log2(freq_hz / reference_hz)
    index = round(semitones)
    cents = 100.0 * (semitones - index)
    midi = _REFERENCE_MIDI + index
    name = f"{NOTE_NAMES[midi % 12]}{midi // 12 - 1}"
    return name, round(cents, 1)


class PitchEstimator:
    """
    Per-frame pitch estimator with fixed parameters.

    Usage:
        estimator = PitchEstimator(sample_rate=48000)
        estimate = estimator.push_frame(frame)  # PitchEstimate or None
    """

    def __init__(
        self,
        sample_rate: int,
        min_freq: float = 70.0,
        max_freq: float = 1600.0,
        *,
        silence_threshold: float = 0.01,
        dip_threshold: float = 0.12,
        reference_hz: float = 440.0,
    ):
        self.sample_rate = sample_rate
        self.min_freq = min_freq
        self.max_freq = max_freq
        self.silence_threshold = silence_threshold
        self.dip_threshold = dip_threshold
        self.reference_hz = reference_hz
        self._last: PitchEstimate | None = None

    @property
    def last(self) -> PitchEstimate | None:
        """Most recent successful estimate. Never substituted for a miss."""
        return self._last

    def push_frame(self, frame: np.ndarray) -> PitchEstimate | None:
        f0 = estimate_f0(
            frame,
            self.sample_rate,
            self.min_freq,
            self.max_freq,
            silence_threshold=self.silence_threshold,
            dip_threshold=self.dip_threshold,
        )
        if f0 is None:
            return None

        note_name, cents = freq_to_note(f0, self.reference_hz)
        self._last = PitchEstimate(freq_hz=f0, note_name=note_name, cents=cents)
        return self._last

    def reset(self) -> None:
        self._last = None
