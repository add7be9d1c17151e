"""Tests for novelty accumulation and session tempo resolution. Synthetic audio only."""

import numpy as np
import pytest

from pitch_tempo.buffer import FrameWindower, SampleQueue
from pitch_tempo.precision.tempo import (
    TempoEstimator,
    autocorrelate,
    beat_phase,
    combine_novelty,
    fold_bpm,
    merge_candidates,
    pick_peaks,
    smooth_novelty,
    spectral_flux,
)
from pitch_tempo.types import NoveltySample, TempoCandidate

# 16 kHz with a 160-sample hop keeps hop_seconds at exactly 10 ms
SR = 16000
FRAME = 1024
HOP = 160


def _click(n=32):
    """A 2 ms decaying 2 kHz blip, short enough to enter a frame within one hop."""
    t = np.arange(n) / SR
    return (0.8 * np.sin(2 * np.pi * 2000.0 * t) * np.exp(-600.0 * t)).astype(np.float32)


def _click_train(bpm, seconds, first_click=0.25, noise=0.0, seed=0):
    """Clicks every 60/bpm seconds starting at first_click."""
    signal = np.zeros(int(seconds * SR), dtype=np.float32)
    if noise:
        rng = np.random.default_rng(seed)
        signal += rng.normal(0.0, noise, len(signal)).astype(np.float32)
    click = _click()
    t = first_click
    while t < seconds:
        start = int(round(t * SR))
        end = min(len(signal), start + len(click))
        signal[start:end] += click[: end - start]
        t += 60.0 / bpm
    return signal


def _estimate(signal, frame_size=FRAME, **kwargs):
    """Window the signal hop by hop and feed every frame to a TempoEstimator."""
    queue = SampleQueue()
    windower = FrameWindower(queue, frame_size, HOP)
    tempo = TempoEstimator(SR, frame_size, HOP, **kwargs)
    queue.push(signal)
    while windower.advance():
        tempo.push_frame(windower.frame)
    return tempo


# --- end-to-end tempo ---

def test_click_train_120bpm():
    """8 seconds of clicks at 120 BPM resolve to 120 with clear dominance."""
    tempo = _estimate(_click_train(120, 8.0))
    result = tempo.finalize(min_bpm=40, max_bpm=200)
    assert result.bpm is not None
    assert abs(result.bpm - 120) <= 2
    assert result.confidence > 0.3
    assert 0.0 < result.confidence <= 1.0


def test_click_train_90bpm():
    """A tempo whose period is not a round number of hops."""
    tempo = _estimate(_click_train(90, 10.0))
    result = tempo.finalize()
    assert result.bpm is not None
    assert abs(result.bpm - 90) <= 2


def test_click_train_with_background_noise():
    """Low-level noise does not move the estimate."""
    tempo = _estimate(_click_train(120, 8.0, noise=0.001))
    result = tempo.finalize()
    assert result.bpm is not None
    assert abs(result.bpm - 120) <= 2


def test_short_session_has_no_tempo():
    """Under 3 seconds of hops gives bpm None and confidence 0, whatever the content."""
    tempo = _estimate(_click_train(120, 2.9))
    assert tempo.duration_seconds < 3.0
    result = tempo.finalize()
    assert result.bpm is None
    assert result.confidence == 0.0


def test_empty_session_has_no_tempo():
    tempo = TempoEstimator(SR, FRAME, HOP)
    result = tempo.finalize()
    assert result.bpm is None
    assert result.confidence == 0.0


def test_silence_has_no_tempo():
    """A long silent session has no autocorrelation peaks."""
    tempo = _estimate(np.zeros(6 * SR, dtype=np.float32))
    result = tempo.finalize()
    assert result.bpm is None
    assert result.confidence == 0.0


def test_restricted_range_picks_slower_pulse():
    """With max_bpm=100, a 120 BPM click train is read at the 60 BPM level."""
    tempo = _estimate(_click_train(120, 8.0))
    result = tempo.finalize(min_bpm=40, max_bpm=100)
    assert result.bpm is not None
    assert abs(result.bpm - 60) <= 2


def test_result_within_bpm_range():
    tempo = _estimate(_click_train(150, 8.0))
    result = tempo.finalize(min_bpm=40, max_bpm=200)
    assert result.bpm is not None
    assert 40 <= result.bpm <= 200


# --- beat phase ---

@pytest.mark.parametrize("first_click, expected", [
    (0.25, 0.25),
    (0.33, 0.33),
    (0.9, 0.4),    # 0.9 s reduced modulo the 0.5 s beat
])
def test_beat_offset_matches_first_click(first_click, expected):
    """beat_offset_seconds is the click phase relative to session start."""
    tempo = _estimate(_click_train(120, 8.0, first_click=first_click))
    result = tempo.finalize()
    assert result.bpm == 120
    assert result.beat_offset_seconds == pytest.approx(expected, abs=0.015)
    assert 0.0 <= result.beat_offset_seconds < 60.0 / result.bpm


def test_beat_offset_keeps_full_precision():
    """The offset is the exact hop time of the winning phase, not a rounded copy.

    With a 1001-sample frame the click at 0.25 s first lands in hop 19,
    whose time (1001 - 80 + 19 * 160) / 16000 = 0.2475625 s needs seven
    decimals.
    """
    tempo = _estimate(_click_train(120, 8.0), frame_size=1001)
    result = tempo.finalize()
    assert result.bpm == 120
    assert result.beat_offset_seconds == pytest.approx(tempo.hop_time(19), abs=1e-12)
    assert result.beat_offset_seconds == pytest.approx(0.2475625, abs=1e-12)


def test_beat_phase_comb():
    """Spikes every 10 hops starting at hop 3 give phase 3."""
    novelty = np.zeros(100)
    novelty[3::10] = 1.0
    assert beat_phase(novelty, 10.0) == 3


def test_hop_time_is_newest_hop_centre():
    tempo = TempoEstimator(SR, FRAME, HOP)
    assert tempo.hop_time(0) == pytest.approx((FRAME - HOP / 2) / SR)
    assert tempo.hop_time(10) - tempo.hop_time(9) == pytest.approx(HOP / SR)


# --- phase 1 accumulation ---

def test_first_frame_has_no_flux():
    tempo = TempoEstimator(SR, FRAME, HOP)
    sample = tempo.push_frame(np.ones(FRAME, dtype=np.float32) * 0.5)
    assert sample.flux == 0.0
    assert sample.rms_diff == pytest.approx(0.5)


def test_rms_diff_is_never_negative():
    """Getting quieter records zero, not a negative rise."""
    tempo = TempoEstimator(SR, FRAME, HOP)
    tempo.push_frame(np.ones(FRAME, dtype=np.float32))
    sample = tempo.push_frame(np.ones(FRAME, dtype=np.float32) * 0.1)
    assert sample.rms_diff == 0.0
    assert sample.flux == pytest.approx(0.0, abs=1e-9)


def test_non_finite_frame_keeps_hop_spacing():
    """A NaN frame still appends one finite sample."""
    tempo = TempoEstimator(SR, FRAME, HOP)
    frame = np.zeros(FRAME, dtype=np.float32)
    frame[0] = np.nan
    tempo.push_frame(np.zeros(FRAME, dtype=np.float32))
    sample = tempo.push_frame(frame)
    assert len(tempo.history) == 2
    assert np.isfinite(sample.flux)
    assert np.isfinite(sample.rms_diff)


def test_reset_clears_history():
    tempo = _estimate(_click_train(120, 4.0))
    assert tempo.duration_seconds > 3.0
    tempo.reset()
    tempo.reset()
    assert tempo.history == []
    assert tempo.duration_seconds == 0.0
    # A fresh first frame has no previous spectrum again
    assert tempo.push_frame(np.ones(FRAME, dtype=np.float32)).flux == 0.0


def test_spectral_flux_counts_only_rises():
    prev = np.array([1.0, 2.0, 3.0])
    cur = np.array([2.0, 1.0, 5.0])
    assert spectral_flux(cur, prev) == pytest.approx(3.0)
    assert spectral_flux(cur, None) == 0.0


# --- phase 2 building blocks ---

def test_combine_novelty_weights():
    history = [
        NoveltySample(flux=2.0, rms_diff=0.0),
        NoveltySample(flux=0.0, rms_diff=0.5),
        NoveltySample(flux=1.0, rms_diff=0.25),
    ]
    novelty = combine_novelty(history)
    np.testing.assert_allclose(novelty, [0.7, 0.3, 0.35 + 0.15])


def test_combine_novelty_all_zero_is_finite():
    """Zero maxima are epsilon-floored instead of dividing by zero."""
    novelty = combine_novelty([NoveltySample(0.0, 0.0)] * 4)
    np.testing.assert_array_equal(novelty, np.zeros(4))


def test_smooth_novelty_edge_truncated():
    x = np.array([5.0, 0.0, 0.0, 0.0, 0.0, 0.0])
    smoothed = smooth_novelty(x, radius=2)
    # index 0 averages x[0..2], index 1 x[0..3], index 2 x[0..4]
    np.testing.assert_allclose(smoothed[:4], [5 / 3, 5 / 4, 1.0, 0.0], atol=1e-12)


def test_smooth_novelty_short_input():
    """Shorter than the window still yields one value per input."""
    smoothed = smooth_novelty(np.array([1.0, 2.0]), radius=2)
    np.testing.assert_allclose(smoothed, [1.5, 1.5])


def test_autocorrelate_and_peaks():
    """A pulse every 10 samples peaks at lag 10 (20 sits on the range edge)."""
    x = np.zeros(100)
    x[::10] = 1.0
    acf = autocorrelate(x, min_lag=5, max_lag=20)
    assert len(acf) == 21
    assert acf[10] == pytest.approx(9.0)
    peaks = pick_peaks(acf, 5, 20)
    assert [lag for lag, _ in peaks] == [10]


def test_pick_peaks_keeps_top_eight():
    acf = np.zeros(40)
    acf[2:38:4] = np.arange(1, 10)  # nine isolated peaks
    peaks = pick_peaks(acf, 1, 39)
    assert len(peaks) == 8
    assert peaks[0][1] == 9.0
    assert all(a[1] >= b[1] for a, b in zip(peaks, peaks[1:]))


# --- octave folding ---

@pytest.mark.parametrize("raw, folded", [
    (120.0, 120.0),
    (240.0, 120.0),   # double tempo halves
    (60.0, 60.0),
    (30.0, 60.0),     # half of 60 doubles back
    (480.0, 120.0),
    (20.0, 40.0),
    (400.0, 200.0),   # lands exactly on max, stays
    (19.0, 76.0),
])
def test_fold_bpm(raw, folded):
    assert fold_bpm(raw, 40.0, 200.0) == pytest.approx(folded)


def test_fold_bpm_rejects_non_positive():
    with pytest.raises(ValueError):
        fold_bpm(0.0, 40.0, 200.0)


# --- candidate merging ---

def test_merge_weighted_average():
    candidates = [
        TempoCandidate(bpm=120.0, strength=1.0),
        TempoCandidate(bpm=60.0, strength=2.0),
        TempoCandidate(bpm=121.5, strength=3.0),
    ]
    merged = merge_candidates(candidates, tolerance=2.5)
    assert len(merged) == 2
    assert merged[0].bpm == pytest.approx((120.0 * 1 + 121.5 * 3) / 4)
    assert merged[0].strength == pytest.approx(4.0)
    assert merged[1].bpm == 60.0


def test_merge_is_chained_against_running_group():
    """100 and 102 merge to 101; 104 is 3 away from 101 and stays separate."""
    candidates = [TempoCandidate(bpm, 1.0) for bpm in (100.0, 102.0, 104.0)]
    merged = merge_candidates(candidates, tolerance=2.5)
    assert sorted(c.bpm for c in merged) == pytest.approx([101.0, 104.0])
