"""
Audio file input/output and click rendering.

Thin wrapper around soundfile, used by the offline analysis
pipeline and the CLI. The core never touches files.
"""

from __future__ import annotations

import warnings

import numpy as np


def _require_soundfile():
    try:
        import soundfile
    except ImportError as e:
        raise ImportError(
            "soundfile is required for reading and writing audio files. "
            "Install with: pip install -e '.[files]'"
        ) from e
    return soundfile


def load_audio(path: str) -> tuple[np.ndarray, int]:
    """
    Read an audio file as mono float32.

    Multi-channel files are down-mixed by averaging channels (with a warning).

    Returns:
        (samples, sample_rate)
    """
    sf = _require_soundfile()
    data, sample_rate = sf.read(path, dtype="float32", always_2d=True)
    if data.shape[1] > 1:
        warnings.warn(f"{path} has {data.shape[1]} channels; mixing down to mono")
    mono = data.mean(axis=1).astype(np.float32)
    return mono, int(sample_rate)


def write_audio(path: str, samples: np.ndarray, sample_rate: int) -> None:
    """Write mono float samples, clipped to [-1, 1]."""
    sf = _require_soundfile()
    sf.write(path, np.clip(samples, -1.0, 1.0), sample_rate)


def click_waveform(sample_rate: int, freq: float = 1500.0, duration_ms: float = 15.0) -> np.ndarray:
    """
    A short metronome click: a sine at `freq` under an exp(-120 t) envelope.

    Returns:
        float32 array of int(sample_rate * duration_ms / 1000) samples.
    """
    n = int(sample_rate * duration_ms / 1000.0)
    t = np.arange(n) / sample_rate
    return (np.sin(2.0 * np.pi * freq * t) * np.exp(-120.0 * t)).astype(np.float32)


def render_click_track(
    timestamps: list[float],
    sample_rate: int,
    n_samples: int,
    click: np.ndarray | None = None,
    gain: float = 0.5,
) -> np.ndarray:
    """
    Place a click at each timestamp (seconds from sample 0).

    Clicks that start outside [0, n_samples) are dropped; a click that
    starts inside but runs past the end is truncated.
    """
    if click is None:
        click = click_waveform(sample_rate)
    track = np.zeros(n_samples, dtype=np.float32)
    for t in timestamps:
        start = int(round(t * sample_rate))
        if start < 0 or start >= n_samples:
            continue
        end = min(n_samples, start + len(click))
        track[start:end] += gain * click[: end - start]
    return track
