"""
Offline analysis pipeline.

Replays a recording through the same streaming session the live path uses,
in capture-sized chunks, so file results match what a live session would
have produced.
"""

from __future__ import annotations

import numpy as np

from pitch_tempo.config import AnalysisConfig
from pitch_tempo.session import AnalysisSession
from pitch_tempo.types import PitchEstimate, SessionReport

# Block size the capture side delivers in live use
CAPTURE_CHUNK = 2048


def analyze_samples(
    samples: np.ndarray,
    sample_rate: int,
    config: AnalysisConfig | None = None,
    chunk_size: int = CAPTURE_CHUNK,
) -> SessionReport:
    """
    Run pitch and tempo analysis over an in-memory mono signal.

    Args:
        samples: Mono float samples in [-1, 1].
        sample_rate: Samples per second. Overrides config.sample_rate.
        config: Analysis settings; defaults for `sample_rate` if None.
        chunk_size: Size of the simulated capture blocks.

    Returns:
        SessionReport with the tempo estimate and the per-hop pitch track.
    """
    if config is None:
        config = AnalysisConfig(sample_rate=sample_rate)
    elif config.sample_rate != sample_rate:
        # hop_size=0 re-derives the ~10 ms hop for the new rate
        config = config.with_overrides(sample_rate=sample_rate, hop_size=0)

    session = AnalysisSession(config)
    pitches: list[tuple[float, PitchEstimate]] = []

    def collect(results: list[PitchEstimate | None]) -> None:
        first_hop = session.hops - len(results)
        for i, estimate in enumerate(results):
            if estimate is not None:
                pitches.append((session.hop_time(first_hop + i), estimate))

    samples = np.asarray(samples, dtype=np.float32).reshape(-1)
    for start in range(0, len(samples), chunk_size):
        session.push(samples[start:start + chunk_size])
        collect(session.tick())

    # Drain whatever the per-tick hop limit left behind
    while True:
        results = session.tick()
        if not results:
            break
        collect(results)

    hops = session.hops
    tempo = session.stop()
    return SessionReport(
        tempo=tempo,
        pitches=pitches,
        hops=hops,
        duration_seconds=len(samples) / sample_rate,
    )


def analyze_file(
    audio_path: str,
    config: AnalysisConfig | None = None,
    chunk_size: int = CAPTURE_CHUNK,
) -> SessionReport:
    """
    Analyze an audio file (wav, flac, ogg, ... anything soundfile reads).

    Multi-channel audio is mixed down to mono.
    """
    from pitch_tempo.devices.audiofile import load_audio

    samples, sample_rate = load_audio(audio_path)
    return analyze_samples(samples, sample_rate, config, chunk_size)
