"""
pitch-tempo: live pitch and session tempo from a microphone stream.

Usage:
    from pitch_tempo import AnalysisConfig, AnalysisSession
    session = AnalysisSession(AnalysisConfig(sample_rate=48000))
    session.push(block)              # from the capture thread
    estimates = session.tick()       # from the analysis timer
    tempo = session.stop()           # at the end of the recording
    print(tempo.bpm, tempo.beat_offset_seconds)

For a recording on disk:
    from pitch_tempo import analyze_file
    report = analyze_file("take.wav")
"""

__version__ = "0.1.0"

from pitch_tempo.types import (
    NoveltySample,
    PitchEstimate,
    SessionReport,
    TempoCandidate,
    TempoEstimate,
    WindowState,
)
from pitch_tempo.config import AnalysisConfig
from pitch_tempo.buffer import FrameWindower, InsufficientData, SampleQueue
from pitch_tempo.precision.pitch import PitchEstimator
from pitch_tempo.precision.tempo import TempoEstimator
from pitch_tempo.metronome import ClickScheduler, schedule_clicks
from pitch_tempo.session import AnalysisSession
from pitch_tempo.analyze import analyze_file, analyze_samples

__all__ = [
    "AnalysisConfig",
    "AnalysisSession",
    "ClickScheduler",
    "FrameWindower",
    "InsufficientData",
    "NoveltySample",
    "PitchEstimate",
    "PitchEstimator",
    "SampleQueue",
    "SessionReport",
    "TempoCandidate",
    "TempoEstimate",
    "TempoEstimator",
    "WindowState",
    "analyze_file",
    "analyze_samples",
    "schedule_clicks",
]
