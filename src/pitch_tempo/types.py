"""
Data types for live pitch and session tempo analysis.

This module defines all shared types. It has no dependencies beyond
the standard library.
"""

from dataclasses import dataclass, field
from enum import Enum


class WindowState(Enum):
    """State of the sliding analysis window."""
    UNINITIALIZED = "uninitialized"  # Waiting for the first full frame
    SLIDING = "sliding"              # Frame filled, advancing by whole hops


@dataclass(frozen=True)
class PitchEstimate:
    """Per-hop monophonic pitch estimate. Ephemeral, never retained by the core."""
    freq_hz: float
    note_name: str   # Nearest chromatic note with octave, e.g. "A4", "C#5"
    cents: float     # Signed deviation from note_name, in [-50, 50]


@dataclass(frozen=True)
class NoveltySample:
    """Onset cues recorded once per successful hop, unnormalized."""
    flux: float      # Sum of positive magnitude-spectrum increases
    rms_diff: float  # Positive RMS increase over the previous frame


@dataclass(frozen=True)
class TempoCandidate:
    """A periodicity from the novelty autocorrelation, folded into BPM range."""
    bpm: float
    strength: float  # Autocorrelation value (summed when candidates merge)


@dataclass(frozen=True)
class TempoEstimate:
    """
    Result of session tempo resolution.

    Produced once per session at finalize. bpm is None when the session was
    too short or no periodicity was found; confidence is 0 in that case.
    """
    bpm: int | None
    confidence: float                # 0-1, dominance of the winning candidate
    beat_offset_seconds: float = 0.0  # Phase of the beat relative to session start
    candidates: list[TempoCandidate] = field(default_factory=list)

    @property
    def beat_interval(self) -> float | None:
        """Seconds between beats, or None without a tempo."""
        if self.bpm is None:
            return None
        return 60.0 / self.bpm


@dataclass(frozen=True)
class SessionReport:
    """
    Everything an offline analysis run produced.

    pitches holds (time_seconds, PitchEstimate) for every hop that yielded
    an estimate; time is the centre of the newest hop in the frame.
    """
    tempo: TempoEstimate
    pitches: list[tuple[float, PitchEstimate]]
    hops: int
    duration_seconds: float
