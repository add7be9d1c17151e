from pitch_tempo.precision.pitch import PitchEstimator, estimate_f0, freq_to_note
from pitch_tempo.precision.tempo import TempoEstimator, fold_bpm, merge_candidates

__all__ = [
    "PitchEstimator",
    "estimate_f0",
    "freq_to_note",
    "TempoEstimator",
    "fold_bpm",
    "merge_candidates",
]
