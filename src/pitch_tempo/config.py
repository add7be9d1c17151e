"""
Analysis configuration.

One frozen dataclass carries every tunable of a session. Values are checked
at construction so a bad configuration fails before any audio flows.
Overrides can come from the environment (or a .env file) as
PITCH_TEMPO_<FIELD_NAME>, e.g. PITCH_TEMPO_FRAME_SIZE=2048.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace

from dotenv import find_dotenv, load_dotenv

ENV_PREFIX = "PITCH_TEMPO_"

# ~10 ms hop, the cadence the tempo statistics are tuned for
_DEFAULT_HOP_SECONDS = 0.010


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Tunables for pitch, tempo and click scheduling.

    hop_size defaults to about 10 ms of samples at the given sample rate.
    """
    sample_rate: int
    min_freq: float = 70.0
    max_freq: float = 1600.0
    frame_size: int = 1024
    hop_size: int = field(default=0)
    silence_rms_threshold: float = 0.01
    cmnd_dip_threshold: float = 0.12
    tuning_reference_hz: float = 440.0
    min_bpm: float = 40.0
    max_bpm: float = 200.0
    min_session_seconds: float = 3.0
    novelty_smoothing_radius: int = 2
    bpm_merge_tolerance: float = 2.5
    max_hops_per_tick: int = 4
    scheduler_lookahead_ms: float = 200.0
    scheduler_cadence_ms: float = 25.0

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.hop_size == 0:
            hop = max(1, round(self.sample_rate * _DEFAULT_HOP_SECONDS))
            object.__setattr__(self, "hop_size", hop)
        if self.frame_size < 2:
            raise ValueError(f"frame_size must be at least 2, got {self.frame_size}")
        if not 1 <= self.hop_size <= self.frame_size:
            raise ValueError(
                f"hop_size must be in [1, frame_size={self.frame_size}], got {self.hop_size}"
            )
        if not 0 < self.min_freq < self.max_freq:
            raise ValueError(
                f"need 0 < min_freq < max_freq, got {self.min_freq}, {self.max_freq}"
            )
        if not 0 < self.min_bpm < self.max_bpm:
            raise ValueError(
                f"need 0 < min_bpm < max_bpm, got {self.min_bpm}, {self.max_bpm}"
            )
        if self.max_hops_per_tick < 1:
            raise ValueError(f"max_hops_per_tick must be >= 1, got {self.max_hops_per_tick}")
        if self.novelty_smoothing_radius < 0:
            raise ValueError("novelty_smoothing_radius must be >= 0")
        if self.scheduler_lookahead_ms <= 0 or self.scheduler_cadence_ms <= 0:
            raise ValueError("scheduler lookahead and cadence must be positive")

    @property
    def hop_seconds(self) -> float:
        return self.hop_size / self.sample_rate

    @property
    def frame_seconds(self) -> float:
        return self.frame_size / self.sample_rate

    def with_overrides(self, **overrides) -> AnalysisConfig:
        """Return a copy with some fields replaced (validated again)."""
        return replace(self, **overrides)

    @classmethod
    def from_env(
        cls,
        sample_rate: int,
        env_file: str | None = None,
        **overrides,
    ) -> AnalysisConfig:
        """
        Build a config from PITCH_TEMPO_* environment variables.

        Args:
            sample_rate: Session sample rate (always taken from the caller,
                since it belongs to the capture device, not the environment).
            env_file: Path to a .env file. If None, python-dotenv searches
                for one from the working directory upwards. Variables already
                set in the process environment win over the file.
            **overrides: Explicit field values, applied last.

        Returns:
            Validated AnalysisConfig.
        """
        load_dotenv(env_file or find_dotenv(usecwd=True))

        values = {}
        for f in fields(cls):
            if f.name == "sample_rate":
                continue
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                values[f.name] = int(raw) if f.type == "int" else float(raw)
            except ValueError:
                raise ValueError(
                    f"{ENV_PREFIX}{f.name.upper()}={raw!r} is not a valid {f.type}"
                ) from None

        values.update(overrides)
        return cls(sample_rate=sample_rate, **values)
