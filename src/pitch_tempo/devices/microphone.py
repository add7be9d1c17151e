"""
Live microphone capture.

Thin wrapper around a sounddevice input stream. The audio
callback runs on PortAudio's real-time thread at the device's block size
and only hands mono float32 copies to AnalysisSession.push(), which is the
session's message-passing entry point. No analysis happens here.
"""

from __future__ import annotations

import logging

import numpy as np

from pitch_tempo.session import AnalysisSession

logger = logging.getLogger(__name__)


def _require_sounddevice():
    try:
        import sounddevice
    except ImportError as e:
        raise ImportError(
            "sounddevice is required for microphone capture. "
            "Install with: pip install -e '.[capture]'"
        ) from e
    return sounddevice


def to_mono(block: np.ndarray) -> np.ndarray:
    """Average channels of a (frames, channels) block; 1-D input passes through."""
    if block.ndim == 1:
        return block
    return block.mean(axis=1)


class MicrophoneCapture:
    """
    Streams the default (or a chosen) input device into a session.

    Usage:
        session = AnalysisSession(AnalysisConfig(sample_rate=48000))
        mic = MicrophoneCapture(session, device=None, block_size=2048)
        mic.start()
        session.start(on_pitch=show)
        ...
        mic.stop()
        tempo = session.stop()

    The stream is opened at session.config.sample_rate; pick a rate the
    device supports.
    """

    def __init__(
        self,
        session: AnalysisSession,
        *,
        device: int | str | None = None,
        channels: int = 1,
        block_size: int = 2048,
    ):
        self._session = session
        self._device = device
        self._channels = channels
        self._block_size = block_size
        self._stream = None
        self._status_count = 0

    @property
    def running(self) -> bool:
        return self._stream is not None

    @property
    def status_count(self) -> int:
        """Callbacks that reported an over/underflow or other stream status."""
        return self._status_count

    def _callback(self, indata, frames, time, status) -> None:
        if status:
            self._status_count += 1
        self._session.push(to_mono(indata))

    def start(self) -> None:
        """Open and start the input stream. No-op if already running."""
        if self._stream is not None:
            return
        sd = _require_sounddevice()
        self._stream = sd.InputStream(
            device=self._device,
            channels=self._channels,
            samplerate=self._session.config.sample_rate,
            blocksize=self._block_size,
            dtype="float32",
            callback=self._callback,
        )
        self._stream.start()
        logger.debug(
            "microphone capture started at %d Hz, block %d",
            self._session.config.sample_rate, self._block_size,
        )

    def stop(self) -> None:
        """Stop and close the stream. Idempotent."""
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        stream.stop()
        stream.close()
        if self._status_count:
            logger.debug("capture stream reported status %d times", self._status_count)
