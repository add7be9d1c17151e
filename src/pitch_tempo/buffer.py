"""
Sample reassembly and hop-exact analysis windowing.

Pure logic, no I/O. The capture side delivers PCM in whatever block size the
hardware likes; analysis needs exactly frame_size samples once and then
exactly hop_size samples per step. SampleQueue bridges the two without ever
reordering, duplicating or dropping a sample; FrameWindower turns those
pulls into a fixed-length frame that only ever moves in whole hops.

Not thread-safe. AnalysisSession is the only owner and feeds these from the
analysis thread after draining its inbox.
"""

from __future__ import annotations

from collections import deque

import numpy as np

from pitch_tempo.types import WindowState


class InsufficientData(Exception):
    """Raised by SampleQueue.pop when fewer than n samples are buffered."""

    def __init__(self, requested: int, available: int):
        super().__init__(f"requested {requested} samples, only {available} buffered")
        self.requested = requested
        self.available = available


class SampleQueue:
    """
    FIFO of PCM chunks with a consumed offset into the head chunk.

    Invariant: len(queue) == sum of unconsumed samples across all chunks.

    Usage:
        queue = SampleQueue()
        queue.push(chunk_a)
        queue.push(chunk_b)
        hop = queue.pop(480)  # may span chunk_a and chunk_b
    """

    def __init__(self):
        self._chunks: deque[np.ndarray] = deque()
        self._head_offset = 0
        self._buffered = 0

    def __len__(self) -> int:
        return self._buffered

    def push(self, chunk: np.ndarray) -> None:
        """Append a chunk. O(1), never blocks. Empty chunks are ignored."""
        if chunk.ndim != 1:
            raise ValueError(f"PCM chunks must be 1-D, got shape {chunk.shape}")
        if len(chunk) == 0:
            return
        self._chunks.append(chunk)
        self._buffered += len(chunk)

    def pop(self, n: int) -> np.ndarray:
        """
        Remove and return exactly n samples in arrival order.

        Raises:
            InsufficientData: fewer than n samples are buffered. Nothing is
                consumed in that case; retry once more audio has arrived.
        """
        if n > self._buffered:
            raise InsufficientData(n, self._buffered)

        out = np.empty(n, dtype=np.float32)
        filled = 0
        while filled < n:
            head = self._chunks[0]
            take = min(n - filled, len(head) - self._head_offset)
            out[filled:filled + take] = head[self._head_offset:self._head_offset + take]
            filled += take
            self._head_offset += take
            if self._head_offset == len(head):
                self._chunks.popleft()
                self._head_offset = 0

        self._buffered -= n
        return out

    def reset(self) -> None:
        """Drop everything buffered."""
        self._chunks.clear()
        self._head_offset = 0
        self._buffered = 0


class FrameWindower:
    """
    Fixed-length analysis frame advanced by exact hops.

    State machine:
        UNINITIALIZED  →  (frame_size samples available)  →  SLIDING
              ↑                                                 |
              +←──────────────────── reset() ←─────────────────+

    In SLIDING, each advance() either shifts in one full hop or does nothing.
    A partial hop is never admitted: tempo statistics assume uniformly
    hop-spaced frames.
    """

    def __init__(self, queue: SampleQueue, frame_size: int, hop_size: int):
        if not 1 <= hop_size <= frame_size:
            raise ValueError(f"need 1 <= hop_size <= frame_size, got {hop_size}, {frame_size}")
        self._queue = queue
        self.frame_size = frame_size
        self.hop_size = hop_size

        self._state = WindowState.UNINITIALIZED
        self._frame = np.zeros(frame_size, dtype=np.float32)
        self._hops = 0

    @property
    def state(self) -> WindowState:
        return self._state

    @property
    def frame(self) -> np.ndarray:
        """The current frame. Only meaningful once SLIDING."""
        return self._frame

    @property
    def hops(self) -> int:
        """Successful frame updates since the last reset (init counts as one)."""
        return self._hops

    def frame_end_sample(self) -> int:
        """Stream position (in samples) just past the newest sample of the frame."""
        if self._hops == 0:
            return 0
        return self.frame_size + (self._hops - 1) * self.hop_size

    def advance(self) -> bool:
        """
        Try to produce the next frame.

        Returns:
            True if the frame was initialized or slid by one hop, False if
            the queue did not hold enough samples (nothing changed).
        """
        if self._state == WindowState.UNINITIALIZED:
            return self._init()
        return self._slide()

    def _init(self) -> bool:
        try:
            data = self._queue.pop(self.frame_size)
        except InsufficientData:
            return False
        self._frame[:] = data
        self._state = WindowState.SLIDING
        self._hops = 1
        return True

    def _slide(self) -> bool:
        try:
            hop = self._queue.pop(self.hop_size)
        except InsufficientData:
            return False
        keep = self.frame_size - self.hop_size
        # Overlapping copy: numpy handles the in-place shift correctly
        self._frame[:keep] = self._frame[self.hop_size:]
        self._frame[keep:] = hop
        self._hops += 1
        return True

    def reset(self) -> None:
        """Back to UNINITIALIZED. The queue is owned by the caller and left alone."""
        self._state = WindowState.UNINITIALIZED
        self._frame.fill(0.0)
        self._hops = 0
