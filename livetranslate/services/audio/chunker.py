"""Audio chunking for streaming translation.

Accumulates capture frames and emits fixed-duration chunks. Unlike an
overlapping transcription buffer, every sample is emitted exactly once.
"""

import numpy as np

from livetranslate.core.models import AudioChunk


class AudioChunker:
    """Accumulates capture frames and yields chunks for transport.

    A chunk is emitted as soon as the accumulated sample count reaches
    ``chunk_duration * sample_rate``; it contains every buffered sample, so
    it may exceed the threshold by less than one frame. ``flush()`` emits the
    final partial chunk at the end of a session.
    """

    def __init__(self, chunk_duration: float = 2.0, sample_rate: int = 16000) -> None:
        if chunk_duration <= 0:
            raise ValueError("chunk_duration must be > 0")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        self._chunk_duration = chunk_duration
        self._sample_rate = sample_rate
        self._frames: list[np.ndarray] = []
        self._buffered = 0
        self._next_index = 0

    @property
    def threshold_samples(self) -> int:
        """Number of samples that triggers an emission."""
        return max(1, int(round(self._chunk_duration * self._sample_rate)))

    @property
    def buffered_samples(self) -> int:
        return self._buffered

    @property
    def buffered_duration(self) -> float:
        """Duration of currently buffered audio in seconds."""
        return self._buffered / self._sample_rate

    @property
    def chunks_emitted(self) -> int:
        return self._next_index

    def push(self, frame: np.ndarray) -> AudioChunk | None:
        """Append one capture frame; return a chunk if the window filled.

        Args:
            frame: 1-D array of mono samples (float32 or int16).

        Returns:
            The completed AudioChunk, or None if still accumulating.
        """
        frame = np.asarray(frame).reshape(-1)
        if frame.size == 0:
            return None
        # Capture drivers reuse their buffers; keep a private copy
        self._frames.append(frame.copy())
        self._buffered += frame.size
        if self._buffered >= self.threshold_samples:
            return self._emit()
        return None

    def flush(self) -> AudioChunk | None:
        """Emit whatever is buffered as a final partial chunk.

        Returns:
            The partial AudioChunk, or None if nothing is buffered.
        """
        if self._buffered == 0:
            return None
        return self._emit()

    def reset(self) -> None:
        """Drop buffered samples and restart chunk numbering."""
        self._frames.clear()
        self._buffered = 0
        self._next_index = 0

    def _emit(self) -> AudioChunk:
        samples = np.concatenate(self._frames)
        chunk = AudioChunk(samples=samples, sample_rate=self._sample_rate, index=self._next_index)
        self._next_index += 1
        self._frames.clear()
        self._buffered = 0
        return chunk
