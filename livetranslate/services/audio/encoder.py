"""Sample encoding for transport.

Quantizes capture samples to signed 16-bit PCM, serialises them to bytes
and converts bytes to base64 text in bounded windows.
"""

import base64
import binascii
import io
import wave

import numpy as np

from livetranslate.core.models import AudioChunk

DEFAULT_WINDOW_BYTES = 8192


class SampleEncoder:
    """Converts capture samples into transport-safe payloads.

    Float input is quantized with an asymmetric scale (negative values by
    32768, non-negative by 32767) so that +1.0 never overflows; int16 input
    is passed through untouched.
    """

    def __init__(
        self,
        window_bytes: int = DEFAULT_WINDOW_BYTES,
        sample_width: int = 2,
        channels: int = 1,
    ) -> None:
        """Initialize the encoder.

        Args:
            window_bytes: Maximum bytes converted to text per step.
            sample_width: Bytes per sample in the PCM output (2 = 16-bit).
            channels: Number of interleaved channels in the PCM output.
        """
        if window_bytes <= 0:
            raise ValueError("window_bytes must be > 0")
        self.window_bytes = window_bytes
        self.sample_width = sample_width
        self.channels = channels

    @staticmethod
    def quantize(samples: np.ndarray) -> np.ndarray:
        """Return ``samples`` as int16, quantizing floating-point input.

        Args:
            samples: 1-D float array in [-1.0, 1.0] or int16 array.

        Returns:
            Int16 numpy array of the same length.
        """
        samples = np.asarray(samples)
        if samples.dtype == np.int16:
            return samples
        if not np.issubdtype(samples.dtype, np.floating):
            raise TypeError(f"Unsupported sample dtype: {samples.dtype}")
        clipped = np.clip(samples.astype(np.float64), -1.0, 1.0)
        scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
        # Truncate toward zero, matching an integer-typed array assignment
        return np.trunc(scaled).astype(np.int16)

    def to_pcm_bytes(self, samples: np.ndarray) -> bytes:
        """Quantize and serialise samples as little-endian PCM16 bytes."""
        return self.quantize(samples).astype("<i2").tobytes()

    def encode_bytes(self, data: bytes) -> str:
        """Base64-encode ``data`` processing at most ``window_bytes`` per step.

        Leftover bytes that do not fill a 3-byte base64 group are carried to
        the next window, so the concatenated output is one standard base64
        string regardless of the window size.
        """
        parts: list[str] = []
        carry = b""
        view = memoryview(data)
        for offset in range(0, len(view), self.window_bytes):
            window = carry + bytes(view[offset : offset + self.window_bytes])
            usable = len(window) - (len(window) % 3)
            parts.append(base64.b64encode(window[:usable]).decode("ascii"))
            carry = window[usable:]
        if carry:
            parts.append(base64.b64encode(carry).decode("ascii"))
        return "".join(parts)

    @staticmethod
    def decode_text(text: str) -> bytes:
        """Inverse of :meth:`encode_bytes`.

        Raises:
            ValueError: If ``text`` is not valid base64.
        """
        try:
            return base64.b64decode(text, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"Invalid base64 text: {exc}") from exc

    def encode(self, samples: np.ndarray) -> tuple[bytes, str]:
        """Quantize ``samples`` and return ``(pcm_bytes, base64_text)``."""
        pcm = self.to_pcm_bytes(samples)
        return pcm, self.encode_bytes(pcm)

    def encode_chunk(self, chunk: AudioChunk) -> str:
        """Return the base64 text for one streaming chunk."""
        return self.encode(chunk.samples)[1]

    def to_wav_bytes(self, samples: np.ndarray, sample_rate: int) -> bytes:
        """Wrap quantized samples in an in-memory WAV container.

        Args:
            samples: Complete utterance as float or int16 samples.
            sample_rate: Capture sample rate in Hz.

        Returns:
            WAV file bytes (PCM16, mono).

        Raises:
            ValueError: If ``samples`` is empty.
        """
        pcm = self.to_pcm_bytes(samples)
        if not pcm:
            raise ValueError("Cannot build a WAV file from empty audio")
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(self.sample_width)
            wf.setframerate(sample_rate)
            wf.writeframes(pcm)
        return buf.getvalue()
