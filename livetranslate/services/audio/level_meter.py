"""Loudness meter for visual recording feedback.

Reproduces the byte-frequency reading of a browser ``AnalyserNode``:
windowed FFT, dB magnitudes smoothed over time, mapped onto 0..255 and
averaged into a single level in [0, 1].
"""

import numpy as np


class AudioLevelMeter:
    """Derives a normalized loudness scalar from live capture frames."""

    def __init__(
        self,
        fft_size: int = 256,
        smoothing: float = 0.8,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
    ) -> None:
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a power of two >= 32")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError("smoothing must be in [0, 1)")
        if min_decibels >= max_decibels:
            raise ValueError("min_decibels must be below max_decibels")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels
        self._window = np.blackman(fft_size)
        self._spectrum = np.zeros(fft_size // 2)
        self._level = 0.0
        self._closed = False

    @property
    def level(self) -> float:
        return self._level

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    @property
    def closed(self) -> bool:
        return self._closed

    def update(self, frame: np.ndarray) -> float:
        """Feed one capture frame and return the updated level.

        Only the most recent ``fft_size`` samples are analysed; shorter
        frames are zero-padded at the front.
        """
        if self._closed:
            return self._level
        samples = np.asarray(frame).reshape(-1)
        if samples.dtype == np.int16:
            samples = samples.astype(np.float64) / 32768.0
        else:
            samples = samples.astype(np.float64)
        block = samples[-self.fft_size :]
        if block.size < self.fft_size:
            block = np.concatenate([np.zeros(self.fft_size - block.size), block])

        magnitude = np.abs(np.fft.rfft(block * self._window))[: self.bin_count] / self.fft_size
        self._spectrum = self.smoothing * self._spectrum + (1.0 - self.smoothing) * magnitude

        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(self._spectrum)
        scaled = 255.0 * (decibels - self.min_decibels) / (self.max_decibels - self.min_decibels)
        byte_data = np.floor(np.clip(scaled, 0.0, 255.0))
        self._level = float(byte_data.mean() / 255.0)
        return self._level

    def reset(self) -> None:
        """Return the meter to silence."""
        self._spectrum = np.zeros(self.bin_count)
        self._level = 0.0

    def close(self) -> None:
        """Detach the meter; further frames are ignored and the level reads 0."""
        self.reset()
        self._closed = True
