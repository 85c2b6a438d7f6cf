"""
Audio playback capability.

``BasePlayback.play`` resolves when the payload has finished playing and
raises ``PlaybackError`` when it cannot be decoded or played. Cancelling
the awaiting task stops the sound immediately.
"""

import asyncio
import io
import logging
from abc import ABC, abstractmethod

import numpy as np
import soundfile as sf

from livetranslate.core.exceptions import PlaybackError

logger = logging.getLogger(__name__)


class BasePlayback(ABC):
    """Interface that every playback capability must implement."""

    @abstractmethod
    async def play(self, audio: bytes, sample_rate: int) -> None:
        """Play ``audio`` to completion.

        Args:
            audio: Encoded audio payload (any container soundfile can read).
            sample_rate: Rate advertised by the backend, used when the
                payload does not carry its own.

        Raises:
            PlaybackError: If the payload cannot be decoded or played.
        """


def decode_audio(audio: bytes) -> tuple[np.ndarray, int]:
    """Decode an audio container to mono float32 samples.

    Returns:
        Tuple of (samples, sample_rate).

    Raises:
        PlaybackError: If the payload is empty or not a readable container.
    """
    if not audio:
        raise PlaybackError("Empty audio payload")
    try:
        data, file_rate = sf.read(io.BytesIO(audio), dtype="float32")
    except (sf.LibsndfileError, RuntimeError, TypeError) as exc:
        raise PlaybackError(f"Could not decode audio: {exc}") from exc

    # Convert to mono if stereo
    if data.ndim > 1:
        data = data.mean(axis=1).astype(np.float32)
    return data, int(file_rate)


class SoundDevicePlayback(BasePlayback):
    """Plays decoded audio through a PortAudio output stream."""

    def __init__(self, device: int | str | None = None, blocksize: int = 1024) -> None:
        self.device = device
        self.blocksize = blocksize

    async def play(self, audio: bytes, sample_rate: int) -> None:
        data, file_rate = decode_audio(audio)
        rate = file_rate or sample_rate
        if data.size == 0:
            return

        try:
            import sounddevice as sd
        except OSError as exc:
            raise PlaybackError(f"Audio output unavailable: {exc}") from exc

        loop = asyncio.get_running_loop()
        finished = asyncio.Event()
        position = 0

        def callback(outdata, frames: int, time_, status) -> None:
            nonlocal position
            if status:
                logger.debug("Playback status: %s", status)
            block = data[position : position + frames]
            outdata[: len(block), 0] = block
            if len(block) < frames:
                outdata[len(block) :, 0] = 0.0
                raise sd.CallbackStop
            position += frames

        try:
            stream = sd.OutputStream(
                samplerate=rate,
                channels=1,
                dtype="float32",
                device=self.device,
                blocksize=self.blocksize,
                callback=callback,
                finished_callback=lambda: loop.call_soon_threadsafe(finished.set),
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise PlaybackError(f"Could not open audio output: {exc}") from exc

        try:
            stream.start()
            await finished.wait()
        except asyncio.CancelledError:
            stream.abort()
            raise
        except sd.PortAudioError as exc:
            raise PlaybackError(f"Playback failed: {exc}") from exc
        finally:
            stream.close()
