"""
Microphone capture capability.

``BaseAudioCapture`` is the interface the recording controller depends on;
``SoundDeviceCapture`` implements it on top of PortAudio via ``sounddevice``.
Frames are delivered on the asyncio loop thread, never on the driver thread.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

import numpy as np

from livetranslate.core.exceptions import MicrophoneError, RecordingAlreadyActiveError
from livetranslate.core.models import CaptureFailure

logger = logging.getLogger(__name__)

FrameCallback = Callable[[np.ndarray], None]

# Substrings of PortAudio / OS error messages, checked in order
_FAILURE_PATTERNS: list[tuple[CaptureFailure, tuple[str, ...]]] = [
    (CaptureFailure.permission_denied, ("permission", "not allowed", "access denied", "notallowed")),
    (CaptureFailure.insecure_context, ("insecure", "secure context")),
    (
        CaptureFailure.device_absent,
        ("no default input", "no input device", "no such device", "device not found",
         "no device", "invalid device", "notfound"),
    ),
    (
        CaptureFailure.device_busy,
        ("unavailable", "busy", "in use", "notreadable", "could not start"),
    ),
    (
        CaptureFailure.constraint_unsatisfiable,
        ("invalid sample rate", "invalid number of channels", "sample format",
         "invalid samplerate", "overconstrained", "unanticipated host error"),
    ),
]


def classify_capture_error(exc: BaseException) -> CaptureFailure:
    """Map a driver exception onto the capture failure taxonomy.

    Args:
        exc: The exception raised while opening the input stream.

    Returns:
        The matching CaptureFailure, ``unknown`` if nothing matches.
    """
    if isinstance(exc, PermissionError):
        return CaptureFailure.permission_denied
    if isinstance(exc, FileNotFoundError):
        return CaptureFailure.device_absent
    text = f"{type(exc).__name__} {exc}".lower()
    for failure, needles in _FAILURE_PATTERNS:
        if any(needle in text for needle in needles):
            return failure
    return CaptureFailure.unknown


class BaseAudioCapture(ABC):
    """Interface every capture capability must implement.

    Implementations own the device between ``start`` and ``stop`` and must
    refuse a second ``start`` while active.
    """

    @property
    @abstractmethod
    def is_active(self) -> bool:
        """True while the device is held."""

    @abstractmethod
    async def start(self, on_frame: FrameCallback) -> None:
        """Acquire the device and begin delivering mono frames to ``on_frame``.

        Raises:
            MicrophoneError: If the device cannot be acquired.
            RecordingAlreadyActiveError: If capture is already running.
        """

    @abstractmethod
    async def stop(self) -> None:
        """Release the device. Safe to call when not active."""


class SoundDeviceCapture(BaseAudioCapture):
    """Live microphone source using the `sounddevice` package (PortAudio)."""

    def __init__(
        self,
        *,
        sample_rate: int = 16000,
        frame_size: int = 4096,
        device: int | str | None = None,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        if frame_size <= 0:
            raise ValueError("frame_size must be > 0")
        self.sample_rate = int(sample_rate)
        self.frame_size = int(frame_size)
        self.device = device
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_frame: FrameCallback | None = None

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    @staticmethod
    def list_devices() -> str:
        import sounddevice as sd

        return str(sd.query_devices())

    async def start(self, on_frame: FrameCallback) -> None:
        if self._stream is not None:
            raise RecordingAlreadyActiveError()

        try:
            import sounddevice as sd
        except OSError as exc:
            # PortAudio library missing on the host
            raise MicrophoneError(CaptureFailure.device_absent, str(exc)) from exc

        self._loop = asyncio.get_running_loop()
        self._on_frame = on_frame
        stream = None
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=self.frame_size,
                channels=1,
                dtype="float32",
                device=self.device,
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError, OSError) as exc:
            self._on_frame = None
            if stream is not None:
                stream.close()
            failure = classify_capture_error(exc)
            logger.warning("Microphone open failed (%s): %s", failure.value, exc)
            raise MicrophoneError(failure, str(exc)) from exc

        self._stream = stream
        logger.info(
            "Microphone capture started: device=%s rate=%s frame=%s",
            self.device,
            self.sample_rate,
            self.frame_size,
        )

    async def stop(self) -> None:
        stream, self._stream = self._stream, None
        self._on_frame = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info("Microphone capture stopped")

    def _callback(self, indata, frames: int, time_, status) -> None:
        """PortAudio thread: copy the block and hand it to the loop."""
        if status:
            logger.warning("Audio callback status: %s", status)
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        frame = np.array(indata[:, 0], dtype=np.float32, copy=True)
        loop.call_soon_threadsafe(self._deliver, frame)

    def _deliver(self, frame: np.ndarray) -> None:
        # Frames queued before stop() landed must not reach a finished session
        if self._on_frame is not None:
            self._on_frame(frame)
