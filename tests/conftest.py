"""Shared pytest fixtures for the LiveTranslate test suite.

Provides fake capture/playback capabilities, a scriptable fake WebSocket
server and audio helpers so that no test touches real hardware or network.
"""

import asyncio
import base64
import io
import json
import wave

import numpy as np
import pytest

from livetranslate.core.config import get_settings
from livetranslate.core.exceptions import MicrophoneError, PlaybackError, RecordingAlreadyActiveError
from livetranslate.services.audio.capture import BaseAudioCapture
from livetranslate.services.audio.playback import BasePlayback


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Ensure each test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Audio helpers
# ---------------------------------------------------------------------------


def make_wav(samples: np.ndarray | None = None, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Build an in-memory PCM16 WAV file."""
    if samples is None:
        samples = np.zeros(1600 * channels, dtype=np.int16)
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(np.asarray(samples, dtype="<i2").tobytes())
    return buf.getvalue()


@pytest.fixture
def silent_frame():
    """One 4096-sample float32 capture frame of silence."""
    return np.zeros(4096, dtype=np.float32)


@pytest.fixture
def sine_frame():
    """One 4096-sample float32 capture frame of a 440 Hz tone at half scale."""
    t = np.arange(4096) / 16000.0
    return (0.5 * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)


@pytest.fixture
def wav_bytes():
    return make_wav()


# ---------------------------------------------------------------------------
# Capture / playback fakes
# ---------------------------------------------------------------------------


class FakeCapture(BaseAudioCapture):
    """Capture capability driven by the test via ``emit()``."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.on_frame = None
        self.start_calls = 0
        self.stop_calls = 0

    @property
    def is_active(self) -> bool:
        return self.on_frame is not None

    async def start(self, on_frame) -> None:
        self.start_calls += 1
        if self.on_frame is not None:
            raise RecordingAlreadyActiveError()
        if self.error is not None:
            raise self.error
        self.on_frame = on_frame

    async def stop(self) -> None:
        self.stop_calls += 1
        self.on_frame = None

    def emit(self, frame: np.ndarray) -> None:
        assert self.on_frame is not None, "capture not started"
        self.on_frame(frame)


class FakePlayback(BasePlayback):
    """Playback that takes ``duration`` seconds and records its intervals.

    Payloads listed in ``failing`` raise PlaybackError immediately.
    """

    def __init__(self, duration: float = 0.01, failing: set[bytes] | None = None) -> None:
        self.duration = duration
        self.failing = failing or set()
        self.started: list[bytes] = []
        self.finished: list[bytes] = []
        self.cancelled: list[bytes] = []
        self.intervals: list[tuple[float, float]] = []
        self.active = 0
        self.max_active = 0

    async def play(self, audio: bytes, sample_rate: int) -> None:
        loop = asyncio.get_running_loop()
        self.started.append(audio)
        if audio in self.failing:
            raise PlaybackError("cannot decode")
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        start = loop.time()
        try:
            await asyncio.sleep(self.duration)
        except asyncio.CancelledError:
            self.cancelled.append(audio)
            raise
        finally:
            self.active -= 1
            self.intervals.append((start, loop.time()))
        self.finished.append(audio)


@pytest.fixture
def fake_capture():
    return FakeCapture()


@pytest.fixture
def denied_capture():
    from livetranslate.core.models import CaptureFailure

    return FakeCapture(error=MicrophoneError(CaptureFailure.permission_denied))


@pytest.fixture
def fake_playback():
    return FakePlayback()


# ---------------------------------------------------------------------------
# WebSocket fake
# ---------------------------------------------------------------------------


def result_event(text: str = "hola", audio: bytes = b"", is_final: bool | None = None) -> dict:
    data = {
        "original_text": text,
        "translated_text": f"<{text}>",
        "audio_base64": base64.b64encode(audio).decode("ascii"),
        "sample_rate": 16000,
        "latency_ms": 120.0,
        "confidence": 0.9,
        "timestamp": 1700000000000.0,
    }
    if is_final is not None:
        data["is_final"] = is_final
    return {"type": "translation_result", "data": data}


class FakeWebSocket:
    """Scriptable stand-in for a websockets client connection.

    Incoming frames are pushed with ``push()``; ``responder`` may map every
    sent message to a list of replies, emulating the backend.
    """

    def __init__(self, responder=None) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._responder = responder

    def push(self, message: dict) -> None:
        self._inbox.put_nowait(json.dumps(message))

    def drop(self) -> None:
        """Simulate the server going away."""
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self._iter_messages()

    async def _iter_messages(self):
        while True:
            raw = await self._inbox.get()
            if raw is None:
                return
            yield raw

    async def send(self, data: str) -> None:
        message = json.loads(data)
        self.sent.append(message)
        if self._responder is not None:
            for reply in self._responder(message):
                self.push(reply)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def sent_of_type(self, event_type: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == event_type]


def translating_backend(message: dict) -> list[dict]:
    """Responder that behaves like a minimal translation server."""
    kind = message["type"]
    data = message["data"]
    if kind == "start_translation":
        return [{"type": "translation_started", "data": data}]
    if kind == "audio_chunk":
        return [result_event(text="silence", audio=make_wav())]
    if kind == "stop_translation":
        return [{"type": "translation_stopped", "data": {}}]
    return []


@pytest.fixture
def fake_ws():
    return FakeWebSocket(responder=translating_backend)
