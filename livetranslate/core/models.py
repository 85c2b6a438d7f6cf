"""
Pydantic v2 models, enums and plain value types shared across the client.

Wire models mirror the backend's event and REST payloads; dataclasses are
used for in-process values that never cross the network as-is.
"""

import base64
import binascii
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ConnectionState(StrEnum):
    """State of the streaming event channel."""

    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"


class TranslationMode(StrEnum):
    """How captured audio is delivered to the backend."""

    streaming = "streaming"
    batch = "batch"


class RecorderState(StrEnum):
    """States of the recording controller."""

    idle = "idle"
    recording = "recording"
    processing = "processing"


class InboundEvent(StrEnum):
    """Named events sent by the backend over the event channel."""

    connected = "connected"
    translation_started = "translation_started"
    translation_result = "translation_result"
    translation_stopped = "translation_stopped"
    error = "error"


class OutboundEvent(StrEnum):
    """Named events sent by the client over the event channel."""

    start_translation = "start_translation"
    audio_chunk = "audio_chunk"
    stop_translation = "stop_translation"


class CaptureFailure(StrEnum):
    """Classified reasons a microphone could not be acquired."""

    permission_denied = "permission_denied"
    device_absent = "device_absent"
    device_busy = "device_busy"
    constraint_unsatisfiable = "constraint_unsatisfiable"
    insecure_context = "insecure_context"
    unknown = "unknown"


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class WebSocketMessage(BaseModel):
    """Envelope for every JSON frame on the event channel."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """GET /health response body (only ``status`` is relied upon)."""

    model_config = ConfigDict(extra="allow")

    status: str = "ok"


def _now_ms() -> float:
    return time.time() * 1000.0


class TranslationResult(BaseModel):
    """One translated utterance or chunk: texts, synthesized audio, metrics.

    Immutable after construction. ``audio`` holds the decoded bytes of the
    backend's ``audio_base64`` field; the codec is opaque to the client.
    """

    model_config = ConfigDict(frozen=True)

    original_text: str = ""
    translated_text: str = ""
    audio: bytes = b""
    sample_rate: int = 16000
    latency_ms: float = 0.0
    confidence: float = 0.0
    timestamp: float = Field(default_factory=_now_ms)
    is_final: bool | None = None

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(1.0, max(0.0, value))

    @staticmethod
    def _decode_audio(audio_base64: str | None) -> bytes:
        if not audio_base64:
            return b""
        try:
            return base64.b64decode(audio_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"Invalid audio_base64 payload: {exc}") from exc

    @classmethod
    def from_event(cls, data: dict[str, Any]) -> "TranslationResult":
        """Build a result from a ``translation_result`` event payload."""
        payload = {k: v for k, v in data.items() if k in cls.model_fields and k != "audio"}
        payload["audio"] = cls._decode_audio(data.get("audio_base64"))
        return cls(**payload)

    @classmethod
    def from_response(cls, body: dict[str, Any]) -> "TranslationResult":
        """Build a result from a successful ``POST /api/translate`` body.

        Latency and confidence live under ``metrics`` in the REST shape.
        """
        metrics = body.get("metrics") or {}
        return cls(
            original_text=body.get("original_text", ""),
            translated_text=body.get("translated_text", ""),
            audio=cls._decode_audio(body.get("audio_base64")),
            sample_rate=body.get("sample_rate", 16000),
            latency_ms=metrics.get("latency_ms", 0.0),
            confidence=metrics.get("confidence", 0.0),
            is_final=True,
        )


class SessionStats(BaseModel):
    """Aggregate figures over the translations received in one session."""

    total_translations: int
    avg_latency_ms: float
    avg_confidence: float
    total_words: int


# ---------------------------------------------------------------------------
# In-process value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AudioChunk:
    """A window of consecutive capture samples, sent as one message.

    samples: 1-D array in the capture's native dtype (float32 in [-1, 1]
    or int16); ``index`` is the chunk's position in send order.
    """

    samples: np.ndarray
    sample_rate: int
    index: int

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


@dataclass(frozen=True)
class PlaybackEntry:
    """A queued piece of translated audio awaiting playback."""

    audio: bytes
    sample_rate: int
    sequence_index: int
    result: TranslationResult | None = field(default=None, compare=False)
