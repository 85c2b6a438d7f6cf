"""
LiveTranslate exception hierarchy.

All client-side exceptions inherit from LiveTranslateError so that a front
end can report any failure through a single ``except`` clause while still
branching on the concrete class or on ``code``.
"""

from datetime import UTC, datetime

from livetranslate.core.models import CaptureFailure


class LiveTranslateError(Exception):
    """Base exception for all LiveTranslate errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "LIVETRANSLATE_ERROR",
    ) -> None:
        self.detail = detail
        self.code = code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Capability errors
# ---------------------------------------------------------------------------

_CAPTURE_MESSAGES: dict[CaptureFailure, str] = {
    CaptureFailure.permission_denied: "permission denied",
    CaptureFailure.device_absent: "device absent",
    CaptureFailure.device_busy: "device busy",
    CaptureFailure.constraint_unsatisfiable: "constraint unsatisfiable",
    CaptureFailure.insecure_context: "insecure context",
    CaptureFailure.unknown: "microphone unavailable",
}


class MicrophoneError(LiveTranslateError):
    """Raised when the capture device cannot be acquired.

    ``cause`` is the classified failure; ``detail`` is its fixed
    human-readable message, optionally followed by the driver's reason.
    """

    def __init__(self, cause: CaptureFailure, reason: str | None = None) -> None:
        self.cause = cause
        message = _CAPTURE_MESSAGES[cause]
        if reason:
            message = f"{message}: {reason}"
        super().__init__(detail=message, code=f"MICROPHONE_{cause.value.upper()}")


# ---------------------------------------------------------------------------
# Transport errors
# ---------------------------------------------------------------------------


class TransportError(LiveTranslateError):
    """Raised when the event channel fails."""

    def __init__(self, detail: str = "Transport failure", code: str = "TRANSPORT_ERROR") -> None:
        super().__init__(detail=detail, code=code)


class NotConnectedError(TransportError):
    """Raised when sending on a channel that is not connected."""

    def __init__(self) -> None:
        super().__init__(detail="Not connected to the backend", code="NOT_CONNECTED")


class ReconnectExhaustedError(TransportError):
    """Raised when every connection attempt in the retry budget failed."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            detail=f"Could not connect to the backend after {attempts} attempts",
            code="RECONNECT_EXHAUSTED",
        )


class BackendUnavailableError(LiveTranslateError):
    """Raised when recording is requested while the health probe fails."""

    def __init__(self) -> None:
        super().__init__(detail="Backend is not reachable", code="BACKEND_UNAVAILABLE")


# ---------------------------------------------------------------------------
# Application errors reported by the backend
# ---------------------------------------------------------------------------


class BackendError(LiveTranslateError):
    """Raised (or reported) for an ``error`` event sent by the backend."""

    def __init__(self, detail: str = "Backend error") -> None:
        super().__init__(detail=detail, code="BACKEND_ERROR")


class TranslationRequestError(LiveTranslateError):
    """Raised when a batch translate request does not yield a result."""

    def __init__(self, detail: str = "Translation request failed") -> None:
        super().__init__(detail=detail, code="TRANSLATION_REQUEST_FAILED")


class APIError(LiveTranslateError):
    """User-friendly HTTP error with categorized message.

    Categories: "connection", "timeout", "http", "network", "unknown".
    """

    def __init__(self, message: str, category: str = "unknown") -> None:
        self.message = message
        self.category = category
        super().__init__(detail=message, code=f"API_{category.upper()}")


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------


class TranslationAlreadyActiveError(LiveTranslateError):
    """Raised on a second ``start_translation`` before ``stop_translation``."""

    def __init__(self) -> None:
        super().__init__(
            detail="A translation session is already active",
            code="TRANSLATION_ALREADY_ACTIVE",
        )


class RecordingAlreadyActiveError(LiveTranslateError):
    """Raised when trying to start a recording while one is already active."""

    def __init__(self) -> None:
        super().__init__(
            detail="A recording is already active",
            code="RECORDING_ALREADY_ACTIVE",
        )


class RecorderStateError(LiveTranslateError):
    """Raised for an operation that is illegal in the recorder's current state."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail=detail, code="INVALID_RECORDER_STATE")


# ---------------------------------------------------------------------------
# Playback errors
# ---------------------------------------------------------------------------


class PlaybackError(LiveTranslateError):
    """Raised when translated audio cannot be decoded or played."""

    def __init__(self, detail: str = "Playback failed") -> None:
        super().__init__(detail=detail, code="PLAYBACK_ERROR")
