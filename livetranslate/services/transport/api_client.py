"""
Asynchronous HTTP client for the translation backend's REST surface.

Uses ``httpx.AsyncClient`` so requests share the event loop with capture,
the event channel and playback.
"""

import asyncio
import logging
from typing import Any

import httpx

from livetranslate.core.config import get_settings
from livetranslate.core.exceptions import APIError, TranslationRequestError
from livetranslate.core.models import HealthResponse, TranslationResult

logger = logging.getLogger(__name__)

_GENERIC_TRANSLATE_ERROR = "Translation request failed"


def extract_error_message(response: httpx.Response, fallback: str = _GENERIC_TRANSLATE_ERROR) -> str:
    """Best-effort human-readable message from a failed response.

    Tries the JSON ``error`` field, then ``detail``, then the raw body text,
    and finally ``fallback``. Never assumes the body is JSON.
    """
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            value = body.get(key)
            if value:
                return str(value)
    text = (response.text or "").strip()
    return text or fallback


class APIClient:
    """Thin asynchronous wrapper around httpx for calling the backend.

    All methods return parsed values or raise ``APIError`` (transport level)
    / ``TranslationRequestError`` (translate endpoint) with user-friendly
    messages.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        """Initialize the HTTP client.

        Args:
            base_url: Base URL of the backend (falls back to settings).
            timeout: Default request timeout in seconds (falls back to settings).
        """
        settings = get_settings()
        self._base_url = (base_url or settings.backend_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout if timeout is not None else settings.request_timeout,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with user-friendly error handling.

        Args:
            method: HTTP method name ("get", "post").
            path: API endpoint path (e.g. "/api/translate").
            **kwargs: Passed through to httpx (json, files, data, timeout, etc.).

        Returns:
            The httpx Response object with a successful status code.

        Raises:
            APIError: On connection, timeout, HTTP status, or network errors.
        """
        try:
            resp = await getattr(self._client, method)(path, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.ConnectError:
            raise APIError(
                f"Backend server is not reachable at {self._base_url}",
                category="connection",
            ) from None
        except httpx.TimeoutException:
            raise APIError(
                "Request timed out. The server may be overloaded.",
                category="timeout",
            ) from None
        except httpx.HTTPStatusError as exc:
            raise APIError(
                extract_error_message(exc.response, fallback=str(exc)),
                category="http",
            ) from None
        except httpx.HTTPError as exc:
            raise APIError(f"Network error: {exc}", category="network") from None

    # -- health --

    async def check_health(self, timeout: float | None = None) -> bool:
        """Probe ``GET /health`` once within ``timeout`` seconds.

        Returns:
            True only for a 200 response; any other status, network failure
            or timeout yields False.
        """
        timeout = timeout if timeout is not None else get_settings().health_check_timeout
        try:
            resp = await asyncio.wait_for(self._client.get("/health", timeout=timeout), timeout)
        except (httpx.HTTPError, TimeoutError) as exc:
            logger.debug("Health probe failed: %s", exc)
            return False
        if resp.status_code != 200:
            logger.debug("Health probe returned HTTP %d", resp.status_code)
            return False
        try:
            health = HealthResponse.model_validate(resp.json())
        except ValueError:
            # Liveness is the status code; the body is informational
            logger.debug("Health probe returned a non-JSON body")
            return True
        logger.debug("Backend health: %s", health.status)
        return True

    # -- translation --

    async def translate(
        self,
        audio: bytes,
        source_lang: str,
        target_lang: str,
        filename: str = "utterance.wav",
        content_type: str = "audio/wav",
    ) -> TranslationResult:
        """Upload one complete utterance and return its translation.

        Args:
            audio: Encoded audio file bytes.
            source_lang: Language code spoken in the recording.
            target_lang: Language code to translate into.
            filename: Name reported for the multipart file part.
            content_type: MIME type of ``audio``.

        Raises:
            TranslationRequestError: On any failure, carrying the best
                available message from the backend.
        """
        try:
            resp = await self._client.post(
                "/api/translate",
                files={"audio": (filename, audio, content_type)},
                data={"source_lang": source_lang, "target_lang": target_lang},
            )
        except httpx.TimeoutException:
            raise TranslationRequestError("Translation request timed out") from None
        except httpx.HTTPError as exc:
            raise TranslationRequestError(f"Network error: {exc}") from None

        if resp.status_code >= 400:
            raise TranslationRequestError(extract_error_message(resp))

        try:
            body = resp.json()
        except ValueError:
            raise TranslationRequestError("Backend returned a malformed response") from None
        if not isinstance(body, dict) or not body.get("success", False):
            detail = body.get("error") if isinstance(body, dict) else None
            raise TranslationRequestError(str(detail) if detail else _GENERIC_TRANSLATE_ERROR)

        try:
            return TranslationResult.from_response(body)
        except ValueError as exc:
            raise TranslationRequestError(f"Backend returned an invalid result: {exc}") from exc

    # -- evaluation --

    async def get_evaluation_summary(self) -> dict[str, Any]:
        """Fetch the backend's aggregate ASR/MT/TTS quality summary."""
        body = (await self._request("get", "/api/evaluation/summary")).json()
        if not body.get("success"):
            raise APIError("Failed to fetch evaluation summary", category="http")
        return body.get("summary") or {}

    async def reset_evaluation(self) -> dict[str, Any]:
        """Clear the backend's accumulated evaluation metrics."""
        body = (await self._request("post", "/api/evaluation/reset")).json()
        if not body.get("success"):
            raise APIError("Error resetting metrics", category="http")
        return body

    async def aclose(self) -> None:
        await self._client.aclose()
