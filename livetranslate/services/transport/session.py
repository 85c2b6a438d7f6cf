"""Persistent event channel to the translation backend.

``TransportSession`` owns one WebSocket at a time, reconnects under a
bounded tenacity policy after unexpected drops, and demultiplexes inbound
JSON events to subscribers. Batch requests go through the REST client.

Inbound handlers receive:
    connected            -> dict (``{"message": ...}``)
    translation_started  -> dict (``{"source_lang", "target_lang"}``)
    translation_result   -> TranslationResult
    translation_stopped  -> dict
    error                -> str

Usage::

    transport = TransportSession()
    await transport.activate()          # health probe
    await transport.connect()           # event channel
    transport.on("translation_result", handle_result)
    await transport.start_translation("en", "es")
"""

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import websockets
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from livetranslate.core.config import get_settings
from livetranslate.core.exceptions import (
    LiveTranslateError,
    NotConnectedError,
    ReconnectExhaustedError,
    TranslationAlreadyActiveError,
    TransportError,
)
from livetranslate.core.models import (
    ConnectionState,
    InboundEvent,
    OutboundEvent,
    TranslationResult,
    WebSocketMessage,
)
from livetranslate.services.transport.api_client import APIClient
from livetranslate.services.transport.health import HealthMonitor

logger = logging.getLogger(__name__)

_RETRYABLE = (OSError, TimeoutError, InvalidHandshake, ConnectionClosed)

EventHandler = Callable[[Any], Awaitable[None] | None]
StateListener = Callable[[ConnectionState], None]


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Connection attempt %d failed (%s); retrying in %.1fs",
        retry_state.attempt_number,
        exc,
        delay,
    )


class TransportSession:
    """Owns the connection to the backend for one client.

    Args:
        api_client: REST client for batch requests and health probes.
        ws_url: Event channel URL (defaults to ``Settings.ws_url``).
        reconnect_attempts: Connection attempts before a terminal disconnect.
        reconnect_delay: Fixed seconds between attempts.
        connect_timeout: Opening-handshake timeout per attempt.
        health_interval: Seconds between health probes.
        health_timeout: Per-probe timeout.
        sleep: Coroutine used to wait between attempts.
    """

    def __init__(
        self,
        api_client: APIClient | None = None,
        ws_url: str | None = None,
        reconnect_attempts: int | None = None,
        reconnect_delay: float | None = None,
        connect_timeout: float | None = None,
        health_interval: float | None = None,
        health_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self._api = api_client or APIClient()
        self._url = ws_url or settings.ws_url
        self._attempts = reconnect_attempts if reconnect_attempts is not None else settings.reconnect_attempts
        self._delay = reconnect_delay if reconnect_delay is not None else settings.reconnect_delay
        self._connect_timeout = connect_timeout if connect_timeout is not None else settings.connect_timeout
        self._sleep = sleep
        if self._attempts < 1:
            raise ValueError("reconnect_attempts must be >= 1")

        self.health = HealthMonitor(self._api, interval=health_interval, timeout=health_timeout)

        self._state = ConnectionState.disconnected
        self._ws = None
        self._receiver: asyncio.Task | None = None
        self._reconnector: asyncio.Task | None = None
        self._closing = False
        self._exhausted = False
        self._translation_active = False
        self._attempts_made = 0
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._state_listeners: list[StateListener] = []

    # -- observable state --

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.connected

    @property
    def exhausted(self) -> bool:
        """True after the retry budget ran out; cleared by ``connect()``."""
        return self._exhausted

    @property
    def backend_reachable(self) -> bool:
        return self.health.reachable

    @property
    def translation_active(self) -> bool:
        return self._translation_active

    @property
    def attempts_made(self) -> int:
        """Connection attempts issued by the most recent establishment."""
        return self._attempts_made

    @property
    def api(self) -> APIClient:
        return self._api

    # -- subscriptions --

    def on(self, event: str | InboundEvent, handler: EventHandler) -> Callable[[], None]:
        """Subscribe ``handler`` to an inbound event; returns an unsubscriber."""
        key = str(event)
        if key not in InboundEvent.__members__:
            raise ValueError(f"Unknown event: {event}")
        self._handlers[key].append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers[key]:
                self._handlers[key].remove(handler)

        return _unsubscribe

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback for connection state transitions."""
        self._state_listeners.append(listener)
        return lambda: self._state_listeners.remove(listener) if listener in self._state_listeners else None

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info("Connection state: %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")

    # -- lifecycle --

    async def activate(self) -> None:
        """Start health probing (first probe completes before returning)."""
        await self.health.probe()
        self.health.start()

    async def connect(self) -> None:
        """Open the event channel, retrying within the configured budget.

        Raises:
            ReconnectExhaustedError: If every attempt failed.
            TransportError: If the URL or handshake is rejected outright.
        """
        if self.is_connected:
            return
        self._closing = False
        if self._reconnector is not None and not self._reconnector.done():
            try:
                await asyncio.shield(self._reconnector)
            except ReconnectExhaustedError:
                pass
            if self.is_connected:
                return
        await self._establish()

    async def disconnect(self) -> None:
        """Close the event channel without reconnecting."""
        self._closing = True
        reconnector, self._reconnector = self._reconnector, None
        if reconnector is not None and not reconnector.done():
            reconnector.cancel()
            try:
                await reconnector
            except (asyncio.CancelledError, ReconnectExhaustedError):
                pass

        ws, self._ws = self._ws, None
        receiver, self._receiver = self._receiver, None
        self._translation_active = False
        if ws is not None:
            try:
                await ws.close()
            except (ConnectionClosed, OSError) as exc:
                logger.debug("Error while closing channel: %s", exc)
        if receiver is not None and receiver is not asyncio.current_task():
            try:
                await asyncio.wait_for(receiver, timeout=self._connect_timeout)
            except TimeoutError:
                receiver.cancel()
        self._set_state(ConnectionState.disconnected)

    async def close(self) -> None:
        """Stop health probing, close the channel and release the HTTP pool."""
        await self.health.stop()
        await self.disconnect()
        await self._api.aclose()

    async def _open(self):
        self._attempts_made += 1
        logger.debug("Connecting to %s (attempt %d)", self._url, self._attempts_made)
        return await websockets.connect(self._url, open_timeout=self._connect_timeout)

    async def _establish(self) -> None:
        self._exhausted = False
        self._attempts_made = 0
        self._set_state(ConnectionState.connecting)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_fixed(self._delay),
            retry=retry_if_exception_type(_RETRYABLE),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    ws = await self._open()
        except _RETRYABLE as exc:
            self._exhausted = True
            logger.error("Giving up after %d connection attempts: %s", self._attempts_made, exc)
            self._set_state(ConnectionState.disconnected)
            raise ReconnectExhaustedError(self._attempts_made) from exc
        except asyncio.CancelledError:
            self._set_state(ConnectionState.disconnected)
            raise
        except Exception as exc:
            # Not worth retrying (bad URL, protocol misuse)
            logger.error("Cannot connect to %s: %s", self._url, exc)
            self._set_state(ConnectionState.disconnected)
            raise TransportError(f"Cannot connect to {self._url}: {exc}", code="CONNECT_FAILED") from exc

        if self._closing:
            await ws.close()
            self._set_state(ConnectionState.disconnected)
            return
        self._ws = ws
        self._receiver = asyncio.create_task(self._receive_loop(ws))
        self._set_state(ConnectionState.connected)

    async def _reconnect(self) -> None:
        try:
            await self._establish()
        except LiveTranslateError:
            # Terminal: state listeners already saw ``disconnected``
            pass

    async def _receive_loop(self, ws) -> None:
        """Dispatch inbound frames until the channel closes."""
        try:
            async for raw in ws:
                await self._dispatch_raw(raw)
        except ConnectionClosed as exc:
            logger.info("Event channel closed: %s", exc)
        except OSError as exc:
            logger.warning("Event channel failed: %s", exc)

        if ws is not self._ws:
            return
        self._ws = None
        self._translation_active = False
        if self._closing:
            return
        logger.warning("Connection to %s lost; reconnecting", self._url)
        self._set_state(ConnectionState.disconnected)
        self._reconnector = asyncio.create_task(self._reconnect())

    async def _dispatch_raw(self, raw: str | bytes) -> None:
        try:
            message = WebSocketMessage.model_validate(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValidationError):
            logger.warning("Ignoring malformed frame from backend")
            return

        event = message.type
        if event not in InboundEvent.__members__:
            logger.warning("Ignoring unknown event type: %s", event)
            return

        payload: Any = message.data
        if event == InboundEvent.translation_result:
            try:
                payload = TranslationResult.from_event(message.data)
            except ValueError as exc:
                logger.warning("Dropping malformed translation_result: %s", exc)
                return
        elif event == InboundEvent.error:
            payload = str(message.data.get("error") or message.data.get("message") or "Unknown backend error")
            logger.warning("Backend reported error: %s", payload)
        elif event == InboundEvent.translation_stopped:
            self._translation_active = False

        await self._emit(event, payload)

    async def _emit(self, event: str, payload: Any) -> None:
        for handler in list(self._handlers[event]):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler for %s failed", event)

    # -- outbound --

    async def _send(self, event: OutboundEvent, data: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None or not self.is_connected:
            raise NotConnectedError()
        message = WebSocketMessage(type=event.value, data=data)
        try:
            await ws.send(message.model_dump_json())
        except ConnectionClosed as exc:
            raise TransportError(f"Send failed, connection closed: {exc}") from exc

    async def start_translation(self, source_lang: str, target_lang: str) -> None:
        """Open a translation session on the connected channel.

        Raises:
            TranslationAlreadyActiveError: If a session is already open.
            NotConnectedError: If the channel is not connected.
        """
        if self._translation_active:
            raise TranslationAlreadyActiveError()
        self._translation_active = True
        try:
            await self._send(
                OutboundEvent.start_translation,
                {"source_lang": source_lang, "target_lang": target_lang},
            )
        except TransportError:
            self._translation_active = False
            raise
        logger.info("Translation session started: %s -> %s", source_lang, target_lang)

    async def stop_translation(self) -> None:
        """Close the current translation session (no-op when none is open)."""
        if not self._translation_active:
            logger.debug("stop_translation without an active session")
            return
        self._translation_active = False
        await self._send(OutboundEvent.stop_translation, {})
        logger.info("Translation session stop requested")

    async def send_chunk(self, encoded: str, sample_rate: int) -> None:
        """Send one base64 PCM16 chunk. Not retried on failure."""
        await self._send(
            OutboundEvent.audio_chunk,
            {"audio": encoded, "sample_rate": int(sample_rate), "format": "raw_pcm"},
        )

    async def send_utterance(
        self,
        audio: bytes,
        source_lang: str,
        target_lang: str,
    ) -> TranslationResult:
        """Translate one complete utterance over REST (batch mode)."""
        return await self._api.translate(audio, source_lang, target_lang)
