"""
Recording controller - the client's top-level state machine.

States: idle -> recording -> (processing) -> idle

Streaming mode sends fixed-duration chunks while recording and returns to
idle on stop; results keep arriving through the transport and are
sequenced by the playback queue. Batch mode buffers the whole utterance,
uploads it on stop (``processing``) and returns the single result.
"""

import asyncio
import logging
import time
from collections.abc import Callable

import numpy as np

from livetranslate.core.config import get_settings
from livetranslate.core.exceptions import (
    BackendError,
    BackendUnavailableError,
    LiveTranslateError,
    RecorderStateError,
    RecordingAlreadyActiveError,
    TransportError,
)
from livetranslate.core.models import (
    AudioChunk,
    ConnectionState,
    InboundEvent,
    RecorderState,
    TranslationMode,
    TranslationResult,
)
from livetranslate.services.audio.capture import BaseAudioCapture
from livetranslate.services.audio.chunker import AudioChunker
from livetranslate.services.audio.encoder import SampleEncoder
from livetranslate.services.audio.level_meter import AudioLevelMeter
from livetranslate.services.playback_queue import PlaybackQueue
from livetranslate.services.transport.session import TransportSession

logger = logging.getLogger(__name__)

# Sentinel that tells the sender task the outbox is finished
_END_OF_STREAM = None


class RecordingController:
    """Wires capture, chunking and encoding to the transport in one of two modes.

    Args:
        transport: Connection to the backend.
        capture: Microphone capability.
        playback_queue: Sequencer that receives every translation result.
        mode: Streaming or batch delivery.
        source_lang: Language spoken into the microphone.
        target_lang: Language to translate into.
        chunk_duration: Seconds of audio per streaming chunk.
        sample_rate: Capture sample rate in Hz.
        encoder: Sample encoder (defaults to one with the configured window).
        level_meter_factory: Builds a fresh meter per session; None disables metering.
    """

    def __init__(
        self,
        transport: TransportSession,
        capture: BaseAudioCapture,
        playback_queue: PlaybackQueue,
        mode: TranslationMode | str | None = None,
        source_lang: str | None = None,
        target_lang: str | None = None,
        chunk_duration: float | None = None,
        sample_rate: int | None = None,
        encoder: SampleEncoder | None = None,
        level_meter_factory: Callable[[], AudioLevelMeter] | None = AudioLevelMeter,
    ) -> None:
        settings = get_settings()
        self._transport = transport
        self._capture = capture
        self._queue = playback_queue
        self._mode = TranslationMode(mode or settings.translation_mode)
        self._source_lang = source_lang or settings.source_lang
        self._target_lang = target_lang or settings.target_lang
        self._chunk_duration = chunk_duration if chunk_duration is not None else settings.chunk_duration_seconds
        self._sample_rate = sample_rate or settings.sample_rate
        self._encoder = encoder or SampleEncoder(window_bytes=settings.encode_window_bytes)
        self._meter_factory = level_meter_factory

        self._state = RecorderState.idle
        self._last_error: LiveTranslateError | None = None
        self._meter: AudioLevelMeter | None = None
        self._chunker: AudioChunker | None = None
        self._utterance: list[np.ndarray] = []
        self._outbox: asyncio.Queue[AudioChunk | None] | None = None
        self._sender: asyncio.Task | None = None
        self._abort_task: asyncio.Task | None = None
        self._last_frame_at: float | None = None
        self._capturing = False
        self._aborting = False

        self._state_listeners: list[Callable[[RecorderState], None]] = []
        self._error_listeners: list[Callable[[LiveTranslateError], None]] = []

        transport.on(InboundEvent.translation_result, self._on_translation_result)
        transport.on(InboundEvent.error, self._on_backend_error)
        transport.add_state_listener(self._on_connection_state)

    # -- observable state --

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def last_error(self) -> LiveTranslateError | None:
        return self._last_error

    @property
    def audio_level(self) -> float:
        return self._meter.level if self._meter is not None else 0.0

    @property
    def seconds_since_last_frame(self) -> float | None:
        """Time since the capture delivered a frame; None when not recording."""
        if self._state != RecorderState.recording or self._last_frame_at is None:
            return None
        return time.monotonic() - self._last_frame_at

    @property
    def mode(self) -> TranslationMode:
        return self._mode

    @mode.setter
    def mode(self, value: TranslationMode | str) -> None:
        self._require_idle("change mode")
        self._mode = TranslationMode(value)

    @property
    def source_lang(self) -> str:
        return self._source_lang

    @property
    def target_lang(self) -> str:
        return self._target_lang

    def set_languages(self, source_lang: str, target_lang: str) -> None:
        self._require_idle("change languages")
        self._source_lang = source_lang
        self._target_lang = target_lang

    def add_state_listener(self, callback: Callable[[RecorderState], None]) -> Callable[[], None]:
        self._state_listeners.append(callback)
        return lambda: self._state_listeners.remove(callback) if callback in self._state_listeners else None

    def add_error_listener(self, callback: Callable[[LiveTranslateError], None]) -> Callable[[], None]:
        self._error_listeners.append(callback)
        return lambda: self._error_listeners.remove(callback) if callback in self._error_listeners else None

    # -- transitions --

    async def start(self) -> None:
        """Transition ``idle -> recording``.

        Raises:
            RecordingAlreadyActiveError: If a session is already running.
            BackendUnavailableError: If the health probe reports the backend down.
            MicrophoneError: If the microphone cannot be acquired.
            TransportError: If the streaming channel cannot be opened.
        """
        if self._state != RecorderState.idle or self._capturing:
            raise RecordingAlreadyActiveError()
        if not self._transport.backend_reachable:
            raise self._report(BackendUnavailableError())

        self._last_error = None
        self._prepare_session()
        try:
            await self._capture.start(self._on_frame)
        except LiveTranslateError as exc:
            await self._abandon_start()
            raise self._report(exc)
        except BaseException:
            await self._abandon_start()
            raise

        try:
            if self._mode == TranslationMode.streaming:
                await self._transport.connect()
                await self._transport.start_translation(self._source_lang, self._target_lang)
                self._sender = asyncio.create_task(self._send_loop(self._outbox))
        except LiveTranslateError as exc:
            await self._abandon_start()
            raise self._report(exc)
        except BaseException:
            # Cancelled or unexpected failure: the device must not stay held
            await self._abandon_start()
            raise

        self._set_state(RecorderState.recording)
        logger.info(
            "Recording started (%s, %s -> %s)",
            self._mode.value,
            self._source_lang,
            self._target_lang,
        )

    async def stop(self) -> TranslationResult | None:
        """Stop recording.

        Streaming: flushes the final partial chunk, ends the translation
        session and returns None. Batch: uploads the utterance and returns
        its result after passing it to the playback queue.

        Raises:
            RecorderStateError: If not recording.
            TranslationRequestError: If the batch upload fails.
        """
        if self._state != RecorderState.recording:
            raise RecorderStateError(f"Cannot stop while {self._state.value}")
        if self._mode == TranslationMode.streaming:
            await self._stop_streaming()
            return None
        return await self._stop_batch()

    async def _stop_streaming(self) -> None:
        self._aborting = True
        try:
            self._capturing = False
            await self._capture.stop()
            if self._chunker is not None:
                final = self._chunker.flush()
                if final is not None and self._outbox is not None:
                    self._outbox.put_nowait(final)
            await self._finish_sender()
            try:
                await self._transport.stop_translation()
            except TransportError as exc:
                logger.warning("Could not send stop_translation: %s", exc.detail)
        finally:
            await self._teardown()
        logger.info("Recording stopped (streaming)")

    async def _stop_batch(self) -> TranslationResult:
        self._capturing = False
        frames, self._utterance = self._utterance, []
        self._set_state(RecorderState.processing)
        try:
            await self._capture.stop()
            self._release_meter()
            if not frames:
                raise RecorderStateError("No audio was captured")
            wav = self._encoder.to_wav_bytes(np.concatenate(frames), self._sample_rate)
            logger.info("Uploading utterance (%d bytes)", len(wav))
            result = await self._transport.send_utterance(wav, self._source_lang, self._target_lang)
        except LiveTranslateError as exc:
            raise self._report(exc)
        finally:
            await self._teardown()
        self._queue.submit(result)
        return result

    # -- capture path --

    def _on_frame(self, frame: np.ndarray) -> None:
        if not self._capturing:
            return
        self._last_frame_at = time.monotonic()
        if self._meter is not None:
            self._meter.update(frame)
        if self._mode == TranslationMode.batch:
            self._utterance.append(np.array(frame, copy=True))
            return
        chunk = self._chunker.push(frame) if self._chunker is not None else None
        if chunk is not None and self._outbox is not None:
            self._outbox.put_nowait(chunk)

    async def _send_loop(self, outbox: asyncio.Queue) -> None:
        """Encode and send chunks strictly in capture order."""
        while True:
            chunk = await outbox.get()
            try:
                if chunk is _END_OF_STREAM:
                    return
                encoded = self._encoder.encode_chunk(chunk)
                await self._transport.send_chunk(encoded, chunk.sample_rate)
                logger.debug("Sent chunk %d (%.2fs)", chunk.index, chunk.duration)
            except TransportError as exc:
                # No retransmission: this window is lost
                logger.warning("Dropping chunk %d: %s", chunk.index, exc.detail)
            finally:
                outbox.task_done()

    async def _finish_sender(self) -> None:
        sender, outbox = self._sender, self._outbox
        if sender is None or outbox is None:
            return
        outbox.put_nowait(_END_OF_STREAM)
        try:
            await sender
        finally:
            self._sender = None
            self._outbox = None

    # -- transport callbacks --

    def _on_translation_result(self, result: TranslationResult) -> None:
        self._queue.submit(result)

    def _on_backend_error(self, message: str) -> None:
        error = BackendError(message)
        self._report(error)

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state != ConnectionState.disconnected:
            return
        if self._state != RecorderState.recording or self._mode != TranslationMode.streaming:
            return
        if self._aborting:
            return
        self._aborting = True
        self._abort_task = asyncio.get_running_loop().create_task(self._abort_on_disconnect())

    async def _abort_on_disconnect(self) -> None:
        try:
            logger.warning("Connection lost while recording; ending session")
            self._capturing = False
            await self._capture.stop()
            if self._sender is not None:
                self._sender.cancel()
                try:
                    await self._sender
                except asyncio.CancelledError:
                    pass
            self._sender = None
            self._outbox = None
            self._report(TransportError("Connection to the backend was lost", code="CONNECTION_LOST"))
        finally:
            await self._teardown()

    # -- helpers --

    def _prepare_session(self) -> None:
        self._meter = self._meter_factory() if self._meter_factory is not None else None
        self._chunker = AudioChunker(self._chunk_duration, self._sample_rate)
        self._utterance = []
        self._outbox = asyncio.Queue() if self._mode == TranslationMode.streaming else None
        self._last_frame_at = None
        self._capturing = True
        self._aborting = False

    async def _abandon_start(self) -> None:
        self._capturing = False
        if self._capture.is_active:
            await self._capture.stop()
        if self._transport.translation_active:
            try:
                await self._transport.stop_translation()
            except TransportError as exc:
                logger.debug("Could not withdraw start_translation: %s", exc.detail)
        self._release_session()

    def _release_meter(self) -> None:
        meter, self._meter = self._meter, None
        if meter is not None:
            meter.close()

    def _release_session(self) -> None:
        self._capturing = False
        self._release_meter()
        self._chunker = None
        self._outbox = None
        self._utterance = []
        self._last_frame_at = None

    async def _teardown(self) -> None:
        if self._capture.is_active:
            await self._capture.stop()
        if self._sender is not None:
            self._sender.cancel()
            self._sender = None
        self._release_session()
        self._aborting = False
        self._abort_task = None
        self._set_state(RecorderState.idle)

    def _require_idle(self, action: str) -> None:
        if self._state != RecorderState.idle:
            raise RecorderStateError(f"Cannot {action} while {self._state.value}")

    def _set_state(self, state: RecorderState) -> None:
        if state == self._state:
            return
        logger.debug("Recorder state: %s -> %s", self._state.value, state.value)
        self._state = state
        for callback in list(self._state_listeners):
            try:
                callback(state)
            except Exception:
                logger.exception("Recorder state listener failed")

    def _report(self, error: LiveTranslateError) -> LiveTranslateError:
        self._last_error = error
        logger.warning("%s: %s", error.code, error.detail)
        for callback in list(self._error_listeners):
            try:
                callback(error)
            except Exception:
                logger.exception("Recorder error listener failed")
        return error
