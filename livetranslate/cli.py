#!/usr/bin/env python3
"""
LiveTranslate command-line client.

Records from the default microphone, streams or uploads the audio to the
translation backend, prints every translation and plays the synthesized
speech in order.

Usage:
    livetranslate --source en --target es
    livetranslate --mode batch --duration 5
    livetranslate --list-devices
    livetranslate --save-audio ./clips
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable
from pathlib import Path

from livetranslate.core.config import Settings, get_settings
from livetranslate.core.exceptions import LiveTranslateError
from livetranslate.core.models import InboundEvent, RecorderState, TranslationMode, TranslationResult
from livetranslate.services.audio import SoundDeviceCapture, SoundDevicePlayback
from livetranslate.services.history import TranslationHistory
from livetranslate.services.playback_queue import PlaybackQueue
from livetranslate.services.recorder import RecordingController
from livetranslate.services.transport import APIClient, TransportSession

logger = logging.getLogger(__name__)

# Seconds to wait for the backend to acknowledge stop_translation
STOP_ACK_TIMEOUT = 5.0


def _device(value: str | None) -> int | str | None:
    """sounddevice accepts an index or a name substring."""
    if value is None or value == "":
        return None
    return int(value) if value.isdigit() else value


def _print_result(result: TranslationResult) -> None:
    print(f"\n[{result.latency_ms:.0f} ms, {result.confidence * 100:.1f}%]")
    print(f"  {result.original_text}")
    print(f"  -> {result.translated_text}")


def make_audio_saver(directory: str | Path) -> Callable[[TranslationResult], None]:
    """Return a result listener that writes each synthesized clip to ``directory``.

    Files are numbered in arrival order as ``translation_<n>.wav``; results
    without audio are skipped but still counted.
    """
    target = Path(directory)
    target.mkdir(parents=True, exist_ok=True)
    count = 0

    def _save(result: TranslationResult) -> None:
        nonlocal count
        count += 1
        if not result.audio:
            return
        path = target / f"translation_{count}.wav"
        path.write_bytes(result.audio)
        logger.debug("Saved %s", path)

    return _save


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="livetranslate",
        description="Speak into the microphone and hear the translation.",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in TranslationMode],
        default=settings.translation_mode,
        help="streaming: send chunks while speaking; batch: upload on stop (default: %(default)s)",
    )
    parser.add_argument("--source", default=settings.source_lang, help="Spoken language (default: %(default)s)")
    parser.add_argument("--target", default=settings.target_lang, help="Target language (default: %(default)s)")
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds instead of waiting for Enter",
    )
    parser.add_argument("--backend", default=None, help=f"Backend base URL (default: {settings.backend_url})")
    parser.add_argument("--save-audio", metavar="DIR", default=None, help="Write each translated clip to DIR")
    parser.add_argument("--list-devices", action="store_true", help="List audio devices and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


async def _wait_for_stop(controller: RecordingController, duration: float | None) -> None:
    """Return on Enter, after ``duration`` or when the recorder falls back to idle."""
    went_idle = asyncio.Event()
    unsubscribe = controller.add_state_listener(
        lambda state: went_idle.set() if state == RecorderState.idle else None
    )
    if duration is not None:
        trigger = asyncio.create_task(asyncio.sleep(duration))
    else:
        trigger = asyncio.create_task(asyncio.to_thread(sys.stdin.readline))
    idle_wait = asyncio.create_task(went_idle.wait())
    try:
        await asyncio.wait({trigger, idle_wait}, return_when=asyncio.FIRST_COMPLETED)
        if duration is None and not trigger.done():
            # The stdin reader thread cannot be cancelled
            print("Session ended. Press Enter to exit.")
    finally:
        unsubscribe()
        idle_wait.cancel()
        if not trigger.done():
            trigger.cancel()


async def run(args: argparse.Namespace, settings: Settings) -> int:
    if args.backend:
        settings = settings.model_copy(update={"backend_url": args.backend})

    api = APIClient(base_url=settings.backend_url, timeout=settings.request_timeout)
    transport = TransportSession(api_client=api, ws_url=settings.ws_url)
    history = TranslationHistory()
    queue = PlaybackQueue(SoundDevicePlayback(device=_device(settings.output_device)))
    queue.add_result_listener(history.append)
    queue.add_result_listener(_print_result)
    if args.save_audio:
        queue.add_result_listener(make_audio_saver(args.save_audio))

    stopped = asyncio.Event()
    transport.on(InboundEvent.translation_stopped, lambda _: stopped.set())

    capture = SoundDeviceCapture(
        sample_rate=settings.sample_rate,
        frame_size=settings.capture_frame_size,
        device=_device(settings.input_device),
    )
    controller = RecordingController(
        transport,
        capture,
        queue,
        mode=args.mode,
        source_lang=args.source,
        target_lang=args.target,
        chunk_duration=settings.chunk_duration_seconds,
        sample_rate=settings.sample_rate,
    )
    controller.add_error_listener(lambda err: print(f"Error: {err.detail}", file=sys.stderr))

    try:
        await transport.activate()
        if not transport.backend_reachable:
            print(f"Backend not reachable at {settings.backend_url}", file=sys.stderr)
            return 1

        await controller.start()
        if args.duration is None:
            print(f"Recording ({args.source} -> {args.target}). Press Enter to stop.")
        else:
            print(f"Recording ({args.source} -> {args.target}) for {args.duration:.1f}s.")
        await _wait_for_stop(controller, args.duration)

        if controller.state == RecorderState.recording:
            await controller.stop()
            if controller.mode == TranslationMode.streaming:
                try:
                    await asyncio.wait_for(stopped.wait(), STOP_ACK_TIMEOUT)
                except TimeoutError:
                    logger.warning("Backend did not acknowledge stop within %.0fs", STOP_ACK_TIMEOUT)

        await queue.wait_idle()
        stats = history.stats()
        if stats is not None:
            print(
                f"\n{stats.total_translations} translations, "
                f"avg latency {stats.avg_latency_ms:.0f} ms, "
                f"avg confidence {stats.avg_confidence * 100:.1f}%, "
                f"{stats.total_words} words"
            )
        return 0 if controller.last_error is None else 1
    except LiveTranslateError:
        # Already printed by the error listener
        return 1
    finally:
        await queue.close()
        await transport.close()


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    args = build_parser(settings).parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    if args.list_devices:
        print(SoundDeviceCapture.list_devices())
        return 0

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
