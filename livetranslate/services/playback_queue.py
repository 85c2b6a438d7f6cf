"""Ordered surfacing and playback of translation results.

Results are surfaced to listeners and played in arrival order, one at a
time. Completion (or failure) of one playback starts the next; nothing is
dropped, reordered or overlapped.

Usage::

    queue = PlaybackQueue(SoundDevicePlayback())
    queue.add_result_listener(print_result)
    transport.on("translation_result", queue.submit)
    ...
    await queue.wait_idle()
"""

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Callable

from livetranslate.core.exceptions import PlaybackError
from livetranslate.core.models import PlaybackEntry, TranslationResult
from livetranslate.services.audio.playback import BasePlayback

logger = logging.getLogger(__name__)


class PlaybackQueue:
    """FIFO of translated audio with a single active playback.

    Args:
        playback: Capability that plays one payload to completion.
    """

    def __init__(self, playback: BasePlayback) -> None:
        self._playback = playback
        self._entries: deque[PlaybackEntry] = deque()
        self._sequence = itertools.count()
        self._current: PlaybackEntry | None = None
        self._task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._result_listeners: list[Callable[[TranslationResult], None]] = []
        self._play_listeners: list[Callable[[PlaybackEntry | None], None]] = []

    # -- observable state --

    @property
    def is_playing(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> PlaybackEntry | None:
        return self._current

    @property
    def pending(self) -> int:
        """Entries waiting behind the current playback."""
        return len(self._entries)

    @property
    def idle(self) -> bool:
        return self._current is None and not self._entries

    def add_result_listener(self, callback: Callable[[TranslationResult], None]) -> Callable[[], None]:
        """Register a callback that receives every submitted result in order."""
        self._result_listeners.append(callback)
        return lambda: self._result_listeners.remove(callback) if callback in self._result_listeners else None

    def add_play_listener(self, callback: Callable[[PlaybackEntry | None], None]) -> Callable[[], None]:
        """Register a callback for playback changes (``None`` means idle)."""
        self._play_listeners.append(callback)
        return lambda: self._play_listeners.remove(callback) if callback in self._play_listeners else None

    # -- operations --

    def submit(self, result: TranslationResult) -> PlaybackEntry | None:
        """Surface ``result`` and queue its audio behind earlier results.

        Returns:
            The queued entry, or None when the result carries no audio.
        """
        for callback in list(self._result_listeners):
            try:
                callback(result)
            except Exception:
                logger.exception("Result listener failed")

        if not result.audio:
            logger.debug("Result without audio surfaced but not queued")
            return None

        entry = PlaybackEntry(
            audio=result.audio,
            sample_rate=result.sample_rate,
            sequence_index=next(self._sequence),
            result=result,
        )
        self._entries.append(entry)
        self._idle.clear()
        if self._current is None:
            self._play_next()
        return entry

    def play_now(self, result: TranslationResult) -> PlaybackEntry | None:
        """Interrupt current playback and play ``result`` immediately.

        The interrupted entry is abandoned; queued entries keep their order
        and resume once this playback ends.
        """
        if not result.audio:
            return None
        self._abandon_current()
        entry = PlaybackEntry(
            audio=result.audio,
            sample_rate=result.sample_rate,
            sequence_index=next(self._sequence),
            result=result,
        )
        self._idle.clear()
        self._start(entry)
        return entry

    def clear(self) -> int:
        """Discard queued (not yet playing) entries; returns how many."""
        dropped = len(self._entries)
        self._entries.clear()
        if self._current is None:
            self._set_idle()
        return dropped

    async def wait_idle(self) -> None:
        """Wait until nothing is playing and nothing is queued."""
        await self._idle.wait()

    async def close(self) -> None:
        """Stop playback and drop everything queued."""
        self._entries.clear()
        task = self._task
        self._abandon_current()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_idle()

    # -- internals --

    def _play_next(self) -> None:
        if not self._entries:
            self._set_idle()
            return
        self._start(self._entries.popleft())

    def _start(self, entry: PlaybackEntry) -> None:
        self._current = entry
        self._task = asyncio.create_task(self._playback.play(entry.audio, entry.sample_rate))
        self._task.add_done_callback(self._on_done)
        logger.debug("Playing entry %d (%d queued)", entry.sequence_index, len(self._entries))
        self._notify_play(entry)

    def _abandon_current(self) -> None:
        task, self._task = self._task, None
        self._current = None
        if task is not None and not task.done():
            task.cancel()

    def _on_done(self, task: asyncio.Task) -> None:
        if task is not self._task:
            # Interrupted by play_now() or close(); its successor is in charge
            return
        if not task.cancelled():
            exc = task.exception()
            if isinstance(exc, PlaybackError):
                logger.warning("Playback failed for entry %d: %s", self._current.sequence_index, exc.detail)
            elif exc is not None:
                logger.error("Unexpected playback failure", exc_info=exc)
        self._task = None
        self._current = None
        self._play_next()

    def _set_idle(self) -> None:
        if self._idle.is_set():
            return
        self._idle.set()
        self._notify_play(None)

    def _notify_play(self, entry: PlaybackEntry | None) -> None:
        for callback in list(self._play_listeners):
            try:
                callback(entry)
            except Exception:
                logger.exception("Play listener failed")
