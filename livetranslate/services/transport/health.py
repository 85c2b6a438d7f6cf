"""Periodic backend liveness probe.

Maintains the "backend reachable" flag that gates recording. Independent
of the event channel's own connection state.
"""

import asyncio
import logging
from collections.abc import Callable

from livetranslate.core.config import get_settings
from livetranslate.services.transport.api_client import APIClient

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Polls ``GET /health`` every ``interval`` seconds.

    Args:
        client: REST client used for the probe.
        interval: Seconds between probes (default from settings).
        timeout: Per-probe timeout in seconds (default from settings).
    """

    def __init__(
        self,
        client: APIClient,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._client = client
        self._interval = interval if interval is not None else settings.health_check_interval
        self._timeout = timeout if timeout is not None else settings.health_check_timeout
        self._reachable = False
        self._listeners: list[Callable[[bool], None]] = []
        self._task: asyncio.Task | None = None

    @property
    def reachable(self) -> bool:
        return self._reachable

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a callback for reachability changes; returns an unsubscriber."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback) if callback in self._listeners else None

    async def probe(self) -> bool:
        """Run one probe and update the reachability flag."""
        ok = await self._client.check_health(timeout=self._timeout)
        if ok != self._reachable:
            self._reachable = ok
            logger.info("Backend %s", "reachable" if ok else "unreachable")
            for callback in list(self._listeners):
                try:
                    callback(ok)
                except Exception:
                    logger.exception("Health listener failed")
        return ok

    def start(self) -> None:
        """Launch the background polling loop (idempotent)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the polling loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(self._interval)
