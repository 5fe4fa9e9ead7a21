"""Import daemon: polls the chat bridge on a fixed interval.

Runs as a background asyncio task.  Each cycle checks the bridge status
first: a bridge that is not running or not yet connected is skipped quietly,
and only cycles that bring in new messages log at INFO.  Session logs are not
polled; import those on demand.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from typing import Any

from chatlore.config import settings
from chatlore.errors import BackendUnavailable, BridgeUnavailableError
from chatlore.importers.base import ImportStats
from chatlore.importers.live import LiveImporter

logger = logging.getLogger(__name__)

FIRST_RUN_DELAY_SECONDS = 5.0

SKIP_NOT_RUNNING = "bridge_not_running"
SKIP_BRIDGE_ERROR = "bridge_error"
SKIP_NOT_CONNECTED = "bridge_not_connected"


class ImportDaemon:
    """Periodic live-bridge import.

    Args:
        importer: Live importer to drive (default: built from settings).
        interval: Seconds between cycles (default ``IMPORT_POLL_INTERVAL_SECONDS``).
        enabled: Master switch (default ``IMPORT_DAEMON_ENABLED``).
        first_run_delay: Seconds before the first cycle.
    """

    def __init__(
        self,
        importer: LiveImporter | None = None,
        interval: float | None = None,
        enabled: bool | None = None,
        first_run_delay: float = FIRST_RUN_DELAY_SECONDS,
    ) -> None:
        self.importer = importer or LiveImporter()
        self.interval = interval if interval is not None else settings.import_poll_interval_seconds
        self.enabled = settings.import_daemon_enabled if enabled is None else enabled
        self.first_run_delay = first_run_delay
        self.paused = False
        self.last_run: datetime | None = None
        self.last_result: ImportStats | None = None
        self.import_count = 0
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task | None:
        """Spawn the polling loop.

        Returns the task, or None when the daemon is disabled.
        """
        if not self.enabled:
            logger.info("Import daemon disabled via IMPORT_DAEMON_ENABLED")
            return None
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._loop(), name="import-daemon")
        logger.info("Import daemon started (polling every %ss)", self.interval)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Import daemon stopped")

    def pause(self) -> None:
        self.paused = True
        logger.info("Import daemon paused")

    def resume(self) -> None:
        self.paused = False
        logger.info("Import daemon resumed")

    async def import_now(self) -> ImportStats | None:
        """Run one cycle immediately. Returns None when disabled or paused."""
        if not self.enabled or self.paused:
            return None
        return await self.run_cycle()

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "running": self.running,
            "paused": self.paused,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_result": self.last_result.as_dict() if self.last_result else None,
            "import_count": self.import_count,
            "interval_seconds": self.interval,
        }

    async def run_cycle(self) -> ImportStats:
        """Check the bridge, import if connected, and record the outcome."""
        async with self._lock:
            logger.debug("Import daemon cycle #%d", self.import_count + 1)
            stats = await self._import()
            self.last_run = datetime.now(UTC)
            self.last_result = stats
            self.import_count += 1
            if stats.inserted:
                logger.info("Import daemon: +%d chat messages", stats.inserted)
            return stats

    async def _import(self) -> ImportStats:
        try:
            status = await self.importer.bridge.status()
        except BridgeUnavailableError as exc:
            reason = SKIP_NOT_RUNNING if exc.connection_refused else SKIP_BRIDGE_ERROR
            return ImportStats(skip_reason=reason)

        if status.get("connected") is not True:
            return ImportStats(skip_reason=SKIP_NOT_CONNECTED)

        try:
            return await self.importer.import_all(quiet=True)
        except BackendUnavailable as exc:
            logger.warning("Import daemon: chat bridge error: %s", exc)
            return ImportStats(failed_reason=str(exc))

    async def _loop(self) -> None:
        await asyncio.sleep(self.first_run_delay)
        while True:
            if not self.paused:
                try:
                    await self.run_cycle()
                except Exception:
                    logger.exception("Import daemon cycle failed")
            await asyncio.sleep(self.interval)
