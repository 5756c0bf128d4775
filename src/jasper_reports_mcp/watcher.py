"""Async execution watcher.

Polls open async report executions on a fixed interval so they reach a
terminal state even when no client asks for their status.
Uses asyncio tasks; no external scheduler dependency.
"""

from __future__ import annotations

import asyncio
import logging

from .core.engine import ReportExecutionEngine

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
ERROR_BACKOFF_SECONDS = 30.0


class ExecutionWatcher:
    """Background refresh of async executions that are still running."""

    def __init__(self, engine: ReportExecutionEngine, interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS):
        self.engine = engine
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the polling loop. An interval of 0 leaves the watcher off."""
        if self._running:
            return
        if self._interval_seconds <= 0:
            logger.info("Execution watcher disabled (poll interval is 0)")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Execution watcher started (interval: %.1f seconds)", self._interval_seconds)

    async def stop(self):
        """Stop the polling loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Execution watcher stopped")

    async def _run_loop(self):
        while self._running:
            try:
                await asyncio.sleep(self._interval_seconds)
                if not self._running:
                    break
                checked = await self.engine.refresh_active_executions()
                if checked:
                    logger.debug("Refreshed %d async execution(s)", checked)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Async execution refresh failed: %s", exc, exc_info=True)
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
