"""Cancellable periodic task used for connection health checks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

LOG = logging.getLogger(__name__)


class PeriodicTask:
    """Runs a coroutine every ``interval`` seconds until cancelled.

    The next wait only begins once the previous run has finished, so runs never
    overlap. ``cancel()`` stops future runs without interrupting one in flight.
    """

    def __init__(self, callback: Callable[[], Awaitable[Any]], interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._callback = callback
        self._interval = interval
        self._stopped = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped.is_set()

    def start(self) -> None:
        """Start the loop in the running event loop; no-op when already running."""

        if self.running:
            return
        self._stopped = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._runner())

    def cancel(self) -> None:
        """Stop scheduling further runs."""

        self._stopped.set()

    async def _runner(self) -> None:
        stopped = self._stopped
        while not stopped.is_set():
            try:
                await asyncio.wait_for(stopped.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            if stopped.is_set():
                return
            try:
                await self._callback()
            except Exception:
                LOG.exception("Periodic task run failed")


__all__ = ["PeriodicTask"]
