"""
Cooperative cancellation signal shared by every wait point of the pipeline.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class ShutdownSignal:
    """
    One-shot signal. Waiters observe it at suspension points; in-flight work is never interrupted.

    Usage:
        signal = ShutdownSignal()
        interrupted = await signal.sleep(2.0)
        signal.trigger()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._subscribers: list[asyncio.Event] = []

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def trigger(self) -> None:
        if self._event.is_set():
            return
        logger.info("Shutdown requested")
        self._event.set()
        for event in self._subscribers:
            event.set()

    def subscribe(self, event: asyncio.Event) -> None:
        """Set `event` when the signal fires (immediately if it already has)."""
        self._subscribers.append(event)
        if self._event.is_set():
            event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to `seconds`. Returns True if the signal cut the sleep short."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0.0))
        except asyncio.TimeoutError:
            return False
        return True
