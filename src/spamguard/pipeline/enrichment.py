"""
Attach fetched web-page summaries to work items before classification.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from spamguard.errors import EnrichmentFailure
from spamguard.pipeline.signals import ShutdownSignal
from spamguard.schemas.messages import WebSummary, WorkItem
from spamguard.services.web_content import ContentFetcher

logger = logging.getLogger(__name__)


class WebContentResolver:
    """
    Enrichment never fails the item and never takes longer than its timeout.

    URLs are fetched concurrently; whatever finished when the timeout (or shutdown)
    hits is kept, the rest is cancelled.
    """

    def __init__(
        self,
        fetcher: Optional[ContentFetcher],
        *,
        timeout: float = 5.0,
        concurrency: int = 8,
        max_urls: int = 3,
        signal: Optional[ShutdownSignal] = None,
    ):
        self._fetcher = fetcher
        self._timeout = timeout
        self._max_urls = max_urls
        self._signal = signal
        self._semaphore = asyncio.Semaphore(concurrency)

    @property
    def enabled(self) -> bool:
        return self._fetcher is not None

    async def enrich_batch(self, items: Sequence[WorkItem]) -> list[WorkItem]:
        if not self.enabled:
            return list(items)
        return list(await asyncio.gather(*(self._enrich_bounded(item) for item in items)))

    async def _enrich_bounded(self, item: WorkItem) -> WorkItem:
        if not item.extracted_urls:
            return item
        async with self._semaphore:
            return await self.enrich(item, self._timeout)

    async def enrich(self, item: WorkItem, timeout: float) -> WorkItem:
        urls = list(item.extracted_urls[: self._max_urls])
        if self._fetcher is None or not urls:
            return item

        tasks = [asyncio.ensure_future(self._fetch(url, timeout)) for url in urls]
        waiters: set[asyncio.Future] = set(tasks)
        stop = asyncio.ensure_future(self._signal.wait()) if self._signal is not None else None
        if stop is not None:
            waiters.add(stop)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            while any(not task.done() for task in tasks):
                remaining = deadline - loop.time()
                if remaining <= 0 or (stop is not None and stop.done()):
                    break
                await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
                waiters = {w for w in waiters if not w.done()}
        finally:
            if stop is not None:
                stop.cancel()
            unfinished = [task for task in tasks if not task.done()]
            for task in unfinished:
                task.cancel()

        summaries: list[WebSummary] = []
        timed_out = len(unfinished)
        for task in tasks:
            if task in unfinished or task.cancelled():
                continue
            summary = task.result()
            if summary is not None:
                summaries.append(summary)
        if timed_out:
            logger.warning("Enrichment for %s: %s of %s URLs timed out", item.key, timed_out, len(urls))
        if not summaries:
            return item
        return item.model_copy(update={"enrichment": tuple(summaries)})

    async def _fetch(self, url: str, timeout: float) -> Optional[WebSummary]:
        try:
            return await self._fetcher.fetch(url, timeout)
        except EnrichmentFailure as exc:
            logger.warning("Enrichment failed: %s", exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Enrichment failed for %s: %s", url, exc)
        return None
