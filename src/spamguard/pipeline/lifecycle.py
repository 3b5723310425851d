"""
Owns the queue and the assembler task, and drains in-flight work on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from spamguard.config import Settings
from spamguard.pipeline.assembler import BatchAssembler, BatchPolicy
from spamguard.pipeline.dispatcher import ClassificationDispatcher
from spamguard.pipeline.enrichment import WebContentResolver
from spamguard.pipeline.executor import ActionExecutor, OutcomeLog
from spamguard.pipeline.queue import PriorityQueue
from spamguard.pipeline.signals import ShutdownSignal
from spamguard.schemas.messages import WorkItem
from spamguard.services.classifier import ClassifierBackend
from spamguard.services.telegram import PlatformGateway
from spamguard.services.web_content import ContentFetcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShutdownReport:
    processed: int
    discarded: int

    @property
    def clean(self) -> bool:
        return self.discarded == 0


class LifecycleCoordinator:
    """
    Starts and stops the pipeline as one unit.

    Producers call `enqueue` (or check `accepting`) and the coordinator refuses new work
    once shutdown has been requested. `shutdown()` lets the assembler finish its current
    batch, drains the queue through the same pipeline within a deadline, and reports how
    many items could not be drained.
    """

    def __init__(
        self,
        queue: PriorityQueue,
        assembler: BatchAssembler,
        signal: ShutdownSignal,
        *,
        drain_deadline: float = 20.0,
    ):
        self.queue = queue
        self.assembler = assembler
        self.signal = signal
        self.drain_deadline = drain_deadline
        self._task: Optional[asyncio.Task] = None
        self._report: Optional[ShutdownReport] = None
        self._shutdown_lock = asyncio.Lock()

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        backend: ClassifierBackend,
        gateway: PlatformGateway,
        fetcher: Optional[ContentFetcher] = None,
        outcomes: Optional[OutcomeLog] = None,
    ) -> "LifecycleCoordinator":
        signal = ShutdownSignal()
        queue = PriorityQueue(
            signal,
            soft_capacity=settings.QUEUE_SOFT_CAPACITY,
            staleness_window=settings.STALENESS_WINDOW_SECONDS,
        )
        resolver = WebContentResolver(
            fetcher if settings.ENRICHMENT_ENABLED else None,
            timeout=settings.ENRICHMENT_TIMEOUT_SECONDS,
            concurrency=settings.ENRICHMENT_CONCURRENCY,
            max_urls=settings.MAX_URLS_PER_MESSAGE,
            signal=signal,
        )
        dispatcher = ClassificationDispatcher(
            backend,
            signal,
            max_attempts=settings.CLASSIFIER_MAX_ATTEMPTS,
            backoff_base=settings.CLASSIFIER_BACKOFF_SECONDS,
            backoff_max=settings.CLASSIFIER_BACKOFF_MAX_SECONDS,
        )
        executor = ActionExecutor(gateway, outcomes=outcomes, timezone_name=settings.TIMEZONE)
        assembler = BatchAssembler(
            queue,
            resolver,
            dispatcher,
            executor,
            signal,
            BatchPolicy(max_size=settings.BATCH_MAX_SIZE, max_wait=settings.BATCH_MAX_WAIT_SECONDS),
        )
        return cls(queue, assembler, signal, drain_deadline=settings.DRAIN_DEADLINE_SECONDS)

    @property
    def accepting(self) -> bool:
        return not self.signal.is_set

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def outcomes(self) -> OutcomeLog:
        return self.assembler.executor.outcomes

    def start(self) -> None:
        if self.running:
            logger.warning("Pipeline is already running")
            return
        if self.signal.is_set:
            raise RuntimeError("pipeline has been shut down")
        self._task = asyncio.create_task(self.assembler.run(), name="batch-assembler")
        logger.info("Pipeline started")

    def enqueue(self, item: WorkItem) -> Optional[WorkItem]:
        if not self.accepting:
            logger.info("Pipeline is shutting down; not accepting %s", item.key)
            return None
        return self.queue.enqueue(item)

    async def shutdown(self, drain_deadline: Optional[float] = None) -> ShutdownReport:
        """Stop intake, drain what is queued, and report undrained items. Idempotent."""
        async with self._shutdown_lock:
            if self._report is not None:
                return self._report

            before = self.outcomes.total
            self.signal.trigger()
            if self._task is not None:
                try:
                    await self._task
                except Exception as exc:
                    logger.exception("Batch assembler crashed: %s", exc)

            discarded = await self._drain(self.drain_deadline if drain_deadline is None else drain_deadline)
            self._report = ShutdownReport(processed=self.outcomes.total - before, discarded=discarded)
            if self._report.clean:
                logger.info("Shutdown complete; drained %s items", self._report.processed)
            else:
                logger.error(
                    "Shutdown complete; drained %s items, %s discarded undrained",
                    self._report.processed,
                    self._report.discarded,
                )
            return self._report

    async def _drain(self, deadline_seconds: float) -> int:
        """Run queued work through the pipeline until empty or past the deadline; return the undrained count."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + deadline_seconds
        max_size = self.assembler.policy.max_size

        while loop.time() < deadline:
            batch = await self.queue.dequeue_batch(max_size, 0)
            if not batch:
                break
            await self.assembler.process(batch)

        leftover = self.queue.drain_all()
        self.queue.release(item.key for item in leftover)
        return len(leftover)
