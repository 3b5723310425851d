"""
Single consumer loop: dequeue a batch, enrich it, classify it, apply verdicts.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from spamguard.pipeline.dispatcher import BatchState, ClassificationDispatcher
from spamguard.pipeline.enrichment import WebContentResolver
from spamguard.pipeline.executor import ActionExecutor
from spamguard.pipeline.queue import PriorityQueue
from spamguard.pipeline.signals import ShutdownSignal
from spamguard.schemas.classification import Classified, MalformedEntry, MissingId, Outcome
from spamguard.schemas.messages import WorkItem

logger = logging.getLogger(__name__)


@dataclass
class BatchPolicy:
    max_size: int = 20
    max_wait: float = 2.0


class BatchAssembler:
    """
    Exactly one assembler runs per queue, so at most one classifier call is in flight.
    """

    def __init__(
        self,
        queue: PriorityQueue,
        resolver: WebContentResolver,
        dispatcher: ClassificationDispatcher,
        executor: ActionExecutor,
        signal: ShutdownSignal,
        policy: BatchPolicy | None = None,
    ):
        self.queue = queue
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.executor = executor
        self.signal = signal
        self.policy = policy or BatchPolicy()
        self.batches = 0

    async def run(self) -> None:
        logger.info(
            "Batch assembler started (max_size=%s, max_wait=%.1fs)", self.policy.max_size, self.policy.max_wait
        )
        while not self.signal.is_set:
            batch = await self.queue.dequeue_batch(self.policy.max_size, self.policy.max_wait)
            if batch:
                await self.process(batch)
        # Whatever dequeue_batch returned at shutdown was processed above; the rest is drained by the coordinator.
        logger.info("Batch assembler stopped after %s batches", self.batches)

    async def process(self, batch: Sequence[WorkItem]) -> list[Outcome]:
        """Run one batch through enrichment, dispatch and execution. Never raises."""
        if not batch:
            return []
        self.batches += 1
        outcomes: list[Outcome] = []
        requeued: set[str] = set()
        try:
            await self._process(batch, outcomes, requeued)
        except Exception as exc:
            logger.exception("Unexpected failure processing batch of %s: %s", len(batch), exc)
            # Items that already have an outcome or sit in the queue again are left alone.
            finished = {outcome.key for outcome in outcomes}
            outcomes.extend(
                self.executor.drop(item, f"pipeline error: {exc}")
                for item in batch
                if item.key not in finished and item.key not in requeued
            )
            self.queue.release(item.key for item in batch if item.key not in requeued)
        return outcomes

    async def _process(self, batch: Sequence[WorkItem], outcomes: list[Outcome], requeued: set[str]) -> None:
        priorities = Counter(item.priority.value for item in batch)
        logger.info("Processing batch of %s (%s)", len(batch), dict(priorities))

        items = await self.resolver.enrich_batch(batch)
        report = await self.dispatcher.dispatch(items)

        if report.requeue:
            self.queue.requeue(report.requeue)
            requeued.update(item.key for item in report.requeue)

        for item in items:
            if item.key in requeued:
                continue
            if report.state is BatchState.EXHAUSTED:
                outcomes.append(self.executor.drop(item, f"classifier exhausted: {report.error}"))
                continue
            result = report.results.get(item.key, MissingId())
            if isinstance(result, Classified):
                outcomes.append(await self.executor.apply(item, result.verdict))
            elif isinstance(result, MalformedEntry):
                outcomes.append(self.executor.drop(item, f"malformed verdict: {result.detail}"))
            else:
                outcomes.append(self.executor.drop(item, "missing from classifier reply"))

        self.queue.release(item.key for item in items if item.key not in requeued)
