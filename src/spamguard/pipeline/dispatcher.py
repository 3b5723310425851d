"""
Send batches to the classifier backend and turn replies into per-message results.

Per batch state machine:

    Pending -> Dispatched -> Succeeded
                          -> RetryScheduled -> Dispatched ...
                          -> Exhausted

A transient failure retries the whole batch with exponential backoff. Items stay
with the dispatcher while a retry is outstanding, so no message is dispatched
twice concurrently. A shutdown during backoff hands items with attempt budget
left back for requeueing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from pydantic import ValidationError

from spamguard.errors import PermanentBackendError, TransientBackendError
from spamguard.pipeline.signals import ShutdownSignal
from spamguard.schemas.classification import Classified, MalformedEntry, MissingId, Verdict, VerdictResult
from spamguard.schemas.messages import WorkItem
from spamguard.services.classifier import ClassificationRequest, ClassifierBackend

logger = logging.getLogger(__name__)


class BatchState(str, Enum):
    PENDING = "Pending"
    DISPATCHED = "Dispatched"
    RETRY_SCHEDULED = "RetryScheduled"
    SUCCEEDED = "Succeeded"
    EXHAUSTED = "Exhausted"


@dataclass
class DispatchReport:
    state: BatchState = BatchState.PENDING
    results: dict[str, VerdictResult] = field(default_factory=dict)
    requeue: list[WorkItem] = field(default_factory=list)
    attempts: int = 0
    error: Optional[str] = None


def parse_verdicts(raw: str, keys: Sequence[str]) -> dict[str, VerdictResult]:
    """
    Parse a classifier reply into one tagged result per requested key.

    Raises:
        TransientBackendError: the body is not JSON (truncated or garbled generation)
        PermanentBackendError: valid JSON that is not an object keyed by message id
    """

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise TransientBackendError(f"classifier reply is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise PermanentBackendError(f"classifier reply must be a JSON object, got {type(payload).__name__}")

    wanted = set(keys)
    unexpected = [key for key in payload if key not in wanted]
    if unexpected:
        logger.warning("Classifier returned unknown ids %s; ignoring them", unexpected[:10])

    results: dict[str, VerdictResult] = {}
    for key in keys:
        if key not in payload:
            results[key] = MissingId()
            continue
        try:
            results[key] = Classified(Verdict.model_validate(payload[key]))
        except ValidationError as exc:
            results[key] = MalformedEntry(detail=str(exc.errors()[0].get("msg", exc)))
    return results


class ClassificationDispatcher:
    def __init__(
        self,
        backend: ClassifierBackend,
        signal: ShutdownSignal,
        *,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
    ):
        self._backend = backend
        self._signal = signal
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return min(self._backoff_base * (2 ** (attempt - 1)), self._backoff_max)

    async def dispatch(self, batch: Sequence[WorkItem]) -> DispatchReport:
        report = DispatchReport()
        if not batch:
            report.state = BatchState.SUCCEEDED
            return report

        items = list(batch)
        keys = [item.key for item in items]
        requests = [ClassificationRequest.from_item(item) for item in items]
        # Requeued items carry the attempts they already consumed.
        prior = max(item.attempts for item in items)
        budget = max(self._max_attempts - prior, 1)

        for attempt in range(1, budget + 1):
            report.state = BatchState.DISPATCHED
            report.attempts = attempt
            try:
                raw = await self._backend.classify(requests)
                report.results = parse_verdicts(raw, keys)
            except TransientBackendError as exc:
                report.error = str(exc)
                if attempt >= budget:
                    break
                delay = self.backoff_delay(prior + attempt)
                report.state = BatchState.RETRY_SCHEDULED
                logger.warning(
                    "Classifier attempt %s/%s failed for batch of %s: %s; retrying in %.1fs",
                    prior + attempt,
                    self._max_attempts,
                    len(items),
                    exc,
                    delay,
                )
                if await self._signal.sleep(delay):
                    return self._hand_back(report, items, prior + attempt)
                continue
            except PermanentBackendError as exc:
                report.error = str(exc)
                logger.error("Classifier rejected batch of %s (not retried): %s", len(items), exc)
                return self._exhaust(report)

            report.state = BatchState.SUCCEEDED
            missing = [key for key, res in report.results.items() if not isinstance(res, Classified)]
            if missing:
                logger.warning("Classifier reply missing or malformed for %s of %s ids", len(missing), len(keys))
            logger.info("Classified batch of %s in %s attempt(s)", len(items), prior + attempt)
            return report

        logger.error(
            "Classifier failed %s times for batch of %s; dropping it: %s",
            prior + report.attempts,
            len(items),
            report.error,
        )
        return self._exhaust(report)

    def _exhaust(self, report: DispatchReport) -> DispatchReport:
        report.state = BatchState.EXHAUSTED
        report.results = {}
        return report

    def _hand_back(self, report: DispatchReport, items: list[WorkItem], consumed: int) -> DispatchReport:
        """Shutdown interrupted a backoff: items with attempts left go back to the queue."""
        report.requeue = [item.model_copy(update={"attempts": consumed}) for item in items]
        report.state = BatchState.RETRY_SCHEDULED
        logger.info("Shutdown during backoff; handing %s items back to the queue", len(report.requeue))
        return report
