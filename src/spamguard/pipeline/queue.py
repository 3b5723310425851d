"""
Two-lane priority queue for pending classification work.

High-priority messages (non-members, messages with links) are judged before
Normal ones. A Normal message that has waited past the staleness window is
dequeued as if it were High, without touching its stored priority. Within a
class, `enqueued_at` is the only ordering key.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional

from spamguard.pipeline.signals import ShutdownSignal
from spamguard.schemas.messages import Priority, WorkItem

logger = logging.getLogger(__name__)

NANOS = 1_000_000_000


@dataclass(frozen=True)
class QueueSnapshot:
    high_priority: int
    normal_priority: int

    @property
    def total(self) -> int:
        return self.high_priority + self.normal_priority


def _stamp_of(item: WorkItem) -> int:
    return item.enqueued_at


class PriorityQueue:
    """
    Safe for any number of producers calling `enqueue` and exactly one `dequeue_batch` caller.

    The lock only guards the in-memory lanes and is never held across an await.
    """

    def __init__(
        self,
        signal: ShutdownSignal,
        *,
        soft_capacity: int = 1000,
        staleness_window: float = 30.0,
        clock=time.monotonic_ns,
    ):
        self._signal = signal
        self._soft_capacity = soft_capacity
        self._staleness_ns = int(staleness_window * NANOS)
        self._clock = clock
        self._lock = threading.Lock()
        self._high: deque[WorkItem] = deque()
        self._normal: deque[WorkItem] = deque()
        # Keys queued or owned by a dispatch attempt; duplicates are collapsed.
        self._pending_keys: set[str] = set()
        self._last_stamp = 0
        self._over_capacity = False
        self._wakeup = asyncio.Event()
        signal.subscribe(self._wakeup)

    def enqueue(self, item: WorkItem) -> Optional[WorkItem]:
        """
        Stamp and queue an item. Never blocks and never rejects.

        Returns the stamped item, or None when the same message is already queued or in flight.
        """

        with self._lock:
            if item.key in self._pending_keys:
                duplicate = True
            else:
                duplicate = False
                stamp = max(self._clock(), self._last_stamp + 1)
                self._last_stamp = stamp
                item = item.model_copy(update={"enqueued_at": stamp})
                self._lane(item).append(item)
                self._pending_keys.add(item.key)
            size = len(self._high) + len(self._normal)

        if duplicate:
            logger.debug("Message %s already pending; ignoring re-delivery", item.key)
            return None

        self._check_capacity(size)
        self._wakeup.set()
        return item

    def requeue(self, items: Iterable[WorkItem]) -> None:
        """Return items at their original `enqueued_at`, preserving their place in line."""
        count = 0
        with self._lock:
            for item in items:
                lane = self._lane(item)
                index = bisect.bisect_right(lane, item.enqueued_at, key=_stamp_of)
                lane.insert(index, item)
                self._pending_keys.add(item.key)
                count += 1
        if count:
            logger.info("Requeued %s items at their original position", count)
            self._wakeup.set()

    def release(self, keys: Iterable[str]) -> None:
        """End the in-flight window for finalized messages."""
        with self._lock:
            self._pending_keys.difference_update(keys)

    def size(self) -> int:
        with self._lock:
            return len(self._high) + len(self._normal)

    def snapshot(self) -> QueueSnapshot:
        with self._lock:
            return QueueSnapshot(high_priority=len(self._high), normal_priority=len(self._normal))

    async def dequeue_batch(self, max_size: int, max_wait: float) -> list[WorkItem]:
        """
        Wait for a batch.

        Returns once `max_size` items are available, once `max_wait` has elapsed since the
        oldest queued item arrived, or once the shutdown signal fires (possibly empty).
        """

        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        max_wait_ns = int(max(max_wait, 0.0) * NANOS)

        while True:
            with self._lock:
                size = len(self._high) + len(self._normal)
                now = self._clock()
                deadline = self._oldest_stamp() + max_wait_ns if size else None
                if size >= max_size or self._signal.is_set or (deadline is not None and now >= deadline):
                    return self._take(max_size, now)
                # Cleared under the lock so an enqueue after this point is never missed.
                self._wakeup.clear()

            timeout = (deadline - now) / NANOS if deadline is not None else None
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    def drain_all(self) -> list[WorkItem]:
        """Remove everything still queued, in dequeue order."""
        with self._lock:
            return self._take(len(self._high) + len(self._normal), self._clock())

    def _lane(self, item: WorkItem) -> deque[WorkItem]:
        return self._high if item.priority is Priority.HIGH else self._normal

    def _oldest_stamp(self) -> int:
        heads = [lane[0].enqueued_at for lane in (self._high, self._normal) if lane]
        return min(heads)

    def _take(self, max_size: int, now: int) -> list[WorkItem]:
        """Pop up to `max_size` items: High and promoted Normal merged by age, then Normal."""
        batch: list[WorkItem] = []
        promoted_before = now - self._staleness_ns
        promoted = 0
        while len(batch) < max_size:
            high = self._high[0] if self._high else None
            normal = self._normal[0] if self._normal else None
            stale = normal is not None and normal.enqueued_at <= promoted_before
            if high is not None and (not stale or high.enqueued_at <= normal.enqueued_at):
                batch.append(self._high.popleft())
            elif stale:
                batch.append(self._normal.popleft())
                promoted += 1
            elif normal is not None:
                batch.append(self._normal.popleft())
            else:
                break
        if promoted:
            logger.info("Promoted %s stale Normal items into this batch", promoted)
        return batch

    def _check_capacity(self, size: int) -> None:
        if size > self._soft_capacity:
            if not self._over_capacity:
                self._over_capacity = True
                logger.warning(
                    "Queue size %s exceeds soft capacity %s; classifier is falling behind",
                    size,
                    self._soft_capacity,
                )
        elif self._over_capacity:
            self._over_capacity = False
            logger.info("Queue size back under soft capacity (%s)", size)
