"""
Apply verdicts back to the chat and record terminal outcomes.
"""

from __future__ import annotations

import html
import logging
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from spamguard.schemas.classification import Outcome, OutcomeKind, Verdict
from spamguard.schemas.messages import WorkItem
from spamguard.services.telegram import PlatformGateway

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Seoul"


class OutcomeLog:
    """Counts per outcome kind plus a bounded window of recent outcomes."""

    def __init__(self, history: int = 500):
        self.counts: Counter[OutcomeKind] = Counter()
        self.recent: deque[Outcome] = deque(maxlen=history)

    def record(self, outcome: Outcome) -> Outcome:
        self.counts[outcome.kind] += 1
        self.recent.append(outcome)
        return outcome

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class ActionExecutor:
    """
    Deletes spam and notifies the admin group. Never raises to the caller:
    one failed deletion must not block the rest of a batch.
    """

    def __init__(
        self,
        gateway: PlatformGateway,
        *,
        outcomes: Optional[OutcomeLog] = None,
        timezone_name: str = DEFAULT_TIMEZONE,
    ):
        self._gateway = gateway
        self.outcomes = outcomes or OutcomeLog()
        self._tz = _load_zone(timezone_name)

    async def apply(self, item: WorkItem, verdict: Verdict) -> Outcome:
        if not verdict.is_spam:
            logger.debug("Message %s is not spam", item.key)
            return self.outcomes.record(Outcome(key=item.key, kind=OutcomeKind.IGNORED))

        try:
            deleted = await self._gateway.delete_message(item.chat_id, item.message_id)
        except Exception as exc:
            logger.error("Delete raised for spam message %s: %s", item.key, exc, exc_info=True)
            deleted = False
        if not deleted:
            logger.error("Could not delete spam message %s (%s)", item.key, verdict.reason or "no reason")
            return self.outcomes.record(
                Outcome(key=item.key, kind=OutcomeKind.ACTION_FAILED, reason=verdict.reason, detail="delete failed")
            )

        logger.info(
            "Deleted spam message %s from %s (%s): %s",
            item.key,
            item.sender_display,
            item.priority.value,
            verdict.reason or "no reason",
        )
        deleted_at = datetime.now(timezone.utc)
        try:
            await self._gateway.notify_admin(self.format_admin_log(item, verdict, deleted_at))
        except Exception as exc:
            logger.warning("Admin notification failed for %s: %s", item.key, exc)
        return self.outcomes.record(Outcome(key=item.key, kind=OutcomeKind.DELETED, reason=verdict.reason))

    def drop(self, item: WorkItem, reason: str) -> Outcome:
        logger.error("Dropped message %s without a verdict: %s", item.key, reason)
        return self.outcomes.record(Outcome(key=item.key, kind=OutcomeKind.DROPPED, detail=reason))

    def format_admin_log(self, item: WorkItem, verdict: Verdict, deleted_at: datetime) -> str:
        fmt = "%Y-%m-%d %H:%M:%S"
        sender_id = str(item.sender_id) if item.sender_id is not None else "unknown"
        lines = [
            "<b>Spam deleted</b>",
            "",
            f"Chat: {html.escape(item.chat_title or 'Unknown')}",
            f"Chat ID: {item.chat_id}",
            f"User: {html.escape(item.sender_display)}",
            f"User ID: {html.escape(sender_id)}",
            f"Sent at: {item.sent_at.astimezone(self._tz).strftime(fmt)}",
            f"Deleted at: {deleted_at.astimezone(self._tz).strftime(fmt)}",
        ]
        if verdict.reason:
            lines.append(f"Reason: {html.escape(verdict.reason)}")
        lines.extend(["", "Message:", f"<pre>{html.escape(item.text)}</pre>"])
        return "\n".join(lines)


def _load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %s; falling back to %s", name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)
