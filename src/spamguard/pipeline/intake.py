"""
Producer side of the pipeline: gate inbound messages and enqueue work items.
"""

from __future__ import annotations

import logging
from typing import Optional

from spamguard.pipeline.lifecycle import LifecycleCoordinator
from spamguard.schemas.messages import URL_PATTERN, InboundMessage, WorkItem
from spamguard.services.whitelist import WhitelistStore

logger = logging.getLogger(__name__)

CLOSING_PAIRS = {")": "(", "]": "[", "}": "{", ">": "<"}
TRAILING_PUNCTUATION = ",.!?;:"


def normalize_url(raw: str) -> str:
    """Trim trailing punctuation, unbalanced closing brackets and unpaired quotes."""
    cleaned = raw.rstrip()
    while cleaned:
        last = cleaned[-1]
        if last in CLOSING_PAIRS:
            trim = CLOSING_PAIRS[last] not in cleaned
        elif last in "\"'":
            trim = cleaned.count(last) % 2 == 1
        else:
            trim = last in TRAILING_PUNCTUATION
        if not trim:
            break
        cleaned = cleaned[:-1]
    return cleaned


def extract_urls(text: str, limit: int) -> list[str]:
    """Ordered, de-duplicated http(s) URLs, at most `limit` of them."""
    urls: list[str] = []
    seen: set[str] = set()
    for match in URL_PATTERN.finditer(text):
        if len(urls) >= limit:
            break
        url = normalize_url(match.group(0))
        if url and url not in seen:
            seen.add(url)
            urls.append(url)
    return urls


class MessageIntake:
    def __init__(
        self,
        coordinator: LifecycleCoordinator,
        whitelist: WhitelistStore,
        *,
        max_urls: int = 3,
        admin_group_id: Optional[int] = None,
    ):
        self._coordinator = coordinator
        self._whitelist = whitelist
        self._max_urls = max_urls
        self._admin_group_id = admin_group_id

    async def is_chat_allowed(self, chat_id: int) -> bool:
        # Private chats and the admin group are never moderated.
        if chat_id >= 0 or chat_id == self._admin_group_id:
            return False
        try:
            return await self._whitelist.is_whitelisted(chat_id)
        except Exception as exc:
            logger.warning("Whitelist lookup failed for chat %s: %s", chat_id, exc)
            return False

    async def submit(self, message: InboundMessage) -> Optional[WorkItem]:
        if not self._coordinator.accepting:
            return None
        if not await self.is_chat_allowed(message.chat_id):
            logger.debug("Chat %s is not moderated; skipping message %s", message.chat_id, message.message_id)
            return None

        urls = extract_urls(message.text, self._max_urls)
        item = self._coordinator.enqueue(WorkItem.from_message(message, urls))
        if item is not None:
            logger.debug("Queued %s as %s with %s URLs", item.key, item.priority.value, len(urls))
        return item
