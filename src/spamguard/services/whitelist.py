"""
Whitelist stores: which group chats the bot moderates.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spamguard.database.models import WhitelistedChat

logger = logging.getLogger(__name__)


class WhitelistStore(Protocol):
    async def is_whitelisted(self, chat_id: int) -> bool: ...


@dataclass
class StaticWhitelist:
    """Chats allowed through configuration only."""

    chat_ids: frozenset[int] = frozenset()

    @classmethod
    def from_ids(cls, chat_ids: Iterable[int]) -> "StaticWhitelist":
        return cls(frozenset(chat_ids))

    async def is_whitelisted(self, chat_id: int) -> bool:
        return chat_id in self.chat_ids


@dataclass
class DatabaseWhitelist:
    """
    Configured chats plus the `whitelisted_chats` table, with a short-lived lookup cache.
    """

    session_maker: async_sessionmaker[AsyncSession]
    static_ids: frozenset[int] = frozenset()
    cache_ttl: float = 60.0
    _cache: dict[int, tuple[bool, float]] = field(default_factory=dict, repr=False)

    async def is_whitelisted(self, chat_id: int) -> bool:
        if chat_id in self.static_ids:
            return True
        cached = self._cache.get(chat_id)
        now = time.monotonic()
        if cached is not None and cached[1] > now:
            return cached[0]
        allowed = await self._lookup(chat_id)
        self._cache[chat_id] = (allowed, now + self.cache_ttl)
        return allowed

    async def add(self, chat_id: int, title: str | None = None, added_by: int | None = None) -> None:
        async with self.session_maker() as session:
            stmt = (
                insert(WhitelistedChat)
                .values(chat_id=chat_id, title=title, added_by=added_by)
                .on_conflict_do_update(index_elements=[WhitelistedChat.chat_id], set_={"title": title})
            )
            await session.execute(stmt)
            await session.commit()
        self._cache.pop(chat_id, None)
        logger.info("Whitelisted chat %s (%s)", chat_id, title or "untitled")

    async def _lookup(self, chat_id: int) -> bool:
        async with self.session_maker() as session:
            found = await session.scalar(
                select(WhitelistedChat.chat_id).where(WhitelistedChat.chat_id == chat_id)
            )
        return found is not None
