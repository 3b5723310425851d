"""
Async SQLAlchemy engine and session management helpers.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from spamguard.config import Settings, get_settings
from spamguard.database.models import Base

logger = logging.getLogger(__name__)


def create_engine_from_settings(settings: Settings | None = None) -> AsyncEngine:
    """
    Create an async engine for the configured DATABASE_URL.
    """

    settings = settings or get_settings()
    if not settings.DATABASE_URL:
        raise ValueError("DATABASE_URL is not configured")
    logger.debug(
        "Creating async engine for %s", make_url(settings.DATABASE_URL).render_as_string(hide_password=True)
    )
    return create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)


def get_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """
    Create all tables defined in the ORM models.
    """

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
