"""
Create the whitelist table and optionally seed it.

Run:
    python scripts/init_db.py
    python scripts/init_db.py --add -1001234567890 --title "My group"
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from sqlalchemy.engine.url import make_url

from spamguard.app import configure_logging
from spamguard.config import Settings, get_settings
from spamguard.database.models import Base
from spamguard.database.session import create_engine_from_settings, get_session_maker, init_models
from spamguard.services.whitelist import DatabaseWhitelist

logger = logging.getLogger(__name__)


async def initialize_database(settings: Settings, add: list[int], title: str | None) -> None:
    engine = create_engine_from_settings(settings)
    safe_url = make_url(settings.DATABASE_URL).render_as_string(hide_password=True)
    logger.info("Connecting to database: %s", safe_url)

    await init_models(engine)
    logger.info("Tables ensured: %s", ", ".join(sorted(Base.metadata.tables)))

    if add:
        whitelist = DatabaseWhitelist(get_session_maker(engine))
        for chat_id in add:
            await whitelist.add(chat_id, title=title)

    await engine.dispose()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize the spamguard whitelist table")
    parser.add_argument("--add", type=int, action="append", default=[], help="Chat id to whitelist (repeatable)")
    parser.add_argument("--title", default=None, help="Title stored with added chats")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    if not settings.DATABASE_URL:
        raise SystemExit("DATABASE_URL is required")
    asyncio.run(initialize_database(settings, args.add, args.title))


if __name__ == "__main__":
    main()
