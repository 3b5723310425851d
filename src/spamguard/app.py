"""
Process entry point: wire collaborators from settings, poll Telegram, run the pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional

import httpx

from spamguard.config import Settings, get_settings
from spamguard.database.session import create_engine_from_settings, get_session_maker
from spamguard.pipeline.intake import MessageIntake
from spamguard.pipeline.lifecycle import LifecycleCoordinator
from spamguard.schemas.messages import InboundMessage
from spamguard.services.classifier import build_classifier
from spamguard.services.http_client import close_http_client, get_http_client
from spamguard.services.telegram import TelegramApiError, TelegramGateway
from spamguard.services.web_content import FirecrawlContentFetcher, HtmlContentFetcher
from spamguard.services.whitelist import DatabaseWhitelist, StaticWhitelist

logger = logging.getLogger(__name__)

POLL_TIMEOUT = 30
POLL_ERROR_DELAY = 5.0


def configure_logging(log_level: str) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_fetcher(settings: Settings, client: httpx.AsyncClient):
    if settings.FIRECRAWL_API_KEY:
        return FirecrawlContentFetcher(
            settings.FIRECRAWL_API_KEY, content_max_length=settings.CONTENT_MAX_LENGTH
        ).with_client(client)
    return HtmlContentFetcher(content_max_length=settings.CONTENT_MAX_LENGTH).with_client(client)


class TelegramPoller:
    """Long-polls getUpdates and feeds group messages into the intake."""

    def __init__(self, gateway: TelegramGateway, intake: MessageIntake, coordinator: LifecycleCoordinator):
        self._gateway = gateway
        self._intake = intake
        self._coordinator = coordinator
        self._offset: Optional[int] = None

    async def run(self) -> None:
        logger.info("Telegram polling started")
        while self._coordinator.accepting:
            try:
                updates = await self._gateway.get_updates(self._offset, timeout=POLL_TIMEOUT)
            except (TelegramApiError, httpx.HTTPError) as exc:
                logger.error("Telegram polling failed: %s", exc)
                await self._coordinator.signal.sleep(POLL_ERROR_DELAY)
                continue

            for update in updates:
                update_id = update.get("update_id")
                if not isinstance(update_id, int):
                    logger.warning("Skipping update without an update_id: %s", update)
                    continue
                self._offset = update_id + 1
                message = update.get("message")
                if not message or (message.get("chat") or {}).get("type") == "private":
                    continue
                try:
                    await self._handle(message)
                except Exception as exc:
                    logger.exception("Failed to handle update %s: %s", update_id, exc)
        logger.info("Telegram polling stopped")

    async def _handle(self, message: dict) -> None:
        chat_id = (message.get("chat") or {}).get("id")
        if chat_id is None:
            logger.warning("Skipping message %s without a chat id", message.get("message_id"))
            return
        if not await self._intake.is_chat_allowed(chat_id):
            return
        sender = message.get("from") or {}
        is_member = False
        if sender.get("id") is not None:
            is_member = await self._gateway.is_member(chat_id, sender["id"])
        try:
            inbound = InboundMessage.from_telegram(message, is_member=is_member)
        except (KeyError, ValueError) as exc:
            logger.warning("Skipping unparseable message in chat %s: %s", chat_id, exc)
            return
        await self._intake.submit(inbound)


def install_signal_handlers(loop: asyncio.AbstractEventLoop, coordinator: LifecycleCoordinator) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, coordinator.signal.trigger)
        except NotImplementedError:
            logger.debug("Signal handlers are not supported on this platform")


async def run(settings: Settings) -> int:
    if not settings.TELEGRAM_BOT_TOKEN:
        raise ValueError("TELEGRAM_BOT_TOKEN is required")

    client = get_http_client()
    gateway = TelegramGateway(settings.TELEGRAM_BOT_TOKEN, settings.ADMIN_GROUP_ID, http_client=client)
    coordinator = LifecycleCoordinator.build(
        settings,
        backend=build_classifier(settings),
        gateway=gateway,
        fetcher=build_fetcher(settings, client),
    )

    engine = None
    if settings.DATABASE_URL:
        engine = create_engine_from_settings(settings)
        whitelist = DatabaseWhitelist(get_session_maker(engine), frozenset(settings.ALLOWED_CHAT_IDS))
    else:
        logger.warning("DATABASE_URL not set; only ALLOWED_CHAT_IDS are moderated.")
        whitelist = StaticWhitelist.from_ids(settings.ALLOWED_CHAT_IDS)

    intake = MessageIntake(
        coordinator,
        whitelist,
        max_urls=settings.MAX_URLS_PER_MESSAGE,
        admin_group_id=settings.ADMIN_GROUP_ID,
    )
    install_signal_handlers(asyncio.get_running_loop(), coordinator)
    coordinator.start()

    poller = asyncio.create_task(TelegramPoller(gateway, intake, coordinator).run(), name="telegram-poller")
    try:
        await coordinator.signal.wait()
    finally:
        # An in-flight getUpdates call holds no work; cancelling it loses nothing.
        poller.cancel()
        await asyncio.gather(poller, return_exceptions=True)
        report = await coordinator.shutdown()
        counts = {kind.value: count for kind, count in coordinator.outcomes.counts.items()}
        logger.info("Outcomes this run: %s", counts)
        await close_http_client()
        if engine is not None:
            await engine.dispose()
    return 0 if report.clean else 1


def main() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    try:
        sys.exit(asyncio.run(run(settings)))
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
