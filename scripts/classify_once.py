"""
Classify ad-hoc texts against the configured backend, without touching Telegram.

Usage (from repo root):
  python scripts/classify_once.py "Join my VIP signals channel https://t.me/pump" "see you at lunch"
  python scripts/classify_once.py --non-member --enrich "check https://example.com"

Warning: This calls the real classifier API (and fetches linked pages with --enrich).
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from spamguard.app import build_fetcher, configure_logging
from spamguard.config import get_settings
from spamguard.pipeline.dispatcher import ClassificationDispatcher
from spamguard.pipeline.enrichment import WebContentResolver
from spamguard.pipeline.intake import extract_urls
from spamguard.pipeline.signals import ShutdownSignal
from spamguard.schemas.classification import Classified
from spamguard.schemas.messages import WorkItem
from spamguard.services.classifier import build_classifier
from spamguard.services.http_client import close_http_client, get_http_client

logger = logging.getLogger(__name__)


async def classify(texts: list[str], *, is_member: bool, enrich: bool) -> None:
    settings = get_settings()
    signal = ShutdownSignal()
    items = [
        WorkItem(
            message_id=index,
            chat_id=-1,
            text=text,
            extracted_urls=tuple(extract_urls(text, settings.MAX_URLS_PER_MESSAGE)),
            is_member=is_member,
        )
        for index, text in enumerate(texts, start=1)
    ]

    client = get_http_client()
    resolver = WebContentResolver(
        build_fetcher(settings, client) if enrich else None,
        timeout=settings.ENRICHMENT_TIMEOUT_SECONDS,
        max_urls=settings.MAX_URLS_PER_MESSAGE,
    )
    dispatcher = ClassificationDispatcher(
        build_classifier(settings),
        signal,
        max_attempts=settings.CLASSIFIER_MAX_ATTEMPTS,
        backoff_base=settings.CLASSIFIER_BACKOFF_SECONDS,
    )
    try:
        items = await resolver.enrich_batch(items)
        report = await dispatcher.dispatch(items)
    finally:
        await close_http_client()

    print(f"state={report.state.value} attempts={report.attempts}")
    for item in items:
        result = report.results.get(item.key)
        if isinstance(result, Classified):
            verdict = result.verdict
            print(f"[{'SPAM' if verdict.is_spam else 'ok  '}] {item.text[:60]!r} reason={verdict.reason!r}")
        else:
            print(f"[????] {item.text[:60]!r} result={result!r} error={report.error!r}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Classify texts with the configured spam classifier")
    parser.add_argument("texts", nargs="+")
    parser.add_argument("--non-member", action="store_true", help="Mark senders as non-members")
    parser.add_argument("--enrich", action="store_true", help="Fetch linked pages before classifying")
    args = parser.parse_args()

    configure_logging(get_settings().LOG_LEVEL)
    asyncio.run(classify(args.texts, is_member=not args.non_member, enrich=args.enrich))


if __name__ == "__main__":
    main()
