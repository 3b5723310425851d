import asyncio

import pytest

from fakes import FakeFetcher, make_item
from spamguard.errors import EnrichmentFailure
from spamguard.pipeline.enrichment import WebContentResolver
from spamguard.pipeline.signals import ShutdownSignal


URLS = tuple(f"https://site{i}.example/page" for i in range(5))


@pytest.mark.asyncio
async def test_timeout_keeps_completed_summaries_only():
    fetcher = FakeFetcher({URLS[0]: 10, URLS[1]: 0.0, URLS[2]: 10, URLS[3]: 0.01, URLS[4]: 10})
    resolver = WebContentResolver(fetcher, max_urls=5)
    item = make_item(1, urls=URLS)
    loop = asyncio.get_running_loop()

    started = loop.time()
    enriched = await resolver.enrich(item, timeout=0.2)
    elapsed = loop.time() - started

    assert elapsed < 1.0
    assert [summary.url for summary in enriched.enrichment] == [URLS[1], URLS[3]]
    assert enriched.key == item.key


@pytest.mark.asyncio
async def test_failures_leave_item_unenriched():
    fetcher = FakeFetcher({URLS[0]: EnrichmentFailure(URLS[0], "refused"), URLS[1]: RuntimeError("bad html")})
    resolver = WebContentResolver(fetcher)
    item = make_item(1, urls=URLS[:2])

    enriched = await resolver.enrich(item, timeout=1)

    assert enriched.enrichment is None
    assert enriched == item


@pytest.mark.asyncio
async def test_only_first_max_urls_are_fetched():
    fetcher = FakeFetcher()
    resolver = WebContentResolver(fetcher, max_urls=2)

    enriched = await resolver.enrich(make_item(1, urls=URLS), timeout=1)

    assert fetcher.started == list(URLS[:2])
    assert len(enriched.enrichment) == 2


@pytest.mark.asyncio
async def test_shutdown_cuts_enrichment_short():
    signal = ShutdownSignal()
    fetcher = FakeFetcher({URLS[0]: 0.0, URLS[1]: 10})
    resolver = WebContentResolver(fetcher, signal=signal)
    loop = asyncio.get_running_loop()
    loop.call_later(0.05, signal.trigger)

    started = loop.time()
    enriched = await resolver.enrich(make_item(1, urls=URLS[:2]), timeout=5)

    assert loop.time() - started < 1.0
    assert [summary.url for summary in enriched.enrichment] == [URLS[0]]


@pytest.mark.asyncio
async def test_disabled_resolver_passes_items_through():
    resolver = WebContentResolver(None)
    items = [make_item(1, urls=URLS[:1]), make_item(2)]

    assert not resolver.enabled
    assert await resolver.enrich_batch(items) == items


@pytest.mark.asyncio
async def test_enrich_batch_preserves_order_and_skips_linkless_items():
    fetcher = FakeFetcher({URLS[0]: 0.05})
    resolver = WebContentResolver(fetcher, concurrency=1)
    items = [make_item(1, urls=URLS[:1]), make_item(2), make_item(3, urls=URLS[1:2])]

    enriched = await resolver.enrich_batch(items)

    assert [item.message_id for item in enriched] == [1, 2, 3]
    assert enriched[1].enrichment is None
    assert enriched[0].enrichment[0].url == URLS[0]
    assert enriched[2].enrichment[0].url == URLS[1]
