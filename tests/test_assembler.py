import asyncio

import pytest

from fakes import FakeBackend, FakeFetcher, FakeGateway, FlakyBackend, build_pipeline, make_item
from spamguard.errors import PermanentBackendError
from spamguard.pipeline.dispatcher import BatchState, DispatchReport
from spamguard.schemas.classification import Classified, OutcomeKind, Verdict


def _kinds(outcomes):
    return {outcome.key: outcome.kind for outcome in outcomes}


@pytest.mark.asyncio
async def test_batch_outcomes_follow_verdicts():
    gateway = FakeGateway()
    queue, assembler, _ = build_pipeline(FakeBackend(), gateway)
    spam = queue.enqueue(make_item(1, text="cheap spam here"))
    ham = queue.enqueue(make_item(2, text="good morning"))

    outcomes = await assembler.process(await queue.dequeue_batch(10, 0))

    assert _kinds(outcomes) == {spam.key: OutcomeKind.DELETED, ham.key: OutcomeKind.IGNORED}
    assert gateway.deleted == [(spam.chat_id, spam.message_id)]


@pytest.mark.asyncio
async def test_missing_and_malformed_entries_are_dropped_individually():
    items = [make_item(1), make_item(2), make_item(3)]
    reply = {items[0].key: {"spam": False}, items[1].key: {"spam": "perhaps"}}
    queue, assembler, _ = build_pipeline(FakeBackend(reply))
    for item in items:
        queue.enqueue(item)

    outcomes = await assembler.process(await queue.dequeue_batch(10, 0))

    assert _kinds(outcomes) == {
        items[0].key: OutcomeKind.IGNORED,
        items[1].key: OutcomeKind.DROPPED,
        items[2].key: OutcomeKind.DROPPED,
    }


@pytest.mark.asyncio
async def test_exhausted_batch_drops_every_item():
    backend = FlakyBackend(failures=10)
    gateway = FakeGateway()
    queue, assembler, _ = build_pipeline(backend, gateway, max_attempts=2)
    for message_id in range(3):
        queue.enqueue(make_item(message_id, text="spam"))

    outcomes = await assembler.process(await queue.dequeue_batch(10, 0))

    assert len(backend.calls) == 2
    assert {outcome.kind for outcome in outcomes} == {OutcomeKind.DROPPED}
    assert gateway.deleted == []


@pytest.mark.asyncio
async def test_permanent_failure_drops_batch_and_pipeline_continues():
    backend = FakeBackend(PermanentBackendError("HTTP 400"))
    queue, assembler, _ = build_pipeline(backend)
    queue.enqueue(make_item(1))
    first = await assembler.process(await queue.dequeue_batch(10, 0))

    queue.enqueue(make_item(2))
    second = await assembler.process(await queue.dequeue_batch(10, 0))

    assert [o.kind for o in first] == [OutcomeKind.DROPPED]
    assert [o.kind for o in second] == [OutcomeKind.IGNORED]


@pytest.mark.asyncio
async def test_unexpected_error_is_contained():
    backend = FakeBackend(RuntimeError("client bug"))
    queue, assembler, _ = build_pipeline(backend)
    item = queue.enqueue(make_item(1))

    outcomes = await assembler.process(await queue.dequeue_batch(10, 0))

    assert [o.kind for o in outcomes] == [OutcomeKind.DROPPED]
    # The key is released, so a later delivery is accepted again.
    assert queue.enqueue(make_item(1)) is not None
    assert item.key == outcomes[0].key


@pytest.mark.asyncio
async def test_finalized_items_are_released():
    queue, assembler, _ = build_pipeline(FakeBackend())
    queue.enqueue(make_item(1))

    await assembler.process(await queue.dequeue_batch(10, 0))

    assert queue.enqueue(make_item(1)) is not None


@pytest.mark.asyncio
async def test_duplicate_delivery_is_deleted_once():
    gateway = FakeGateway()
    queue, assembler, signal = build_pipeline(FakeBackend(), gateway, max_wait=0.01)
    runner = asyncio.create_task(assembler.run())

    queue.enqueue(make_item(42, text="spam spam"))
    queue.enqueue(make_item(42, text="spam spam"))
    for _ in range(100):
        if assembler.executor.outcomes.total:
            break
        await asyncio.sleep(0.01)
    signal.trigger()
    await asyncio.wait_for(runner, timeout=1)

    assert gateway.deleted == [(-100, 42)]
    assert assembler.executor.outcomes.total == 1


@pytest.mark.asyncio
async def test_enrichment_reaches_classifier_prompt():
    backend = FakeBackend()
    url = "https://t.me/c/2485256729/1/205"
    queue, assembler, _ = build_pipeline(backend, fetcher=FakeFetcher())
    queue.enqueue(make_item(1, text=f"check {url}", urls=(url,)))

    await assembler.process(await queue.dequeue_batch(10, 0))

    (request,) = backend.calls[0]
    assert [summary.url for summary in request.enrichment] == [url]


@pytest.mark.asyncio
async def test_run_loop_processes_until_shutdown():
    queue, assembler, signal = build_pipeline(FakeBackend(), max_size=2, max_wait=0.01)
    runner = asyncio.create_task(assembler.run())
    for message_id in range(5):
        queue.enqueue(make_item(message_id))

    for _ in range(100):
        if assembler.executor.outcomes.total == 5:
            break
        await asyncio.sleep(0.01)
    signal.trigger()
    await asyncio.wait_for(runner, timeout=1)

    assert assembler.executor.outcomes.counts[OutcomeKind.IGNORED] == 5
    assert assembler.batches >= 3


@pytest.mark.asyncio
async def test_failure_mid_batch_only_drops_unfinished_items(monkeypatch):
    queue, assembler, _ = build_pipeline(FakeBackend())
    items = [queue.enqueue(make_item(message_id)) for message_id in range(1, 5)]
    batch = await queue.dequeue_batch(10, 0)
    ham = Verdict(is_spam=False)

    async def dispatch(batch_items):
        return DispatchReport(
            state=BatchState.RETRY_SCHEDULED,
            results={item.key: Classified(ham) for item in batch_items[1:]},
            requeue=[batch_items[0].model_copy(update={"attempts": 1})],
        )

    real_apply = assembler.executor.apply
    applied = []

    async def apply(item, verdict):
        applied.append(item.key)
        if len(applied) == 2:
            raise RuntimeError("executor bug")
        return await real_apply(item, verdict)

    monkeypatch.setattr(assembler.dispatcher, "dispatch", dispatch)
    monkeypatch.setattr(assembler.executor, "apply", apply)

    outcomes = await assembler.process(batch)

    assert _kinds(outcomes) == {
        items[1].key: OutcomeKind.IGNORED,
        items[2].key: OutcomeKind.DROPPED,
        items[3].key: OutcomeKind.DROPPED,
    }
    assert assembler.executor.outcomes.total == 3
    # The handed-back item stays queued and pending; the rest are released.
    assert queue.size() == 1
    assert queue.enqueue(make_item(1)) is None
    assert queue.enqueue(make_item(2)) is not None
