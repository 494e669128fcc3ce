import asyncio

import pytest

from app.errors import QueueCancelledError, QueueTimeoutError
from app.services.request_queue import RateLimitedQueue
from tests.conftest import wait_for


def _recorder(log, loop, name, gate=None, active=None):
    async def operation():
        if active is not None:
            active.append(name)
            assert len(active) == 1, "two operations in flight"
        log.append((name, loop.time()))
        if gate is not None:
            await gate.wait()
        if active is not None:
            active.remove(name)
        return name

    return operation


@pytest.mark.asyncio
async def test_operations_run_one_at_a_time_with_spacing():
    loop = asyncio.get_running_loop()
    queue = RateLimitedQueue(min_delay=0.05, settle_delay=0, item_timeout=5)
    log, active = [], []

    results = await asyncio.gather(
        *(queue.enqueue(_recorder(log, loop, name, active=active), kind="test") for name in "abc")
    )

    assert results == ["a", "b", "c"]
    starts = [started for _, started in log]
    assert all(later - earlier >= 0.045 for earlier, later in zip(starts, starts[1:]))
    await queue.aclose()


@pytest.mark.asyncio
async def test_next_start_waits_for_settle_delay_after_previous_finish():
    loop = asyncio.get_running_loop()
    queue = RateLimitedQueue(min_delay=0, settle_delay=0.05, item_timeout=5)
    spans = []

    def timed(name):
        async def operation():
            started = loop.time()
            await asyncio.sleep(0.02)
            spans.append((started, loop.time()))
            return name

        return operation

    results = await asyncio.gather(*(queue.enqueue(timed(name), kind="test") for name in "abc"))

    assert results == ["a", "b", "c"]
    assert all(
        next_start - finished >= 0.045
        for (_, finished), (next_start, _) in zip(spans, spans[1:])
    )
    await queue.aclose()


@pytest.mark.asyncio
async def test_priority_items_run_before_normal_items_fifo_within_class():
    loop = asyncio.get_running_loop()
    queue = RateLimitedQueue(min_delay=0, settle_delay=0, item_timeout=5)
    gate = asyncio.Event()
    log = []

    first = asyncio.create_task(queue.enqueue(_recorder(log, loop, "first", gate), kind="test"))
    await wait_for(lambda: queue.status().processing == 1)

    tasks = [
        asyncio.create_task(queue.enqueue(_recorder(log, loop, "normal-1"), kind="test")),
        asyncio.create_task(queue.enqueue(_recorder(log, loop, "normal-2"), kind="test")),
        asyncio.create_task(queue.enqueue(_recorder(log, loop, "priority-1"), kind="test", priority=True)),
        asyncio.create_task(queue.enqueue(_recorder(log, loop, "priority-2"), kind="test", priority=True)),
    ]
    await wait_for(lambda: queue.status().waiting == 4)
    gate.set()
    await asyncio.gather(first, *tasks)

    assert [name for name, _ in log] == ["first", "priority-1", "priority-2", "normal-1", "normal-2"]
    await queue.aclose()


@pytest.mark.asyncio
async def test_timed_out_item_is_removed_and_never_started():
    loop = asyncio.get_running_loop()
    queue = RateLimitedQueue(min_delay=0, settle_delay=0, item_timeout=0.05)
    gate = asyncio.Event()
    log = []

    first = asyncio.create_task(queue.enqueue(_recorder(log, loop, "first", gate), kind="test"))
    await wait_for(lambda: queue.status().processing == 1)

    with pytest.raises(QueueTimeoutError) as excinfo:
        await queue.enqueue(_recorder(log, loop, "late"), kind="venue_search")

    assert excinfo.value.kind == "venue_search"
    assert queue.status().waiting == 0
    # Nothing left to reject
    assert queue.clear() == 0

    gate.set()
    assert await first == "first"
    await asyncio.sleep(0.02)
    assert [name for name, _ in log] == ["first"]
    await queue.aclose()


@pytest.mark.asyncio
async def test_clear_rejects_queued_items_but_lets_processing_item_finish():
    loop = asyncio.get_running_loop()
    queue = RateLimitedQueue(min_delay=0, settle_delay=0, item_timeout=5)
    gate = asyncio.Event()
    log = []

    first = asyncio.create_task(queue.enqueue(_recorder(log, loop, "first", gate), kind="test"))
    await wait_for(lambda: queue.status().processing == 1)
    queued = [
        asyncio.create_task(queue.enqueue(_recorder(log, loop, name), kind="test"))
        for name in ("second", "third")
    ]
    await wait_for(lambda: queue.status().waiting == 2)

    assert queue.clear() == 2
    for task in queued:
        with pytest.raises(QueueCancelledError):
            await task

    assert queue.status().depth == 1
    gate.set()
    assert await first == "first"
    assert [name for name, _ in log] == ["first"]
    await queue.aclose()


@pytest.mark.asyncio
async def test_operation_errors_propagate_to_the_caller_only():
    queue = RateLimitedQueue(min_delay=0, settle_delay=0, item_timeout=5)

    async def failing():
        raise RuntimeError("provider down")

    async def working():
        return "ok"

    failed, succeeded = await asyncio.gather(
        queue.enqueue(failing, kind="test"),
        queue.enqueue(working, kind="test"),
        return_exceptions=True,
    )

    assert isinstance(failed, RuntimeError)
    assert succeeded == "ok"
    assert queue.status().depth == 0
    await queue.aclose()


@pytest.mark.asyncio
async def test_abandoned_caller_removes_its_item():
    loop = asyncio.get_running_loop()
    queue = RateLimitedQueue(min_delay=0, settle_delay=0, item_timeout=5)
    gate = asyncio.Event()
    log = []

    first = asyncio.create_task(queue.enqueue(_recorder(log, loop, "first", gate), kind="test"))
    await wait_for(lambda: queue.status().processing == 1)
    abandoned = asyncio.create_task(queue.enqueue(_recorder(log, loop, "abandoned"), kind="test"))
    await wait_for(lambda: queue.status().waiting == 1)

    abandoned.cancel()
    with pytest.raises(asyncio.CancelledError):
        await abandoned
    assert queue.status().waiting == 0

    gate.set()
    await first
    assert [name for name, _ in log] == ["first"]
    await queue.aclose()
