from __future__ import annotations

import asyncio

import pytest

from integration_metrics.metrics.events import build_event
from integration_metrics.services.tracking_queue import TrackingQueue
from tests.utils import DEFAULT_NOW


def _event(action: str = "api.ping"):
    return build_event(
        user_id="u1",
        integration_id="int-1",
        provider="slack",
        action=action,
        status="success",
        duration_ms=5,
        timestamp=DEFAULT_NOW,
    )


@pytest.mark.asyncio
async def test_workers_drain_submitted_events():
    seen: list[str] = []

    async def handler(event):
        seen.append(event.action)
        return True

    queue = TrackingQueue(handler, maxsize=10, workers=2)
    queue.start()
    assert queue.running

    for index in range(5):
        assert queue.submit(_event(f"api.call_{index}"))
    await queue.flush()

    assert sorted(seen) == [f"api.call_{index}" for index in range(5)]
    stats = queue.stats()
    assert (stats.pending, stats.completed, stats.failed, stats.dropped) == (0, 5, 0, 0)

    await queue.shutdown()
    assert not queue.running


@pytest.mark.asyncio
async def test_submit_drops_when_full_without_waiting():
    async def handler(event):
        return True

    queue = TrackingQueue(handler, maxsize=2, workers=1)

    assert queue.submit(_event())
    assert queue.submit(_event())
    assert queue.submit(_event()) is False
    assert queue.stats().dropped == 1
    assert queue.stats().pending == 2

    queue.start()
    await queue.shutdown(drain=True)
    assert queue.stats().completed == 2


@pytest.mark.asyncio
async def test_handler_failures_are_counted_not_raised():
    async def handler(event):
        if event.action == "api.boom":
            raise RuntimeError("boom")
        return event.action != "api.partial"

    queue = TrackingQueue(handler, maxsize=10, workers=1)
    queue.start()
    queue.submit(_event("api.boom"))
    queue.submit(_event("api.partial"))
    queue.submit(_event("api.ok"))
    await queue.flush()

    stats = queue.stats()
    assert stats.completed == 1
    assert stats.failed == 2
    assert stats.active == 0
    await queue.shutdown()


@pytest.mark.asyncio
async def test_shutdown_without_drain_abandons_backlog():
    release = asyncio.Event()

    async def handler(event):
        await release.wait()
        return True

    queue = TrackingQueue(handler, maxsize=10, workers=1)
    queue.start()
    for _ in range(3):
        queue.submit(_event())
    await asyncio.sleep(0)

    await queue.shutdown(drain=False)
    assert not queue.running
    assert queue.stats().pending == 2
