from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from integration_metrics.logging_config import logger
from integration_metrics.metrics.events import IntegrationEvent
from integration_metrics.schemas.metrics import QueueMetrics

EventHandler = Callable[[IntegrationEvent], Awaitable[bool]]


@dataclass
class QueueStats:
    completed: int = 0
    failed: int = 0
    dropped: int = 0
    active: int = 0
    processing_ms_sum: float = 0.0

    def average_processing_ms(self) -> float:
        processed = self.completed + self.failed
        if processed == 0:
            return 0.0
        return self.processing_ms_sum / processed


class TrackingQueue:
    """
    Bounded in-process queue between ``track_*`` callers and the metric writers.

    ``submit`` never waits: when the queue is full the event is dropped and
    counted. A fixed pool of worker tasks drains the queue and hands each
    event to ``handler``.
    """

    def __init__(self, handler: EventHandler, *, maxsize: int = 10000, workers: int = 4) -> None:
        self._handler = handler
        self.maxsize = maxsize
        self.worker_count = workers
        self._queue: asyncio.Queue[IntegrationEvent] = asyncio.Queue(maxsize=maxsize)
        self._workers: list[asyncio.Task] = []
        self._stats = QueueStats()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker_loop(), name=f"metrics-tracking-worker-{index}")
            for index in range(self.worker_count)
        ]
        logger.info("tracking queue started with %d workers (maxsize=%d)", self.worker_count, self.maxsize)

    def submit(self, event: IntegrationEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._stats.dropped += 1
            logger.warning(
                "tracking queue full (maxsize=%d), dropping %s event for provider=%s",
                self.maxsize,
                event.action,
                event.provider,
            )
            return False
        return True

    async def flush(self) -> None:
        """Wait until every submitted event has been handled."""
        await self._queue.join()

    async def shutdown(self, *, drain: bool = True) -> None:
        if drain and self.running:
            await self.flush()
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    def stats(self) -> QueueMetrics:
        return QueueMetrics(
            pending=self._queue.qsize(),
            active=self._stats.active,
            completed=self._stats.completed,
            failed=self._stats.failed,
            dropped=self._stats.dropped,
            average_processing_ms=round(self._stats.average_processing_ms(), 2),
        )

    async def _worker_loop(self) -> None:
        while True:
            event = await self._queue.get()
            self._stats.active += 1
            started = time.perf_counter()
            ok = False
            try:
                ok = await self._handler(event)
            except Exception:
                logger.exception("tracking worker failed to record %s event", event.action)
            finally:
                self._stats.active -= 1
                self._stats.processing_ms_sum += (time.perf_counter() - started) * 1000.0
                if ok:
                    self._stats.completed += 1
                else:
                    self._stats.failed += 1
                self._queue.task_done()


__all__ = ["EventHandler", "QueueStats", "TrackingQueue"]
