"""
Metrics aggregator: answers dashboard queries from the two tiers.

Time is partitioned at the hot-tier horizon. For a window of minute buckets
``[start, end)`` the newest part (at most ``max_buckets`` minutes ending at
the current bucket) is read from Redis and everything older is summarised
from ``integration_events``. The two reads cover disjoint time and run
concurrently, so an event is never counted twice.

Read failures surface as ``MetricsQueryError``; an empty window is not a
failure and yields a snapshot of zeros.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import time
from typing import Any, Awaitable, Callable

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from integration_metrics.errors import IntegrationNotFoundError, InvalidTimeRangeError, MetricsQueryError
from integration_metrics.logging_config import logger
from integration_metrics.repositories.event_log import DurableEventLog, StoredEvent
from integration_metrics.repositories.integration_directory import IntegrationDirectory, SyncLogEntry
from integration_metrics.schemas.metrics import (
    DailyRollup,
    PerformanceTrend,
    ProviderMetrics,
    QueueMetrics,
    QuotaMetrics,
    SyncStats,
    SystemMetrics,
    TopError,
    UserIntegrationMetrics,
)

from .events import bucket_of, bucket_start
from .hot_store import CounterBucket, HotCounterStore, Scope

TIME_RANGE_SECONDS: dict[str, int] = {
    "1h": 3600,
    "24h": 24 * 3600,
    "7d": 7 * 24 * 3600,
    "30d": 30 * 24 * 3600,
}

_STORE_ERRORS = (RedisError, SQLAlchemyError, OSError)


def percentage(count: float, total: float) -> float:
    """count / total * 100 rounded to 2 decimals; 0 when total is 0."""
    if not total:
        return 0.0
    return round(count / total * 100, 2)


def ratio(value: float, total: float) -> float:
    if not total:
        return 0.0
    return round(value / total, 2)


def classify_trend(first: CounterBucket, second: CounterBucket, threshold_pct: float) -> PerformanceTrend:
    """
    Compare the error rate of the older half against the newer half.

    An idle older half counts as a 0% baseline; an idle newer half is stable.
    """
    if second.requests == 0:
        return "stable"
    delta = percentage(second.errors, second.requests) - percentage(first.errors, first.requests)
    if delta > threshold_pct:
        return "degrading"
    if delta < -threshold_pct:
        return "improving"
    return "stable"


def summarize_sync_logs(logs: list[SyncLogEntry]) -> SyncStats:
    # Runs still in flight have no duration and stay out of the average.
    durations = [entry.duration_ms for entry in logs if entry.status != "RUNNING" and entry.duration_ms is not None]
    return SyncStats(
        total_syncs=len(logs),
        successful_syncs=sum(1 for entry in logs if entry.status == "SUCCESS"),
        failed_syncs=sum(1 for entry in logs if entry.status == "ERROR"),
        running_syncs=sum(1 for entry in logs if entry.status == "RUNNING"),
        average_sync_duration=round(sum(durations) / len(durations), 2) if durations else 0.0,
        last_sync=logs[0].started_at if logs else None,
    )


async def _empty_bucket() -> CounterBucket:
    return CounterBucket()


class MetricsAggregator:
    def __init__(
        self,
        hot_store: HotCounterStore,
        event_log: DurableEventLog,
        directory: IntegrationDirectory,
        *,
        clock: Callable[[], float] = time.time,
        trend_threshold_pct: float = 5.0,
        top_errors_window_hours: int = 24,
        sync_log_sample_size: int = 100,
        user_daily_request_limit: int = 1000,
        queue_stats: Callable[[], QueueMetrics] | None = None,
        started_at: float | None = None,
    ) -> None:
        self.hot_store = hot_store
        self.event_log = event_log
        self.directory = directory
        self._clock = clock
        self.trend_threshold_pct = trend_threshold_pct
        self.top_errors_window_hours = top_errors_window_hours
        self.sync_log_sample_size = sync_log_sample_size
        self.user_daily_request_limit = user_daily_request_limit
        self._queue_stats = queue_stats
        self.started_at = started_at if started_at is not None else clock()

    def _now(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self._clock(), tz=dt.timezone.utc)

    async def _guarded(self, awaitable: Awaitable[Any], message: str, **context: Any) -> Any:
        try:
            return await awaitable
        except MetricsQueryError as exc:
            for key, value in context.items():
                if value is not None:
                    exc.context.setdefault(key, value)
            raise
        except _STORE_ERRORS as exc:
            logger.warning("aggregator: %s (%s)", message, context, exc_info=True)
            raise MetricsQueryError(message, **context) from exc

    async def read_window(self, scope: Scope, start_bucket: int, end_bucket: int) -> CounterBucket:
        """
        Counters for ``scope`` over the minute buckets ``[start_bucket, end_bucket)``.
        """
        if end_bucket <= start_bucket:
            return CounterBucket()

        now_bucket = bucket_of(self._clock())
        hot_first = now_bucket - self.hot_store.max_buckets + 1
        hot_from = max(start_bucket, hot_first)
        hot_to = min(end_bucket - 1, now_bucket)
        cold_end = min(end_bucket, hot_first)

        if hot_from <= hot_to:
            hot = self.hot_store.read_range(scope, hot_from, hot_to)
        else:
            hot = _empty_bucket()
        if start_bucket < cold_end:
            cold = asyncio.to_thread(
                self.event_log.summarize,
                scope,
                bucket_start(start_bucket),
                bucket_start(cold_end),
            )
        else:
            cold = _empty_bucket()

        hot_part, cold_part = await self._guarded(
            asyncio.gather(hot, cold),
            "Failed to read metrics window",
            scope=scope.key_part,
            start_bucket=start_bucket,
            end_bucket=end_bucket,
        )
        return hot_part.merge(cold_part)

    async def get_provider_metrics(self, provider: str, time_range: str) -> ProviderMetrics:
        seconds = TIME_RANGE_SECONDS.get(time_range)
        if seconds is None:
            raise InvalidTimeRangeError(time_range, list(TIME_RANGE_SECONDS))

        now_ts = self._clock()
        now = dt.datetime.fromtimestamp(now_ts, tz=dt.timezone.utc)
        since = now - dt.timedelta(seconds=seconds)
        start = bucket_of(now_ts - seconds)
        end = bucket_of(now_ts) + 1
        mid = (start + end) // 2
        scope = Scope.provider(provider)

        first_half, second_half, top_errors, active_users, total_users, last_sync = await self._guarded(
            asyncio.gather(
                self.read_window(scope, start, mid),
                self.read_window(scope, mid, end),
                self._top_errors(provider, 5),
                asyncio.to_thread(self.event_log.count_active_users, provider, since),
                asyncio.to_thread(self.directory.count_provider_users, provider),
                asyncio.to_thread(self.directory.last_sync_for_provider, provider),
            ),
            "Failed to load provider metrics",
            provider=provider,
            time_range=time_range,
        )
        totals = first_half.merge(second_half)

        return ProviderMetrics(
            provider=provider,
            time_range=time_range,
            total_requests=totals.requests,
            successful_requests=totals.successes,
            failed_requests=totals.errors,
            rate_limited_requests=totals.rate_limited,
            success_rate=percentage(totals.successes, totals.requests),
            error_rate=percentage(totals.errors, totals.requests),
            rate_limit_rate=percentage(totals.rate_limited, totals.requests),
            average_response_time=ratio(totals.total_duration, totals.requests),
            requests_per_hour=round(totals.requests / (seconds / 3600), 2),
            total_users=total_users,
            active_users=active_users,
            last_sync=last_sync,
            uptime=percentage(totals.requests - totals.errors, totals.requests),
            top_errors=top_errors,
            performance_trend=classify_trend(first_half, second_half, self.trend_threshold_pct),
        )

    async def get_user_integration_metrics(self, user_id: str, integration_id: str) -> UserIntegrationMetrics:
        info = await self._guarded(
            asyncio.to_thread(self.directory.get_integration, integration_id),
            "Failed to resolve integration",
            user_id=user_id,
            integration_id=integration_id,
        )
        if info is None or info.user_id != user_id:
            raise IntegrationNotFoundError(integration_id, user_id)

        now = self._now()
        today = now.date()
        integration_rollup, user_rollup, last_activity, sync_logs = await self._guarded(
            asyncio.gather(
                self.hot_store.read_rollup(Scope.integration(integration_id), today),
                self.hot_store.read_rollup(Scope.user(user_id), today),
                asyncio.to_thread(self.event_log.latest_activity, integration_id),
                asyncio.to_thread(self.directory.recent_sync_logs, integration_id, self.sync_log_sample_size),
            ),
            "Failed to load user integration metrics",
            user_id=user_id,
            integration_id=integration_id,
        )

        reset_time = dt.datetime.combine(today + dt.timedelta(days=1), dt.time.min, tzinfo=dt.timezone.utc)
        return UserIntegrationMetrics(
            user_id=user_id,
            integration_id=integration_id,
            provider=info.provider,
            total_requests=integration_rollup.total,
            successful_requests=integration_rollup.success,
            failed_requests=integration_rollup.error,
            rate_limited_requests=integration_rollup.rate_limited,
            success_rate=percentage(integration_rollup.success, integration_rollup.total),
            average_response_time=ratio(integration_rollup.total_duration, integration_rollup.total),
            last_activity=last_activity,
            quota_usage=QuotaMetrics(
                used=user_rollup.total,
                limit=self.user_daily_request_limit,
                reset_time=reset_time,
            ),
            sync_stats=summarize_sync_logs(sync_logs),
        )

    async def get_system_metrics(self) -> SystemMetrics:
        now_ts = self._clock()
        since = dt.datetime.fromtimestamp(now_ts - 24 * 3600, tz=dt.timezone.utc)
        start = bucket_of(now_ts - 24 * 3600)
        end = bucket_of(now_ts) + 1

        integrations, users, requests, provider_counts = await self._guarded(
            asyncio.gather(
                asyncio.to_thread(self.directory.integration_counts),
                asyncio.to_thread(self.directory.user_counts),
                self.read_window(Scope.global_(), start, end),
                asyncio.to_thread(self.event_log.provider_status_counts, since),
            ),
            "Failed to load system metrics",
        )
        queue = self._queue_stats() if self._queue_stats is not None else QueueMetrics()

        return SystemMetrics(
            total_integrations=integrations.total,
            active_integrations=integrations.active,
            total_users=users.total,
            active_users=users.active,
            total_requests_24h=requests.requests,
            successful_requests_24h=requests.successes,
            failed_requests_24h=requests.errors,
            success_rate_24h=percentage(requests.successes, requests.requests),
            average_response_time_24h=ratio(requests.total_duration, requests.requests),
            system_uptime_seconds=round(max(now_ts - self.started_at, 0.0), 3),
            queue_metrics=queue,
            provider_health_scores={
                row.provider: percentage(row.success, row.total) for row in provider_counts
            },
        )

    async def _top_errors(self, provider: str | None, limit: int) -> list[TopError]:
        since = self._now() - dt.timedelta(hours=self.top_errors_window_hours)
        rows = await asyncio.to_thread(
            lambda: self.event_log.query_top_errors(since=since, provider=provider, limit=limit)
        )
        return [
            TopError(
                error=row.error,
                provider=row.provider,
                count=row.count,
                first_seen=row.first_seen,
                last_seen=row.last_seen,
            )
            for row in rows
        ]

    async def get_top_errors(self, provider: str | None = None, limit: int = 10) -> list[TopError]:
        return await self._guarded(
            self._top_errors(provider, limit),
            "Failed to load top errors",
            provider=provider,
            limit=limit,
        )

    async def get_provider_events(
        self,
        provider: str,
        since_hours: int = 24,
        limit: int = 100,
    ) -> list[StoredEvent]:
        since = self._now() - dt.timedelta(hours=since_hours)
        return await self._guarded(
            asyncio.to_thread(self.event_log.query_provider, provider, since, limit),
            "Failed to load provider events",
            provider=provider,
            since_hours=since_hours,
        )

    async def get_daily_rollups(self, scope: Scope, days: int = 7) -> list[DailyRollup]:
        """Per-day counters for the last ``days`` UTC days, oldest first."""
        today = self._now().date()
        day_list = [today - dt.timedelta(days=offset) for offset in range(max(days, 1) - 1, -1, -1)]
        counters = await self._guarded(
            self.hot_store.read_rollups(scope, day_list),
            "Failed to load daily rollups",
            scope=scope.key_part,
            days=days,
        )
        return [
            DailyRollup(
                day=counter.day,
                total=counter.total,
                success=counter.success,
                error=counter.error,
                rate_limited=counter.rate_limited,
                total_duration=counter.total_duration,
                success_rate=percentage(counter.success, counter.total),
            )
            for counter in counters
        ]


__all__ = [
    "TIME_RANGE_SECONDS",
    "MetricsAggregator",
    "classify_trend",
    "percentage",
    "ratio",
    "summarize_sync_logs",
]
