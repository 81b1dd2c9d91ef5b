"""
Integration metrics service: the single entry point adapters and the HTTP
layer talk to.

Ingestion (`track_*`) is fire-and-forget: it validates the event, puts it on
a bounded queue and returns immediately. Queue workers write each event to
the hot tier (four scopes, one transaction) and the cold tier concurrently,
each under its own deadline. Metrics are best-effort, so no write-path
failure ever reaches the caller whose action is being tracked.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import time
from typing import Callable, Iterable

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integration_metrics.errors import MalformedEventError
from integration_metrics.logging_config import logger
from integration_metrics.metrics.aggregator import MetricsAggregator
from integration_metrics.metrics.events import (
    EventMetadata,
    EventStatus,
    IntegrationEvent,
    api_call_event,
    build_event,
    rate_limit_event,
    sync_operation_event,
    webhook_event,
)
from integration_metrics.metrics.hot_store import HotCounterStore, Scope
from integration_metrics.metrics.retention import RetentionSweeper
from integration_metrics.repositories.event_log import DurableEventLog, StoredEvent
from integration_metrics.repositories.integration_directory import IntegrationDirectory
from integration_metrics.schemas.metrics import (
    DailyRollup,
    ProviderMetrics,
    QueueMetrics,
    SystemMetrics,
    TopError,
    UserIntegrationMetrics,
)
from integration_metrics.settings import Settings
from integration_metrics.settings import settings as default_settings

from .tracking_queue import TrackingQueue


class IntegrationMetricsService:
    def __init__(
        self,
        redis: Redis,
        session_factory: Callable[[], Session],
        *,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        cfg = settings or default_settings
        self.settings = cfg
        self._clock = clock

        self.hot_store = HotCounterStore(
            redis,
            ttl_seconds=cfg.metrics_hot_ttl_seconds,
            rollup_ttl_seconds=cfg.metrics_rollup_ttl_days * 86400,
            max_buckets=cfg.metrics_hot_max_buckets,
        )
        self.event_log = DurableEventLog(
            session_factory,
            error_message_max_length=cfg.metrics_error_message_max_length,
        )
        self.directory = IntegrationDirectory(session_factory)
        self.sweeper = RetentionSweeper(
            session_factory,
            batch_size=cfg.metrics_cleanup_batch_size,
            clock=clock,
        )
        self.queue = TrackingQueue(
            self.record_event,
            maxsize=cfg.metrics_queue_maxsize,
            workers=cfg.metrics_queue_workers,
        )
        self.aggregator = MetricsAggregator(
            self.hot_store,
            self.event_log,
            self.directory,
            clock=clock,
            trend_threshold_pct=cfg.metrics_trend_threshold_pct,
            top_errors_window_hours=cfg.metrics_top_errors_window_hours,
            sync_log_sample_size=cfg.metrics_sync_log_sample_size,
            user_daily_request_limit=cfg.metrics_user_daily_request_limit,
            queue_stats=self.queue.stats,
        )

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.queue.start()

    async def close(self) -> None:
        await self.queue.shutdown(drain=True)

    async def flush(self) -> None:
        await self.queue.flush()

    # ------------------------------------------------------------------
    # write path
    # ------------------------------------------------------------------

    async def _write_hot(self, event: IntegrationEvent) -> bool:
        timeout = self.settings.metrics_hot_write_timeout_ms / 1000
        try:
            await asyncio.wait_for(self.hot_store.increment_all(event), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "hot tier write timed out after %.0fms, dropping %s event for provider=%s",
                timeout * 1000,
                event.action,
                event.provider,
            )
            return False
        except Exception:
            logger.exception("hot tier write failed for %s event provider=%s", event.action, event.provider)
            return False
        return True

    async def _write_cold(self, event: IntegrationEvent) -> bool:
        timeout = self.settings.metrics_cold_write_timeout_ms / 1000
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.event_log.append, event), timeout=timeout)
        except asyncio.TimeoutError:
            # The insert thread may still finish; we just stop waiting for it.
            logger.warning(
                "cold tier write timed out after %.0fms, dropping %s event for provider=%s",
                timeout * 1000,
                event.action,
                event.provider,
            )
            return False
        except Exception:
            logger.exception("cold tier write failed for %s event provider=%s", event.action, event.provider)
            return False

    async def record_event(self, event: IntegrationEvent) -> bool:
        """Write one event to both tiers now; True only if both writes landed."""
        hot_ok, cold_ok = await asyncio.gather(self._write_hot(event), self._write_cold(event))
        return hot_ok and cold_ok

    def track_event(self, event: IntegrationEvent) -> bool:
        try:
            return self.queue.submit(event)
        except Exception:
            logger.exception("failed to enqueue %s event for provider=%s", event.action, event.provider)
            return False

    def track(
        self,
        *,
        user_id: str,
        integration_id: str,
        provider: str,
        action: str,
        status: EventStatus | str,
        duration_ms: float | None = None,
        error_message: str | None = None,
        metadata: EventMetadata | None = None,
    ) -> bool:
        try:
            event = build_event(
                user_id=user_id,
                integration_id=integration_id,
                provider=provider,
                action=action,
                status=status,
                duration_ms=duration_ms,
                error_message=error_message,
                metadata=metadata,
                timestamp=self._now(),
            )
        except MalformedEventError as exc:
            logger.warning("rejected malformed event action=%s provider=%s: %s", action, provider, exc)
            return False
        return self.track_event(event)

    def track_api_call(
        self,
        user_id: str,
        integration_id: str,
        provider: str,
        endpoint: str,
        duration_ms: float,
        success: bool,
        error_message: str | None = None,
    ) -> bool:
        try:
            event = api_call_event(
                user_id=user_id,
                integration_id=integration_id,
                provider=provider,
                endpoint=endpoint,
                duration_ms=duration_ms,
                success=success,
                error_message=error_message,
                timestamp=self._now(),
            )
        except MalformedEventError as exc:
            logger.warning("rejected malformed api call event provider=%s endpoint=%s: %s", provider, endpoint, exc)
            return False
        return self.track_event(event)

    def track_sync_operation(
        self,
        user_id: str,
        integration_id: str,
        provider: str,
        sync_type: str,
        duration_ms: float,
        items_processed: int,
        success: bool,
        errors: Iterable[str] = (),
    ) -> bool:
        try:
            event = sync_operation_event(
                user_id=user_id,
                integration_id=integration_id,
                provider=provider,
                sync_type=sync_type,
                duration_ms=duration_ms,
                items_processed=items_processed,
                success=success,
                errors=errors,
                timestamp=self._now(),
            )
        except MalformedEventError as exc:
            logger.warning("rejected malformed sync event provider=%s type=%s: %s", provider, sync_type, exc)
            return False
        return self.track_event(event)

    def track_webhook_event(
        self,
        provider: str,
        event_type: str,
        processing_time_ms: float,
        success: bool,
        error_message: str | None = None,
    ) -> bool:
        try:
            event = webhook_event(
                provider=provider,
                event_type=event_type,
                processing_time_ms=processing_time_ms,
                success=success,
                error_message=error_message,
                timestamp=self._now(),
            )
        except MalformedEventError as exc:
            logger.warning("rejected malformed webhook event provider=%s type=%s: %s", provider, event_type, exc)
            return False
        return self.track_event(event)

    def track_rate_limit(
        self,
        user_id: str,
        integration_id: str,
        provider: str,
        endpoint: str,
        retry_after_seconds: int,
    ) -> bool:
        try:
            event = rate_limit_event(
                user_id=user_id,
                integration_id=integration_id,
                provider=provider,
                endpoint=endpoint,
                retry_after_seconds=retry_after_seconds,
                timestamp=self._now(),
            )
        except MalformedEventError as exc:
            logger.warning("rejected malformed rate limit event provider=%s endpoint=%s: %s", provider, endpoint, exc)
            return False
        return self.track_event(event)

    # ------------------------------------------------------------------
    # read path
    # ------------------------------------------------------------------

    async def get_provider_metrics(self, provider: str, time_range: str = "24h") -> ProviderMetrics:
        return await self.aggregator.get_provider_metrics(provider, time_range)

    async def get_user_integration_metrics(self, user_id: str, integration_id: str) -> UserIntegrationMetrics:
        return await self.aggregator.get_user_integration_metrics(user_id, integration_id)

    async def get_system_metrics(self) -> SystemMetrics:
        return await self.aggregator.get_system_metrics()

    async def get_top_errors(self, provider: str | None = None, limit: int = 10) -> list[TopError]:
        return await self.aggregator.get_top_errors(provider, limit)

    async def get_provider_events(self, provider: str, since_hours: int = 24, limit: int = 100) -> list[StoredEvent]:
        return await self.aggregator.get_provider_events(provider, since_hours, limit)

    async def get_daily_rollups(self, scope: Scope, days: int = 7) -> list[DailyRollup]:
        return await self.aggregator.get_daily_rollups(scope, days)

    def queue_metrics(self) -> QueueMetrics:
        return self.queue.stats()

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    async def cleanup_old_metrics(self, retention_days: int | None = None) -> int:
        days = self.settings.metrics_retention_days if retention_days is None else retention_days
        if days < 1:
            logger.warning("integration_events cleanup skipped: retention_days must be >= 1, got %s", days)
            return 0
        try:
            return await asyncio.to_thread(self.sweeper.sweep, days)
        except SQLAlchemyError:
            logger.exception("integration_events cleanup failed (retention_days=%s)", days)
            return 0

    def _now(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self._clock(), tz=dt.timezone.utc)


__all__ = ["IntegrationMetricsService"]
