from __future__ import annotations

from celery import shared_task

from integration_metrics.celery_app import celery_app
from integration_metrics.db import SessionLocal
from integration_metrics.logging_config import logger
from integration_metrics.metrics.retention import RetentionSweeper
from integration_metrics.settings import settings


@shared_task(name="tasks.metrics.cleanup_integration_events")
def cleanup_integration_events(retention_days: int | None = None) -> int:
    """
    Delete integration_events rows older than the retention period.

    - retention defaults to settings.metrics_retention_days;
    - rows go in batches, one commit each; on PostgreSQL an advisory lock keeps concurrent sweepers apart.
    Failures are logged and re-raised; the next beat run retries.
    """
    days = int(retention_days or settings.metrics_retention_days)
    sweeper = RetentionSweeper(SessionLocal, batch_size=settings.metrics_cleanup_batch_size)
    try:
        return sweeper.sweep(days)
    except Exception:
        logger.exception("tasks: integration_events cleanup failed (retention_days=%s)", days)
        raise


celery_app.conf.beat_schedule = getattr(celery_app.conf, "beat_schedule", {}) or {}
if settings.metrics_cleanup_enabled:
    celery_app.conf.beat_schedule.update(
        {
            "integration-events-cleanup": {
                "task": "tasks.metrics.cleanup_integration_events",
                "schedule": settings.metrics_cleanup_interval_seconds,
            }
        }
    )


__all__ = ["cleanup_integration_events"]
