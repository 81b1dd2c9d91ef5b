from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query

from integration_metrics.deps import get_metrics_service
from integration_metrics.errors import (
    IntegrationNotFoundError,
    InvalidTimeRangeError,
    MetricsQueryError,
    bad_request,
    not_found,
    service_unavailable,
)
from integration_metrics.logging_config import logger
from integration_metrics.metrics.hot_store import Scope
from integration_metrics.schemas.metrics import (
    CleanupResult,
    DailyRollup,
    IntegrationEventRecordOut,
    ProviderMetrics,
    SystemMetrics,
    TimeRange,
    TopError,
    UserIntegrationMetrics,
)
from integration_metrics.services.integration_metrics_service import IntegrationMetricsService

router = APIRouter(
    prefix="/metrics/integrations",
    tags=["integration-metrics"],
)


def _query_failed(exc: MetricsQueryError):
    logger.warning("metrics query failed: %s", exc)
    return service_unavailable(exc.message, details=exc.context or None)


@router.get("/providers/{provider}", response_model=ProviderMetrics)
async def get_provider_metrics_endpoint(
    provider: str,
    time_range: TimeRange = Query("24h", description="Window: 1h / 24h / 7d / 30d"),
    service: IntegrationMetricsService = Depends(get_metrics_service),
) -> ProviderMetrics:
    try:
        return await service.get_provider_metrics(provider, time_range)
    except InvalidTimeRangeError as exc:
        raise bad_request(str(exc), details={"allowed": exc.allowed})
    except MetricsQueryError as exc:
        raise _query_failed(exc)


@router.get("/providers/{provider}/events", response_model=list[IntegrationEventRecordOut])
async def list_provider_events_endpoint(
    provider: str,
    since_hours: int = Query(24, ge=1, le=24 * 30),
    limit: int = Query(100, ge=1, le=1000),
    service: IntegrationMetricsService = Depends(get_metrics_service),
) -> list[IntegrationEventRecordOut]:
    try:
        events = await service.get_provider_events(provider, since_hours=since_hours, limit=limit)
    except MetricsQueryError as exc:
        raise _query_failed(exc)
    return [
        IntegrationEventRecordOut(
            id=event.id,
            user_id=event.user_id,
            integration_id=event.integration_id,
            provider=event.provider,
            action=event.action,
            category=event.category,
            status=event.status,
            duration_ms=event.duration_ms,
            error_message=event.error_message,
            metadata=event.metadata,
            created_at=event.created_at,
        )
        for event in events
    ]


@router.get("/rollups/{scope}/{identifier}", response_model=list[DailyRollup])
async def get_daily_rollups_endpoint(
    scope: Literal["provider", "user", "integration", "global"],
    identifier: str,
    days: int = Query(7, ge=1, le=31),
    service: IntegrationMetricsService = Depends(get_metrics_service),
) -> list[DailyRollup]:
    """
    Daily request counters, oldest first. The global scope ignores `identifier` ("all" by convention).
    """
    try:
        return await service.get_daily_rollups(Scope(scope, identifier), days=days)
    except MetricsQueryError as exc:
        raise _query_failed(exc)


@router.get(
    "/users/{user_id}/integrations/{integration_id}",
    response_model=UserIntegrationMetrics,
)
async def get_user_integration_metrics_endpoint(
    user_id: str,
    integration_id: str,
    service: IntegrationMetricsService = Depends(get_metrics_service),
) -> UserIntegrationMetrics:
    try:
        return await service.get_user_integration_metrics(user_id, integration_id)
    except IntegrationNotFoundError as exc:
        raise not_found(
            "Integration not found",
            details={"user_id": exc.user_id, "integration_id": exc.integration_id},
        )
    except MetricsQueryError as exc:
        raise _query_failed(exc)


@router.get("/system", response_model=SystemMetrics)
async def get_system_metrics_endpoint(
    service: IntegrationMetricsService = Depends(get_metrics_service),
) -> SystemMetrics:
    try:
        return await service.get_system_metrics()
    except MetricsQueryError as exc:
        raise _query_failed(exc)


@router.get("/errors", response_model=list[TopError])
async def get_top_errors_endpoint(
    provider: str | None = Query(None, description="Limit to one provider; all providers when omitted"),
    limit: int = Query(10, ge=1, le=100),
    service: IntegrationMetricsService = Depends(get_metrics_service),
) -> list[TopError]:
    try:
        return await service.get_top_errors(provider, limit)
    except MetricsQueryError as exc:
        raise _query_failed(exc)


@router.post("/maintenance/cleanup", response_model=CleanupResult)
async def cleanup_integration_events_endpoint(
    retention_days: int | None = Query(None, ge=1, le=365),
    service: IntegrationMetricsService = Depends(get_metrics_service),
) -> CleanupResult:
    days = retention_days or service.settings.metrics_retention_days
    deleted = await service.cleanup_old_metrics(days)
    return CleanupResult(deleted=deleted, retention_days=days)


__all__ = ["router"]
