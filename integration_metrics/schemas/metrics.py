from __future__ import annotations

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, Field

TimeRange = Literal["1h", "24h", "7d", "30d"]
PerformanceTrend = Literal["improving", "stable", "degrading"]


class TopError(BaseModel):
    error: str = Field(..., description="Error message, truncated to the configured length")
    provider: str
    count: int = Field(..., ge=0, description="Occurrences inside the window")
    first_seen: dt.datetime | None = None
    last_seen: dt.datetime | None = None


class ProviderMetrics(BaseModel):
    provider: str
    time_range: TimeRange
    total_requests: int
    successful_requests: int
    failed_requests: int
    rate_limited_requests: int
    success_rate: float = Field(..., description="Success percentage, 2 decimals")
    error_rate: float = Field(..., description="Error percentage, 2 decimals")
    rate_limit_rate: float = Field(..., description="Rate-limited percentage")
    average_response_time: float = Field(..., description="Mean duration in ms")
    requests_per_hour: float
    total_users: int = Field(..., description="Users with an integration for this provider")
    active_users: int = Field(..., description="Users with requests in the window (system excluded)")
    last_sync: dt.datetime | None = None
    uptime: float = Field(..., description="Non-error share of requests (percentage)")
    top_errors: list[TopError] = Field(default_factory=list)
    performance_trend: PerformanceTrend = "stable"


class QuotaMetrics(BaseModel):
    used: int
    limit: int
    reset_time: dt.datetime


class SyncStats(BaseModel):
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    running_syncs: int = Field(0, description="Runs still in progress (neither successful nor failed)")
    average_sync_duration: float = Field(0.0, description="Mean duration of completed runs in ms")
    last_sync: dt.datetime | None = None


class UserIntegrationMetrics(BaseModel):
    user_id: str
    integration_id: str
    provider: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    rate_limited_requests: int
    success_rate: float
    average_response_time: float
    last_activity: dt.datetime | None = None
    quota_usage: QuotaMetrics
    sync_stats: SyncStats


class QueueMetrics(BaseModel):
    pending: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    dropped: int = 0
    average_processing_ms: float = 0.0


class SystemMetrics(BaseModel):
    total_integrations: int
    active_integrations: int
    total_users: int
    active_users: int
    total_requests_24h: int
    successful_requests_24h: int
    failed_requests_24h: int
    success_rate_24h: float
    average_response_time_24h: float
    system_uptime_seconds: float
    queue_metrics: QueueMetrics
    provider_health_scores: dict[str, float] = Field(
        default_factory=dict,
        description="Per-provider 24h success percentage (0-100)",
    )


class DailyRollup(BaseModel):
    day: dt.date
    total: int
    success: int
    error: int
    rate_limited: int
    total_duration: float
    success_rate: float


class IntegrationEventRecordOut(BaseModel):
    id: str
    user_id: str
    integration_id: str
    provider: str
    action: str
    category: str
    status: str
    duration_ms: float | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: dt.datetime


class CleanupResult(BaseModel):
    deleted: int
    retention_days: int


__all__ = [
    "CleanupResult",
    "DailyRollup",
    "IntegrationEventRecordOut",
    "PerformanceTrend",
    "ProviderMetrics",
    "QueueMetrics",
    "QuotaMetrics",
    "SyncStats",
    "SystemMetrics",
    "TimeRange",
    "TopError",
    "UserIntegrationMetrics",
]
