from .metrics import (
    CleanupResult,
    DailyRollup,
    IntegrationEventRecordOut,
    PerformanceTrend,
    ProviderMetrics,
    QueueMetrics,
    QuotaMetrics,
    SyncStats,
    SystemMetrics,
    TimeRange,
    TopError,
    UserIntegrationMetrics,
)

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
