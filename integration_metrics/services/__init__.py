from .integration_metrics_service import IntegrationMetricsService
from .tracking_queue import QueueStats, TrackingQueue

__all__ = ["IntegrationMetricsService", "QueueStats", "TrackingQueue"]
