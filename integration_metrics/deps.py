from fastapi import Request

from .errors import service_unavailable
from .services.integration_metrics_service import IntegrationMetricsService


def get_metrics_service(request: Request) -> IntegrationMetricsService:
    """
    FastAPI dependency that returns the service opened in the app lifespan.

    Tests pass their own instance to `create_app(metrics_service=...)`.
    """
    service = getattr(request.app.state, "metrics_service", None)
    if service is None:
        raise service_unavailable("Metrics service is not initialised")
    return service


__all__ = ["get_metrics_service"]
