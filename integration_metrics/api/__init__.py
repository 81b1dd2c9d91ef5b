from .metrics_routes import router as metrics_router

__all__ = ["metrics_router"]
