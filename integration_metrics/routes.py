import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.metrics_routes import router as metrics_router
from .db import SessionLocal
from .logging_config import logger
from .redis_client import create_redis_client
from .services.integration_metrics_service import IntegrationMetricsService
from .settings import settings


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    全局异常处理器，统一返回结构化错误响应并打印日志。
    """

    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "internal_error",
            "message": "服务器内部错误，请稍后再试",
            "error_id": error_id,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup opens the Redis client and the metrics service (unless one was
    injected) and starts the tracking workers. Shutdown drains the queue, stops
    the workers and closes a Redis client this function opened itself.
    """
    service: IntegrationMetricsService | None = app.state.metrics_service
    owned_redis = None
    if service is None:
        owned_redis = create_redis_client()
        service = IntegrationMetricsService(owned_redis, SessionLocal, settings=settings)
        app.state.metrics_service = service

    await service.start()
    try:
        yield
    finally:
        await service.close()
        if owned_redis is not None:
            await owned_redis.aclose()
            app.state.metrics_service = None


def create_app(metrics_service: IntegrationMetricsService | None = None) -> FastAPI:
    docs_url = "/docs" if settings.enable_api_docs else None
    redoc_url = "/redoc" if settings.enable_api_docs else None
    openapi_url = "/openapi.json" if settings.enable_api_docs else None

    app = FastAPI(
        title="Integration Metrics",
        version="0.1.0",
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
        lifespan=lifespan,
    )
    app.state.metrics_service = metrics_service
    app.add_exception_handler(Exception, handle_unexpected_error)

    if not settings.enable_api_docs:
        logger.info("API docs disabled (APP_ENV=%s)", settings.environment)

    app.include_router(metrics_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """基础请求日志中间件，记录请求路径与响应状态。"""

        client_host = request.client.host if request.client else "-"
        logger.info("HTTP %s %s from %s", request.method, request.url.path, client_host)
        try:
            response = await call_next(request)
        except Exception as exc:  # pragma: no cover - exercised via tests
            response = await handle_unexpected_error(request, exc)
        logger.info(
            "HTTP %s %s -> %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response

    return app


__all__ = ["create_app", "handle_unexpected_error", "lifespan"]
