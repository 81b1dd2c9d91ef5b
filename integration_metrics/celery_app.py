from __future__ import annotations

"""
Celery 应用实例。

该模块集中管理 Celery 配置，供 worker / beat 进程复用。
默认使用 Redis 作为 broker 和 result backend，具体连接信息通过 .env 中的
CELERY_BROKER_URL / CELERY_RESULT_BACKEND 进行配置。

使用方式（在项目根目录下）::

    # start a worker
    celery -A integration_metrics.celery_app.celery_app worker -l info

    # start beat (schedules the integration_events cleanup)
    celery -A integration_metrics.celery_app.celery_app beat -l info
"""

from celery import Celery
from celery.signals import beat_init, worker_process_init

from integration_metrics.logging_config import setup_logging
from integration_metrics.settings import settings

celery_app = Celery(
    "integration_metrics",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_default_queue=settings.celery_task_default_queue,
    timezone=settings.celery_timezone,
    enable_utc=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    imports=("integration_metrics.metrics.tasks",),
)

# Register the tasks even when only celery_app is imported (no worker running).
celery_app.loader.import_default_modules()


@worker_process_init.connect
def init_worker_logging(**kwargs):
    """在 Celery worker 进程初始化时配置应用日志。"""
    setup_logging()


@beat_init.connect
def init_beat_logging(**kwargs):
    setup_logging()


__all__ = ["celery_app"]
