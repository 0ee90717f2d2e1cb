"""Celery 应用配置：定义队列路由、并发上限与关闭资源回收。"""

from __future__ import annotations

import logging
import sys

from celery import Celery
from celery.signals import worker_process_shutdown

from tether.application.container import shutdown_container_resources
from tether.config import get_settings
from tether.infra.logging.setup import configure_logging, shutdown_logging

settings = get_settings()


def _detect_process_role() -> str | None:
    argv = {item.lower() for item in sys.argv[1:]}
    if "beat" in argv:
        return "beat"
    if "worker" in argv:
        return "worker"
    return None


process_role = _detect_process_role()
logger = logging.getLogger(__name__)
if process_role:
    configure_logging(settings, process_role=process_role)

celery_app = Celery("tether", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(
    imports=("tether.worker.tasks",),
    task_default_queue=settings.queue_name,
    task_routes={
        "tether.worker.tasks.process_job_task": {"queue": settings.queue_name},
    },
    # 每个作业由单个 worker 端到端处理，并发上限即 agent 进程数上限。
    worker_concurrency=settings.worker_concurrency,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_transport_options={"visibility_timeout": settings.job_visibility_timeout_seconds},
    broker_connection_retry_on_startup=True,
    task_track_started=True,
    result_expires=24 * 60 * 60,
)

if settings.celery_task_always_eager:
    celery_app.conf.update(task_always_eager=True, task_eager_propagates=True)

if process_role:
    logger.info(
        "celery app configured",
        extra={
            "event": "celery.config.loaded",
            "external_service": "redis",
            "op": process_role,
            "payload_preview": {
                "broker": settings.redis_url,
                "queue": settings.queue_name,
                "concurrency": settings.worker_concurrency,
                "agent_type": settings.agent_type,
                "always_eager": settings.celery_task_always_eager,
            },
        },
    )


@worker_process_shutdown.connect
def _shutdown_worker_resources(**_: object) -> None:
    """Worker 进程关闭时释放共享资源。"""
    shutdown_container_resources()
    shutdown_logging()
