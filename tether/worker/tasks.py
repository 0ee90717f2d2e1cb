"""异步任务定义：处理 agent 作业，失败时交由队列按指数退避重投。"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from tether.application.container import get_processor
from tether.config import get_settings
from tether.domain.models import Job
from tether.infra.logging.context import bind_log_context
from tether.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="tether.worker.tasks.process_job_task")
def process_job_task(self, payload: dict[str, Any]) -> dict[str, Any]:
    """执行 agent 作业；除载荷校验失败外的所有异常都交给队列重试。"""
    # 重试沿用同一任务 ID；job_id 取入队时返回的根任务 ID。
    with bind_log_context(job_id=self.request.root_id or self.request.id, task_id=self.request.id):
        try:
            job = Job.model_validate(payload)
        except ValidationError as exc:
            # 载荷非法重试无意义，直接失败。
            logger.error(
                "worker task rejected invalid payload",
                extra={"event": "job.task.invalid", "error_type": type(exc).__name__, "error": str(exc)},
            )
            raise

        logger.info(
            "worker task started",
            extra={"event": "job.task.started", "retry": self.request.retries},
        )
        try:
            result = get_processor().process(job)
        except Exception as exc:
            settings = get_settings()
            max_retries = max(settings.job_max_attempts - 1, 0)
            if self.request.retries >= max_retries:
                logger.exception(
                    "worker task failed",
                    extra={"event": "job.task.failed", "error_type": type(exc).__name__, "error": str(exc)},
                )
                raise
            countdown = settings.job_backoff_seconds * (2 ** self.request.retries)
            logger.warning(
                "worker task failed, retrying",
                extra={
                    "event": "job.task.retrying",
                    "retry": self.request.retries,
                    "payload_preview": {"countdown": countdown},
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise self.retry(exc=exc, max_retries=max_retries, countdown=countdown)

        logger.info("worker task finished", extra={"event": "job.task.succeeded"})
        return {
            "success": True,
            "response_length": len(result.output),
            "session_id": result.session_id,
        }
