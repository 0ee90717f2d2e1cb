"""作业入队：供上游接入层投递已校验的作业载荷。"""

from __future__ import annotations

import logging

from tether.config import get_settings
from tether.domain.models import Job
from tether.worker.tasks import process_job_task

logger = logging.getLogger(__name__)


def enqueue_job(job: Job) -> str:
    """将作业投递到队列并返回任务 ID。"""
    settings = get_settings()
    async_result = process_job_task.apply_async(args=[job.to_payload()], queue=settings.queue_name)
    logger.info(
        "job enqueued",
        extra={
            "event": "job.enqueued",
            "external_service": "redis",
            "op": settings.queue_name,
            "thread_id": job.thread_id,
            "session_id": job.session_id,
            "payload_preview": {"task_id": async_result.id, "resume": job.resume},
        },
    )
    return async_result.id
