"""作业处理器：调用 agent 并将结果投递回原线程，失败时发送兜底提示后重新抛出。"""

from __future__ import annotations

import logging
import time

from tether.domain.errors import DeliveryError
from tether.domain.models import Job, SpawnOptions, SpawnResult
from tether.infra.agents.base import AgentAdapter
from tether.infra.discord.client import DiscordClient
from tether.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)

FAILURE_NOTICE = "Something went wrong. Try again?"


class JobProcessor:
    def __init__(self, *, adapter: AgentAdapter, discord_client: DiscordClient) -> None:
        self._adapter = adapter
        self._discord_client = discord_client

    def process(self, job: Job) -> SpawnResult:
        with bind_log_context(thread_id=job.thread_id, session_id=job.session_id):
            started = time.perf_counter()
            logger.info(
                "job processing started",
                extra={
                    "event": "job.process.started",
                    "op": self._adapter.name,
                    "payload_preview": {
                        "username": job.username,
                        "resume": job.resume,
                        "working_dir": job.working_dir,
                        "prompt_chars": len(job.prompt),
                    },
                },
            )
            # typing 指示只是体验优化，失败不影响作业。
            self._discord_client.send_typing(job.thread_id)
            try:
                result = self._adapter.spawn(
                    SpawnOptions(
                        prompt=job.prompt,
                        session_id=job.session_id,
                        resume=job.resume,
                        working_dir=job.working_dir,
                    )
                )
                if result.session_id != job.session_id:
                    logger.info(
                        "agent returned a different session id",
                        extra={"event": "job.session.changed", "payload_preview": {"session_id": result.session_id}},
                    )

                delivery = self._discord_client.send_to_thread(job.thread_id, result.output)
                if not delivery.success:
                    raise DeliveryError(f"Discord send failed: {delivery.error}")
            except Exception as exc:
                self._post_failure_notice(job.thread_id, exc)
                raise

            logger.info(
                "job processing finished",
                extra={
                    "event": "job.process.succeeded",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "payload_preview": {"response_chars": len(result.output)},
                },
            )
            return result

    def _post_failure_notice(self, thread_id: str, exc: Exception) -> None:
        notice = self._discord_client.send_to_thread(thread_id, f"{FAILURE_NOTICE}\n```{exc}```")
        if not notice.success:
            logger.warning(
                "failure notice could not be delivered",
                extra={"event": "job.notice.failed", "error": notice.error},
            )
