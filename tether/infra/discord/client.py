"""Discord REST 客户端：发送线程消息与 typing 指示，失败以结果对象返回而不抛异常。"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from tether.domain.models import DeliveryResult
from tether.infra.discord.chunking import DISCORD_MAX_MESSAGE_LENGTH, split_message
from tether.infra.discord.retry import RATE_LIMIT_STATUS, RateLimitRetryPolicy

logger = logging.getLogger(__name__)


class DiscordClient:
    """Discord 同步 HTTP 客户端封装，内置超时、限流退避与分片发送。"""

    def __init__(
        self,
        token: str | None,
        *,
        base_url: str = "https://discord.com/api/v10",
        timeout_seconds: float = 30.0,
        max_message_length: int = DISCORD_MAX_MESSAGE_LENGTH,
        retry_policy: RateLimitRetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not token:
            logger.warning(
                "DISCORD_BOT_TOKEN not set, delivery will fail",
                extra={"event": "discord.token.missing", "external_service": "discord"},
            )
        self._timeout_seconds = timeout_seconds
        self._max_message_length = max_message_length
        self._retry_policy = retry_policy or RateLimitRetryPolicy()
        self._closed = False
        headers = {"Authorization": f"Bot {token}"} if token else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            transport=transport,
        )

    def _client_or_raise(self) -> httpx.Client:
        """返回可用客户端；若已关闭则抛出异常。"""
        if self._closed:
            raise RuntimeError("DiscordClient is already closed")
        return self._client

    def close(self) -> None:
        """关闭底层 HTTP 客户端连接池。"""
        if self._closed:
            return
        self._client.close()
        self._closed = True

    def send_to_thread(self, thread_id: str, content: str) -> DeliveryResult:
        """分片顺序发送消息；任一分片失败即停止后续发送。"""
        chunks = split_message(content, self._max_message_length) if content.strip() else []
        if not chunks:
            logger.warning(
                "empty message skipped",
                extra={"event": "discord.message.empty", "external_service": "discord", "op": "message.create"},
            )
            return DeliveryResult(success=True)

        for index, chunk in enumerate(chunks):
            result = self._post(
                f"/channels/{thread_id}/messages",
                op="message.create",
                json_body={"content": chunk},
                payload_preview={"thread_id": thread_id, "chunk": index + 1, "chunks": len(chunks), "chars": len(chunk)},
            )
            if not result.success:
                return result
        return DeliveryResult(success=True)

    def send_typing(self, channel_id: str) -> DeliveryResult:
        """发送 typing 指示。"""
        return self._post(
            f"/channels/{channel_id}/typing",
            op="channel.typing",
            payload_preview={"channel_id": channel_id},
        )

    def _post(
        self,
        path: str,
        *,
        op: str,
        json_body: dict[str, Any] | None = None,
        payload_preview: dict[str, Any] | None = None,
    ) -> DeliveryResult:
        started = time.perf_counter()
        try:
            client = self._client_or_raise()
            response = self._retry_policy.execute(lambda: client.post(path, json=json_body), op=op)
        except httpx.TimeoutException as exc:
            # 超时不重试，直接报告失败。
            return self._failure(
                f"Discord API timeout after {self._timeout_seconds:g}s",
                op=op,
                started=started,
                exc=exc,
                payload_preview=payload_preview,
            )
        except (httpx.HTTPError, RuntimeError) as exc:
            return self._failure(
                f"Discord API request failed: {exc}",
                op=op,
                started=started,
                exc=exc,
                payload_preview=payload_preview,
            )

        if response.is_success:
            logger.debug(
                "discord request succeeded",
                extra={
                    "event": "discord.request.succeeded",
                    "external_service": "discord",
                    "op": op,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "payload_preview": payload_preview,
                },
            )
            return DeliveryResult(success=True)

        if response.status_code == RATE_LIMIT_STATUS:
            message = (
                f"Discord API rate limit exceeded after {self._retry_policy.max_retries} retries: "
                f"{response.status_code} {response.text}"
            )
        else:
            message = f"Discord API error: {response.status_code} {response.text}"
        return self._failure(
            message,
            op=op,
            started=started,
            status_code=response.status_code,
            payload_preview=payload_preview,
        )

    @staticmethod
    def _failure(
        message: str,
        *,
        op: str,
        started: float,
        exc: Exception | None = None,
        status_code: int | None = None,
        payload_preview: dict[str, Any] | None = None,
    ) -> DeliveryResult:
        logger.error(
            "discord request failed",
            extra={
                "event": "discord.request.failed",
                "external_service": "discord",
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": status_code,
                "error_type": type(exc).__name__ if exc else None,
                "error": message,
                "payload_preview": payload_preview,
            },
        )
        return DeliveryResult(success=False, error=message)
