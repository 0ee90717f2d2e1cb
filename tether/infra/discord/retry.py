"""429 限流退避策略：按优先级确定等待时长并叠加随机抖动。"""

from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass, field
from typing import Callable

import httpx

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429


def _as_seconds(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    # inf/nan 视为无效值，回落到下一优先级来源。
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


@dataclass(slots=True)
class RateLimitRetryPolicy:
    """可复用的限流重试策略，消息发送与 typing 指示共用。"""
    max_retries: int = 3
    default_delay_seconds: float = 5.0
    max_jitter_seconds: float = 0.5
    max_delay_seconds: float = 60.0
    sleep: Callable[[float], None] = field(default=time.sleep)
    random_source: Callable[[], float] = field(default=random.random)

    def base_delay(self, response: httpx.Response) -> float:
        """等待时长优先级：响应体 retry_after > Retry-After > X-RateLimit-Reset-After > 默认值。"""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            seconds = _as_seconds(body.get("retry_after"))
            if seconds is not None:
                return seconds
        for header in ("Retry-After", "X-RateLimit-Reset-After"):
            seconds = _as_seconds(response.headers.get(header))
            if seconds is not None:
                return seconds
        return self.default_delay_seconds

    def compute_delay(self, response: httpx.Response) -> float:
        """服务端给出的等待时长按 max_delay_seconds 封顶后叠加抖动。"""
        base = min(self.base_delay(response), self.max_delay_seconds)
        return base + self.random_source() * self.max_jitter_seconds

    def execute(self, send: Callable[[], httpx.Response], *, op: str) -> httpx.Response:
        """执行请求，遇到 429 时退避重试；返回最后一次响应，网络异常直接抛出。"""
        response = send()
        retries = 0
        while response.status_code == RATE_LIMIT_STATUS and retries < self.max_retries:
            retries += 1
            delay = self.compute_delay(response)
            logger.warning(
                "rate limited, backing off",
                extra={
                    "event": "discord.rate_limited",
                    "external_service": "discord",
                    "op": op,
                    "status_code": response.status_code,
                    "retry": retries,
                    "payload_preview": {"delay_seconds": round(delay, 3)},
                },
            )
            self.sleep(delay)
            response = send()
        return response
