"""依赖容器模块，负责单例化创建 adapter、Discord 客户端与作业处理器。"""

from __future__ import annotations

from functools import lru_cache

from tether.application.processor import JobProcessor
from tether.config import get_settings
from tether.infra.agents.base import AgentAdapter
from tether.infra.agents.registry import get_adapter
from tether.infra.discord.client import DiscordClient
from tether.infra.discord.retry import RateLimitRetryPolicy


@lru_cache(maxsize=1)
def get_agent_adapter() -> AgentAdapter:
    """获取当前配置的 agent adapter 单例；可执行文件路径仍在每次调用时解析。"""
    return get_adapter(settings=get_settings())


@lru_cache(maxsize=1)
def get_retry_policy() -> RateLimitRetryPolicy:
    """获取 Discord 限流重试策略单例。"""
    settings = get_settings()
    return RateLimitRetryPolicy(
        max_retries=settings.rate_limit_max_retries,
        default_delay_seconds=settings.rate_limit_default_delay_seconds,
        max_jitter_seconds=settings.rate_limit_max_jitter_seconds,
        max_delay_seconds=settings.rate_limit_max_delay_seconds,
    )


@lru_cache(maxsize=1)
def get_discord_client() -> DiscordClient:
    """获取 Discord 客户端单例；bot token 为进程级共享资源。"""
    settings = get_settings()
    return DiscordClient(
        settings.discord_bot_token,
        base_url=settings.discord_api_base_url,
        timeout_seconds=settings.discord_request_timeout_seconds,
        max_message_length=settings.discord_max_message_length,
        retry_policy=get_retry_policy(),
    )


@lru_cache(maxsize=1)
def get_processor() -> JobProcessor:
    """获取作业处理器单例。"""
    return JobProcessor(adapter=get_agent_adapter(), discord_client=get_discord_client())


def shutdown_container_resources() -> None:
    """关闭共享客户端并清理依赖容器缓存。"""
    if get_discord_client.cache_info().currsize:
        get_discord_client().close()

    # 按依赖顺序清理缓存，确保后续调用可重新构建全新实例。
    for provider in (get_processor, get_discord_client, get_retry_policy, get_agent_adapter):
        provider.cache_clear()
