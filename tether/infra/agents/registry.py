"""Adapter 注册中心：按配置的 agent 类型创建 adapter 实例。"""

from __future__ import annotations

from tether.config import Settings, get_settings
from tether.infra.agents.base import AgentAdapter
from tether.infra.agents.claude import ClaudeAdapter
from tether.infra.agents.codex import CodexAdapter
from tether.infra.agents.opencode import OpenCodeAdapter
from tether.infra.agents.process import ProcessRunner

_ADAPTERS: dict[str, type[AgentAdapter]] = {
    ClaudeAdapter.name: ClaudeAdapter,
    OpenCodeAdapter.name: OpenCodeAdapter,
    CodexAdapter.name: CodexAdapter,
}


def get_adapter(
    agent_type: str | None = None,
    settings: Settings | None = None,
    runner: ProcessRunner | None = None,
) -> AgentAdapter:
    """按名称创建 adapter；未指定时读取 AGENT_TYPE 配置。"""
    settings = settings or get_settings()
    adapter_type = (agent_type or settings.agent_type or "claude").lower()
    adapter_cls = _ADAPTERS.get(adapter_type)
    if adapter_cls is None:
        raise ValueError(f"Unknown adapter type: {adapter_type}")
    return adapter_cls(settings, runner=runner)


def supported_adapters() -> list[str]:
    return list(_ADAPTERS)
