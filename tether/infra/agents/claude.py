"""Claude Code CLI adapter。

主要参数：
- ``--print``：非交互模式
- ``--session-id <id>``：新会话预先指定 ID
- ``--resume <id>``：按 ID 续接会话
- ``--continue``：续接当前目录最近一次会话（resume 失败时的兜底）
- ``--append-system-prompt``：注入可跨上下文压缩保留的系统提示

已知问题：1.0.67 版本的 ``--resume`` 存在缺陷（GitHub #5012）；会话按目录隔离，必须在同一 cwd 下续接。
"""

from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tether.domain.enums import SessionMode
from tether.domain.models import SpawnOptions
from tether.infra.agents.base import AgentAdapter
from tether.infra.agents.resolve_binary import home_candidate, system_binary_candidates

logger = logging.getLogger(__name__)


class ClaudeAdapter(AgentAdapter):
    name = "claude"
    display_name = "Claude"
    binary_name = "claude"
    env_var = "CLAUDE_BIN"
    known_buggy_versions = ("1.0.67",)

    def binary_override(self) -> str | None:
        return self._settings.claude_bin

    def candidates(self) -> list[str]:
        return [
            *system_binary_candidates("claude"),
            home_candidate(".claude", "bin", "claude"),
            home_candidate(".local", "bin", "claude"),
        ]

    def windows_candidates(self) -> list[str]:
        return [
            home_candidate(".claude", "bin", "claude.exe"),
            home_candidate(".local", "bin", "claude.exe"),
        ]

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        env["TZ"] = self._settings.tz
        return env

    def build_args(self, binary_path: str, options: SpawnOptions, mode: SessionMode) -> list[str]:
        args = [binary_path, "--print", "--output-format", "json"]
        if mode is SessionMode.new:
            args += ["--session-id", options.session_id]
        elif mode is SessionMode.resume:
            args += ["--resume", options.session_id]
        else:
            args.append("--continue")

        # 日期时间写入系统提示，跨会话压缩后仍然保留。
        datetime_context = f"Current date/time: {self._datetime_context()}"
        system_prompt = f"{datetime_context}\n\n{options.system_prompt}" if options.system_prompt else datetime_context
        args += ["--append-system-prompt", system_prompt]
        args += ["-p", options.prompt]
        return args

    def _datetime_context(self) -> str:
        try:
            zone = ZoneInfo(self._settings.tz)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("unknown timezone, using UTC", extra={"event": "agent.tz.invalid", "op": self.name})
            zone = ZoneInfo("UTC")
        now = datetime.now(zone)
        hour = now.hour % 12 or 12
        return f"{now:%A, %B} {now.day}, {now.year}, {hour}:{now:%M %p}"
