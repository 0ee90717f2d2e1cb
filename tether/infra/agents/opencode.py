"""OpenCode CLI adapter：``run --format json``，续接使用 ``--session``，兜底使用 ``--continue``。"""

from __future__ import annotations

import logging

from tether.domain.enums import SessionMode
from tether.domain.models import SpawnOptions
from tether.infra.agents.base import AgentAdapter
from tether.infra.agents.resolve_binary import home_candidate, system_binary_candidates

logger = logging.getLogger(__name__)


class OpenCodeAdapter(AgentAdapter):
    name = "opencode"
    display_name = "OpenCode"
    binary_name = "opencode"
    env_var = "OPENCODE_BIN"

    def binary_override(self) -> str | None:
        return self._settings.opencode_bin

    def candidates(self) -> list[str]:
        return [*system_binary_candidates("opencode"), home_candidate(".opencode", "bin", "opencode")]

    def windows_candidates(self) -> list[str]:
        return [home_candidate(".opencode", "bin", "opencode.exe")]

    def build_args(self, binary_path: str, options: SpawnOptions, mode: SessionMode) -> list[str]:
        args = [binary_path, "run", "--format", "json"]
        if mode is SessionMode.resume:
            args += ["--session", options.session_id]
        elif mode is SessionMode.continue_fallback:
            args.append("--continue")
        if options.system_prompt:
            logger.info(
                "system prompt not supported, dropped",
                extra={"event": "agent.system_prompt.dropped", "op": self.name},
            )
        # prompt 必须位于最后
        args.append(options.prompt)
        return args
