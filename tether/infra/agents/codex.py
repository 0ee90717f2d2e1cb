"""Codex CLI adapter：``codex exec``，续接使用 ``exec resume <id>``，兜底使用 ``exec resume --last``。"""

from __future__ import annotations

import logging

from tether.domain.enums import SessionMode
from tether.domain.models import SpawnOptions
from tether.infra.agents.base import SESSION_NOT_FOUND_MARKERS, AgentAdapter
from tether.infra.agents.resolve_binary import home_candidate, system_binary_candidates

logger = logging.getLogger(__name__)


class CodexAdapter(AgentAdapter):
    name = "codex"
    display_name = "Codex"
    binary_name = "codex"
    env_var = "CODEX_BIN"
    session_not_found_markers = (*SESSION_NOT_FOUND_MARKERS, "No session found")

    def binary_override(self) -> str | None:
        return self._settings.codex_bin

    def candidates(self) -> list[str]:
        return [*system_binary_candidates("codex"), home_candidate(".codex", "bin", "codex")]

    def windows_candidates(self) -> list[str]:
        return [home_candidate(".codex", "bin", "codex.exe")]

    def build_args(self, binary_path: str, options: SpawnOptions, mode: SessionMode) -> list[str]:
        args = [binary_path, "exec"]
        if mode is SessionMode.resume:
            args += ["resume", options.session_id]
        elif mode is SessionMode.continue_fallback:
            args += ["resume", "--last"]
        if options.system_prompt:
            logger.info(
                "system prompt not supported, dropped",
                extra={"event": "agent.system_prompt.dropped", "op": self.name},
            )
        args += ["--json", options.prompt]
        return args
