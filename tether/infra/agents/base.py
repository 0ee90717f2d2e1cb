"""Agent adapter 基类：二进制解析、版本探测、会话续接状态机与输出解析。"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any

from tether.config import Settings
from tether.domain.enums import BinarySource, SessionMode
from tether.domain.errors import AgentBinaryNotFoundError, AgentCliError
from tether.domain.models import (
    BinaryResolution,
    ProcessOutput,
    SpawnDiagnosticsInput,
    SpawnOptions,
    SpawnResult,
)
from tether.infra.agents.process import ProcessRunner, SubprocessRunner
from tether.infra.agents.resolve_binary import resolve_binary, resolve_npm_global_binary
from tether.infra.agents.spawn_diagnostics import format_spawn_error

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND_MARKERS: tuple[str, ...] = ("No conversation found", "Session not found")


class AgentAdapter(ABC):
    """单个 agent CLI 家族的调用实现，所有 adapter 共享同一调用契约。"""

    name: str = ""
    display_name: str = ""
    binary_name: str = ""
    env_var: str = ""
    known_buggy_versions: tuple[str, ...] = ()
    session_not_found_markers: tuple[str, ...] = SESSION_NOT_FOUND_MARKERS

    def __init__(self, settings: Settings, runner: ProcessRunner | None = None) -> None:
        self._settings = settings
        self._runner = runner or SubprocessRunner()

    @abstractmethod
    def build_args(self, binary_path: str, options: SpawnOptions, mode: SessionMode) -> list[str]:
        """按会话模式构造完整 argv（含可执行文件路径）。"""

    @abstractmethod
    def binary_override(self) -> str | None:
        """返回配置中的可执行文件覆盖路径。"""

    def candidates(self) -> list[str]:
        return []

    def windows_candidates(self) -> list[str]:
        return []

    def build_env(self) -> dict[str, str]:
        return dict(os.environ)

    def resolve(self) -> BinaryResolution:
        """解析本次调用使用的可执行文件；每次调用都重新解析。"""
        override = self.binary_override()
        if override:
            resolution = BinaryResolution(path=override, source=BinarySource.env)
        else:
            resolution = resolve_binary(
                self.binary_name,
                candidates=self.candidates(),
                windows_candidates=self.windows_candidates(),
                runner=self._runner,
            )
            if resolution is None:
                npm_path = resolve_npm_global_binary(self.binary_name, runner=self._runner)
                if npm_path is None:
                    raise AgentBinaryNotFoundError(self.display_name, self.env_var)
                resolution = BinaryResolution(path=npm_path, source=BinarySource.npm)
        logger.info(
            "agent binary resolved",
            extra={
                "event": "agent.binary.resolved",
                "op": self.name,
                "payload_preview": {"path": resolution.path, "source": resolution.source.value},
            },
        )
        return resolution

    def probe_version(self, binary_path: str) -> str:
        """探测 CLI 版本，命中已知缺陷版本时仅告警不中断。"""
        try:
            result = self._runner.run([binary_path, "--version"], env=self.build_env())
        except OSError as exc:
            logger.warning(
                "agent version probe failed",
                extra={"event": "agent.version.failed", "op": self.name, "error": str(exc)},
            )
            return "unknown"
        if result.exit_code != 0:
            return "unknown"

        version = result.stdout.strip()
        logger.info(
            "agent version detected",
            extra={"event": "agent.version.detected", "op": self.name, "payload_preview": {"version": version}},
        )
        if any(item in version for item in self.known_buggy_versions):
            logger.warning(
                "agent version has known --resume issues",
                extra={"event": "agent.version.buggy", "op": self.name, "payload_preview": {"version": version}},
            )
        return version

    def working_dir(self, options: SpawnOptions) -> str | None:
        """作业目录优先，其次为配置的默认目录（须存在），否则继承当前目录。"""
        if options.working_dir:
            return options.working_dir
        default_dir = self._settings.claude_working_dir
        if default_dir and os.path.isdir(default_dir):
            return default_dir
        if default_dir:
            logger.warning(
                "default working directory does not exist, using cwd",
                extra={"event": "agent.cwd.missing", "payload_preview": {"working_dir": default_dir}},
            )
        return None

    def spawn(self, options: SpawnOptions) -> SpawnResult:
        cwd = self.working_dir(options)
        resolution = self.resolve()
        self.probe_version(resolution.path)

        mode = SessionMode.resume if options.resume else SessionMode.new
        output = self._execute(resolution, options, mode, cwd)

        if output.exit_code != 0 and self.is_session_not_found(output.stderr):
            fallback = mode.fallback()
            if fallback is not None:
                logger.warning(
                    "resume failed, falling back to continue",
                    extra={
                        "event": "agent.resume.fallback",
                        "op": self.name,
                        "session_id": options.session_id,
                        "payload_preview": {"stderr": output.stderr[-500:]},
                    },
                )
                mode = fallback
                output = self._execute(resolution, options, mode, cwd)

        if output.exit_code != 0:
            raise AgentCliError(self.display_name, output.exit_code, output.stderr.strip())
        return self.parse_output(output.stdout, options)

    def is_session_not_found(self, stderr: str) -> bool:
        return any(marker in stderr for marker in self.session_not_found_markers)

    def _execute(
        self,
        resolution: BinaryResolution,
        options: SpawnOptions,
        mode: SessionMode,
        cwd: str | None,
    ) -> ProcessOutput:
        args = self.build_args(resolution.path, options, mode)
        logger.info(
            "agent process starting",
            extra={
                "event": "agent.spawn.started",
                "op": self.name,
                "session_id": options.session_id,
                "payload_preview": {
                    "mode": mode.value,
                    "cwd": cwd or os.getcwd(),
                    "prompt_chars": len(options.prompt),
                },
            },
        )
        try:
            output = self._runner.run(args, cwd=cwd, env=self.build_env())
        except OSError as exc:
            raise format_spawn_error(
                SpawnDiagnosticsInput(
                    adapter_name=self.display_name,
                    binary_path=resolution.path,
                    binary_source=resolution.source,
                    env_var=self.env_var,
                    working_dir=cwd or os.getcwd(),
                    args=args,
                    error=exc,
                )
            ) from exc

        log = logger.info if output.exit_code == 0 else logger.warning
        log(
            "agent process exited",
            extra={
                "event": "agent.spawn.exited",
                "op": self.name,
                "payload_preview": {"mode": mode.value, "exit_code": output.exit_code, "stderr": output.stderr[-500:]},
            },
        )
        return output

    def parse_output(self, stdout: str, options: SpawnOptions) -> SpawnResult:
        """解析 JSON 输出中的 response 字段；非 JSON 时原样返回文本。"""
        text = stdout.strip()
        session_id = options.session_id
        try:
            parsed: Any = json.loads(stdout)
        except ValueError:
            return SpawnResult(output=text, session_id=session_id)
        if not isinstance(parsed, dict):
            return SpawnResult(output=text, session_id=session_id)

        for key in ("response", "output", "result"):
            value = parsed.get(key)
            if value:
                text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
                break
        surfaced = parsed.get("session_id") or parsed.get("sessionId")
        if isinstance(surfaced, str) and surfaced:
            session_id = surfaced
        return SpawnResult(output=text, session_id=session_id)
