"""测试公共夹具：伪造进程执行器、可执行文件与配置对象。"""

from __future__ import annotations

import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Sequence

import pytest

from tether.config import Settings
from tether.domain.models import ProcessOutput

Handler = Callable[[list[str]], "ProcessOutput | BaseException"]


@dataclass
class RecordedCall:
    args: list[str]
    cwd: str | None
    env: Mapping[str, str] | None


@dataclass
class FakeRunner:
    """按 handler 返回预设结果的进程执行器，记录每次调用。"""
    handler: Handler
    calls: list[RecordedCall] = field(default_factory=list)

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessOutput:
        self.calls.append(RecordedCall(list(args), cwd, env))
        outcome = self.handler(list(args))
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def spawn_calls(self) -> list[RecordedCall]:
        """排除 which/npm/--version 等探测调用后的 agent 调用。"""
        return [
            call
            for call in self.calls
            if call.args[0] not in {"which", "where.exe", "npm"} and "--version" not in call.args
        ]


@pytest.fixture
def fake_runner() -> Callable[[Handler], FakeRunner]:
    return FakeRunner


@pytest.fixture
def make_executable(tmp_path: Path) -> Callable[..., Path]:
    """在临时目录创建脚本文件，默认带可执行权限。"""

    def _make(name: str = "agent", content: str = "#!/bin/sh\necho ok\n", executable: bool = True) -> Path:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        mode = stat.S_IRUSR | stat.S_IWUSR
        if executable:
            mode |= stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
        path.chmod(mode)
        return path

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        agent_type="claude",
        claude_bin=None,
        opencode_bin=None,
        codex_bin=None,
        claude_working_dir=None,
        tz="UTC",
        log_dir=tmp_path / "logs",
    )
