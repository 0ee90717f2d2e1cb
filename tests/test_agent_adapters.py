"""Agent adapter 测试：覆盖参数构造、resume 兜底状态机、输出解析与启动失败诊断。"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from tether.config import Settings
from tether.domain.enums import BinarySource, SessionMode
from tether.domain.errors import AgentBinaryNotFoundError, AgentCliError, AgentSpawnError
from tether.domain.models import ProcessOutput, SpawnOptions
from tether.infra.agents import resolve_binary as resolver
from tether.infra.agents.claude import ClaudeAdapter
from tether.infra.agents.codex import CodexAdapter
from tether.infra.agents.opencode import OpenCodeAdapter
from tether.infra.agents.registry import get_adapter, supported_adapters

SESSION_ID = "5f0c1d2e-0000-4000-8000-000000000001"


def _ok(stdout: str = "") -> ProcessOutput:
    return ProcessOutput(stdout=stdout, stderr="", exit_code=0)


def _failed(stderr: str, exit_code: int = 1) -> ProcessOutput:
    return ProcessOutput(stdout="", stderr=stderr, exit_code=exit_code)


def _scripted(*spawn_outputs: ProcessOutput | BaseException, version: str = "1.0.80 (Claude Code)"):
    """--version 返回固定版本，其余调用按顺序返回脚本化结果。"""
    queue = list(spawn_outputs)

    def handler(args: list[str]) -> ProcessOutput | BaseException:
        if "--version" in args:
            return _ok(f"{version}\n")
        return queue.pop(0)

    return handler


@pytest.fixture
def claude_settings(settings: Settings, make_executable) -> Settings:
    return settings.model_copy(update={"claude_bin": str(make_executable("claude"))})


def test_new_session_args_and_json_response(claude_settings: Settings, fake_runner) -> None:
    runner = fake_runner(_scripted(_ok(json.dumps({"response": "hello from claude"}))))
    adapter = ClaudeAdapter(claude_settings, runner=runner)

    result = adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID, system_prompt="be brief"))

    assert result.output == "hello from claude"
    assert result.session_id == SESSION_ID
    (call,) = runner.spawn_calls()
    args = call.args
    assert args[:4] == [claude_settings.claude_bin, "--print", "--output-format", "json"]
    assert args[args.index("--session-id") + 1] == SESSION_ID
    assert "--resume" not in args
    system_prompt = args[args.index("--append-system-prompt") + 1]
    assert system_prompt.startswith("Current date/time: ")
    assert system_prompt.endswith("\n\nbe brief")
    assert args[-2:] == ["-p", "hi"]
    assert call.env is not None and call.env["TZ"] == "UTC"


def test_resume_not_found_falls_back_to_continue_once(claude_settings: Settings, fake_runner) -> None:
    runner = fake_runner(
        _scripted(
            _failed(f"No conversation found with session ID: {SESSION_ID}"),
            _ok(json.dumps({"response": "continued", "session_id": "fallback-session"})),
        )
    )
    adapter = ClaudeAdapter(claude_settings, runner=runner)

    result = adapter.spawn(SpawnOptions(prompt="again", session_id=SESSION_ID, resume=True))

    first, second = runner.spawn_calls()
    assert first.args[first.args.index("--resume") + 1] == SESSION_ID
    assert "--continue" in second.args
    assert "--resume" not in second.args
    assert SESSION_ID not in second.args
    assert result.output == "continued"
    assert result.session_id == "fallback-session"


def test_fallback_is_never_chained(claude_settings: Settings, fake_runner) -> None:
    runner = fake_runner(
        _scripted(
            _failed("No conversation found with session ID"),
            _failed("Session not found"),
        )
    )
    adapter = ClaudeAdapter(claude_settings, runner=runner)

    with pytest.raises(AgentCliError) as exc_info:
        adapter.spawn(SpawnOptions(prompt="again", session_id=SESSION_ID, resume=True))

    assert len(runner.spawn_calls()) == 2
    assert exc_info.value.exit_code == 1
    assert "Claude CLI failed (exit 1): Session not found" in str(exc_info.value)


def test_new_session_failure_does_not_fall_back(claude_settings: Settings, fake_runner) -> None:
    runner = fake_runner(_scripted(_failed("No conversation found", exit_code=2)))
    adapter = ClaudeAdapter(claude_settings, runner=runner)

    with pytest.raises(AgentCliError):
        adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID))

    assert len(runner.spawn_calls()) == 1


def test_resume_other_failure_does_not_fall_back(claude_settings: Settings, fake_runner) -> None:
    runner = fake_runner(_scripted(_failed("rate limit exceeded")))
    adapter = ClaudeAdapter(claude_settings, runner=runner)

    with pytest.raises(AgentCliError, match="rate limit exceeded"):
        adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID, resume=True))

    assert len(runner.spawn_calls()) == 1


def test_plain_text_output_is_returned_verbatim(claude_settings: Settings, fake_runner) -> None:
    runner = fake_runner(_scripted(_ok("  just text\nwith lines  \n")))
    adapter = ClaudeAdapter(claude_settings, runner=runner)

    result = adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID))

    assert result.output == "just text\nwith lines"
    assert result.session_id == SESSION_ID


def test_buggy_version_only_warns(claude_settings: Settings, fake_runner, caplog: pytest.LogCaptureFixture) -> None:
    runner = fake_runner(_scripted(_ok("done"), version="1.0.67 (Claude Code)"))
    adapter = ClaudeAdapter(claude_settings, runner=runner)

    with caplog.at_level(logging.WARNING, logger="tether.infra.agents.base"):
        result = adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID, resume=True))

    assert result.output == "done"
    assert any(getattr(record, "event", None) == "agent.version.buggy" for record in caplog.records)


def test_spawn_oserror_is_diagnosed(claude_settings: Settings, fake_runner, tmp_path: Path) -> None:
    runner = fake_runner(
        _scripted(FileNotFoundError(2, "No such file or directory", claude_settings.claude_bin))
    )
    adapter = ClaudeAdapter(claude_settings, runner=runner)

    with pytest.raises(AgentSpawnError) as exc_info:
        adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID, working_dir=str(tmp_path)))

    message = str(exc_info.value)
    assert message.startswith("Claude CLI failed to start (ENOENT).")
    assert "(source: env)" in message
    assert f"cwd: {tmp_path}" in message
    assert "Set CLAUDE_BIN to the correct path" in message


def test_working_dir_becomes_cwd(claude_settings: Settings, fake_runner, tmp_path: Path) -> None:
    runner = fake_runner(_scripted(_ok("ok")))
    adapter = ClaudeAdapter(claude_settings, runner=runner)

    adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID, working_dir=str(tmp_path)))

    assert runner.spawn_calls()[0].cwd == str(tmp_path)


def test_default_working_dir_requires_existing_directory(claude_settings: Settings, fake_runner, tmp_path: Path) -> None:
    runner = fake_runner(_scripted(_ok("ok"), _ok("ok")))
    existing = ClaudeAdapter(claude_settings.model_copy(update={"claude_working_dir": str(tmp_path)}), runner=runner)
    missing = ClaudeAdapter(
        claude_settings.model_copy(update={"claude_working_dir": str(tmp_path / "nope")}), runner=runner
    )

    existing.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID))
    missing.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID))

    assert [call.cwd for call in runner.spawn_calls()] == [str(tmp_path), None]


def test_binary_resolved_from_path_each_call(
    settings: Settings, fake_runner, make_executable, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(resolver, "_is_windows", lambda: False)
    binary = make_executable("claude")

    def handler(args: list[str]) -> ProcessOutput:
        if args[0] == "which":
            return _ok(f"{binary}\n")
        if "--version" in args:
            return _ok("1.0.80")
        return _ok("ok")

    runner = fake_runner(handler)
    adapter = ClaudeAdapter(settings, runner=runner)

    resolution = adapter.resolve()
    adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID))
    adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID))

    assert resolution.source is BinarySource.path
    assert [call.args[0] for call in runner.calls].count("which") == 3


def test_binary_not_found_raises(settings: Settings, fake_runner, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(resolver, "_is_windows", lambda: False)
    runner = fake_runner(lambda args: FileNotFoundError(2, "No such file or directory", args[0]))
    adapter = CodexAdapter(settings, runner=runner)
    monkeypatch.setattr(adapter, "candidates", lambda: [])

    with pytest.raises(AgentBinaryNotFoundError, match="CODEX_BIN"):
        adapter.spawn(SpawnOptions(prompt="hi", session_id=SESSION_ID))


def test_opencode_args_per_mode(settings: Settings) -> None:
    adapter = OpenCodeAdapter(settings)
    options = SpawnOptions(prompt="do it", session_id="ses_1")

    assert adapter.build_args("opencode", options, SessionMode.new) == ["opencode", "run", "--format", "json", "do it"]
    assert adapter.build_args("opencode", options, SessionMode.resume) == [
        "opencode", "run", "--format", "json", "--session", "ses_1", "do it",
    ]
    assert adapter.build_args("opencode", options, SessionMode.continue_fallback) == [
        "opencode", "run", "--format", "json", "--continue", "do it",
    ]


def test_codex_args_per_mode(settings: Settings) -> None:
    adapter = CodexAdapter(settings)
    options = SpawnOptions(prompt="fix", session_id="thread-9")

    assert adapter.build_args("codex", options, SessionMode.new) == ["codex", "exec", "--json", "fix"]
    assert adapter.build_args("codex", options, SessionMode.resume) == [
        "codex", "exec", "resume", "thread-9", "--json", "fix",
    ]
    assert adapter.build_args("codex", options, SessionMode.continue_fallback) == [
        "codex", "exec", "resume", "--last", "--json", "fix",
    ]


def test_opencode_surfaces_session_id_from_json(settings: Settings, fake_runner, make_executable) -> None:
    opencode_settings = settings.model_copy(update={"opencode_bin": str(make_executable("opencode"))})
    runner = fake_runner(_scripted(_ok(json.dumps({"output": "done", "sessionId": "ses_new"}))))

    result = OpenCodeAdapter(opencode_settings, runner=runner).spawn(SpawnOptions(prompt="x", session_id="local-id"))

    assert result.output == "done"
    assert result.session_id == "ses_new"


def test_session_mode_fallback_is_one_shot() -> None:
    assert SessionMode.resume.fallback() is SessionMode.continue_fallback
    assert SessionMode.continue_fallback.fallback() is None
    assert SessionMode.new.fallback() is None


def test_registry(settings: Settings) -> None:
    assert supported_adapters() == ["claude", "opencode", "codex"]
    assert isinstance(get_adapter("OpenCode", settings=settings), OpenCodeAdapter)
    assert isinstance(get_adapter(settings=settings.model_copy(update={"agent_type": "codex"})), CodexAdapter)
    with pytest.raises(ValueError, match="Unknown adapter type: gemini"):
        get_adapter("gemini", settings=settings)
