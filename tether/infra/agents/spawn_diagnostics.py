"""启动失败诊断：将不透明的 OS 错误转换为带排查提示的错误信息。"""

from __future__ import annotations

import errno
import os
import stat
import sys

from tether.domain.enums import BinarySource
from tether.domain.errors import AgentSpawnError
from tether.domain.models import SpawnDiagnosticsInput

KNOWN_ERROR_CODES: tuple[str, ...] = ("ENOENT", "EACCES", "ENOEXEC", "ENOTDIR", "EPERM")
_EXECUTABLE_MASK = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def _error_message(error: BaseException | str) -> str:
    if isinstance(error, OSError) and error.strerror:
        if error.filename:
            return f"[Errno {error.errno}] {error.strerror}: {error.filename}"
        return f"[Errno {error.errno}] {error.strerror}"
    return str(error)


def extract_error_code(error: BaseException | str) -> str | None:
    """优先读取结构化错误码，否则在错误文本中匹配已知错误码。"""
    if isinstance(error, OSError) and error.errno in errno.errorcode:
        return errno.errorcode[error.errno]
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code
    message = _error_message(error)
    return next((item for item in KNOWN_ERROR_CODES if item in message), None)


def _is_executable(path: str) -> bool:
    if sys.platform == "win32":
        return True
    try:
        return bool(os.stat(path).st_mode & _EXECUTABLE_MASK)
    except OSError:
        return False


def _read_shebang(path: str) -> str | None:
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            line = handle.readline()
    except OSError:
        return None
    if line.startswith("#!"):
        return line[2:].strip()
    return None


def _source_value(source: BinarySource | str) -> str:
    return source.value if isinstance(source, BinarySource) else str(source)


def _format_hints(diagnostics: SpawnDiagnosticsInput, code: str | None) -> list[str]:
    hints: list[str] = []
    binary_path = diagnostics.binary_path

    if code == "ENOENT":
        if not os.path.exists(binary_path):
            hints.append("Binary not found at the resolved path.")
        elif not _is_executable(binary_path):
            hints.append("Binary exists but is not executable (chmod +x).")
        else:
            # 文件存在且可执行却报 ENOENT，通常是解释器缺失。
            shebang = _read_shebang(binary_path)
            if shebang:
                hints.append(f"Shebang: {shebang}")
                if shebang.startswith("/usr/bin/env "):
                    parts = shebang[len("/usr/bin/env "):].split()
                    # env -S 等选项不是目标解释器
                    target = next((item for item in parts if not item.startswith("-")), None)
                    if target:
                        hints.append(f"Ensure {target} is on PATH for the worker process.")
                elif shebang.startswith("/"):
                    interpreter = shebang.split()[0]
                    if not os.path.exists(interpreter):
                        hints.append(f"Interpreter not found: {interpreter}")

    if code in {"EACCES", "EPERM"}:
        hints.append("Permission denied. Verify execute permissions on the binary.")

    if code == "ENOTDIR":
        hints.append("Working directory is not a directory.")

    if _source_value(diagnostics.binary_source) == BinarySource.path.value:
        hints.append("Binary was resolved from PATH; ensure PATH is set for the worker process.")

    hints.append(f"Set {diagnostics.env_var} to the correct path, then restart the worker.")
    return hints


def format_spawn_error(diagnostics: SpawnDiagnosticsInput) -> AgentSpawnError:
    """构造多行诊断错误；只负责诊断，不做任何重试。"""
    code = extract_error_code(diagnostics.error)
    cause = _error_message(diagnostics.error)
    lines = [
        f"{diagnostics.adapter_name} CLI failed to start{f' ({code})' if code else ''}.",
        f"binary: {diagnostics.binary_path} (source: {_source_value(diagnostics.binary_source)})",
    ]
    if diagnostics.args:
        lines.append(f"cmd: {' '.join(diagnostics.args)}")
    if diagnostics.working_dir:
        missing = "" if os.path.exists(diagnostics.working_dir) else " (missing)"
        lines.append(f"cwd: {diagnostics.working_dir}{missing}")
    if cause:
        lines.append(f"cause: {cause}")

    hints = _format_hints(diagnostics, code)
    lines.append("hints:")
    lines.extend(f"- {hint}" for hint in hints)
    return AgentSpawnError("\n".join(lines), code=code, hints=hints)
