"""可执行文件解析：依次尝试 PATH 查找、静态候选路径与 npm 全局目录。"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Sequence

from tether.domain.enums import BinarySource
from tether.domain.models import BinaryResolution
from tether.infra.agents.process import ProcessRunner, SubprocessRunner

logger = logging.getLogger(__name__)


def _is_windows() -> bool:
    return sys.platform == "win32"


def _first_line(text: str) -> str:
    for line in text.strip().splitlines():
        if line.strip():
            return line.strip()
    return ""


def resolve_binary(
    name: str,
    candidates: Sequence[str] | None = None,
    windows_candidates: Sequence[str] | None = None,
    runner: ProcessRunner | None = None,
) -> BinaryResolution | None:
    """解析可执行文件路径；找不到时返回 None 而不是抛异常。

    结果不做缓存，二进制被移动或升级后下一次调用即可感知。
    """
    runner = runner or SubprocessRunner()
    lookup_command = "where.exe" if _is_windows() else "which"

    try:
        result = runner.run([lookup_command, name])
    except OSError as exc:
        logger.debug(
            "binary lookup command unavailable",
            extra={"event": "binary.lookup.unavailable", "op": lookup_command, "error": str(exc)},
        )
    else:
        first_path = _first_line(result.stdout)
        if result.exit_code == 0 and first_path:
            if os.path.exists(first_path):
                logger.debug(
                    "binary resolved from PATH",
                    extra={"event": "binary.resolved", "payload_preview": {"name": name, "path": first_path}},
                )
                return BinaryResolution(path=first_path, source=BinarySource.path)
            # PATH 中残留的失效条目按未命中处理。
            logger.debug(
                "binary lookup returned missing path",
                extra={"event": "binary.lookup.stale", "payload_preview": {"name": name, "path": first_path}},
            )

    platform_candidates = windows_candidates if _is_windows() else candidates
    for candidate in platform_candidates or ():
        if candidate and os.path.exists(candidate):
            logger.debug(
                "binary resolved from candidate",
                extra={"event": "binary.resolved", "payload_preview": {"name": name, "path": candidate}},
            )
            return BinaryResolution(path=candidate, source=BinarySource.candidate)

    logger.debug("binary not found", extra={"event": "binary.not_found", "payload_preview": {"name": name}})
    return None


def resolve_npm_global_binary(binary_name: str, runner: ProcessRunner | None = None) -> str | None:
    """在 npm 全局 bin 目录中查找可执行文件。"""
    runner = runner or SubprocessRunner()
    try:
        result = runner.run(["npm", "prefix", "-g"])
    except OSError as exc:
        logger.warning(
            "npm is not available for global binary lookup",
            extra={"event": "binary.npm.unavailable", "error_type": type(exc).__name__, "error": str(exc)},
        )
        return None

    prefix = _first_line(result.stdout)
    if result.exit_code != 0 or not prefix:
        logger.warning(
            "npm global prefix query failed",
            extra={"event": "binary.npm.unavailable", "payload_preview": {"exit_code": result.exit_code}},
        )
        return None

    # Windows 下 npm 全局可执行文件直接位于 prefix 目录。
    bin_dir = Path(prefix) if _is_windows() else Path(prefix) / "bin"
    names = [binary_name]
    if _is_windows():
        names = [f"{binary_name}.exe", f"{binary_name}.cmd", binary_name]
    for item in names:
        candidate = bin_dir / item
        if candidate.exists():
            return str(candidate)

    logger.debug(
        "binary not installed as npm global",
        extra={"event": "binary.npm.not_found", "payload_preview": {"name": binary_name, "bin_dir": str(bin_dir)}},
    )
    return None


def system_binary_candidates(name: str) -> list[str]:
    """常见系统安装目录下的候选路径。"""
    return [f"/opt/homebrew/bin/{name}", f"/usr/local/bin/{name}", f"/usr/bin/{name}"]


def home_candidate(*parts: str) -> str:
    return str(Path.home().joinpath(*parts))
