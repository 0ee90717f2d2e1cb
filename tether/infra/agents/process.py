"""子进程执行抽象：统一捕获 stdout/stderr/退出码，便于测试替换。"""

from __future__ import annotations

import logging
import subprocess
import time
from typing import Mapping, Protocol, Sequence

from tether.domain.models import ProcessOutput

logger = logging.getLogger(__name__)


class ProcessRunner(Protocol):
    """进程启动接口；启动失败时抛出 OSError。"""

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessOutput: ...


class SubprocessRunner:
    """基于 subprocess 的默认实现，不设置超时，由 agent 自身控制时长。"""

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessOutput:
        started = time.perf_counter()
        completed = subprocess.run(
            list(args),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
        logger.debug(
            "process finished",
            extra={
                "event": "process.finished",
                "op": args[0] if args else None,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"exit_code": completed.returncode, "argc": len(args)},
            },
        )
        return ProcessOutput(
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            exit_code=completed.returncode,
        )
