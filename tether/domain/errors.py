"""领域异常定义：区分二进制缺失、启动失败、CLI 失败与投递失败。"""

from __future__ import annotations


class TetherError(RuntimeError):
    """worker 业务异常基类。"""


class AgentBinaryNotFoundError(TetherError):
    """未能在 PATH、候选路径与 npm 全局目录中找到 agent 可执行文件。"""

    def __init__(self, adapter_name: str, env_var: str) -> None:
        super().__init__(
            f"{adapter_name} CLI not found. Install it or set {env_var} to the binary path."
        )
        self.adapter_name = adapter_name
        self.env_var = env_var


class AgentSpawnError(TetherError):
    """进程启动阶段的 OS 级失败，消息中携带诊断提示。"""

    def __init__(self, message: str, *, code: str | None, hints: list[str]) -> None:
        super().__init__(message)
        self.code = code
        self.hints = hints


class AgentCliError(TetherError):
    """agent 进程以非零退出码结束。"""

    def __init__(self, adapter_name: str, exit_code: int, stderr: str) -> None:
        super().__init__(f"{adapter_name} CLI failed (exit {exit_code}): {stderr or 'Unknown error'}")
        self.adapter_name = adapter_name
        self.exit_code = exit_code
        self.stderr = stderr


class DeliveryError(TetherError):
    """结果投递到聊天平台失败。"""
