"""领域数据结构定义：队列作业、进程调用契约与投递结果等核心值对象。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tether.domain.enums import BinarySource


class Job(BaseModel):
    """队列作业载荷，入队后不可变；线上格式使用 camelCase 键。"""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    prompt: str
    thread_id: str = Field(alias="threadId", min_length=1)
    session_id: str = Field(alias="sessionId", min_length=1)
    resume: bool = False
    username: str
    working_dir: str | None = Field(default=None, alias="workingDir")

    def to_payload(self) -> dict[str, Any]:
        """序列化为入队使用的 camelCase 字典。"""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(slots=True, frozen=True)
class BinaryResolution:
    """可执行文件解析结果，每次调用重新计算。"""
    path: str
    source: BinarySource


@dataclass(slots=True)
class SpawnOptions:
    """所有 adapter 必须接受的调用参数。"""
    prompt: str
    session_id: str
    resume: bool = False
    working_dir: str | None = None
    system_prompt: str | None = None


@dataclass(slots=True)
class SpawnResult:
    """调用成功结果；session_id 为调用方后续续接应保存的会话标识。"""
    output: str
    session_id: str


@dataclass(slots=True)
class SpawnDiagnosticsInput:
    """启动失败诊断输入，仅在失败路径上组装。"""
    adapter_name: str
    binary_path: str
    binary_source: BinarySource | str
    env_var: str
    error: BaseException | str
    working_dir: str | None = None
    args: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ProcessOutput:
    """子进程执行结果快照。"""
    stdout: str
    stderr: str
    exit_code: int


@dataclass(slots=True)
class DeliveryResult:
    """投递结果；失败时不抛异常而是返回 success=False。"""
    success: bool
    error: str | None = None
