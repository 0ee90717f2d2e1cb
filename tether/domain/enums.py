"""领域枚举定义：统一二进制来源与会话续接模式取值。"""

from __future__ import annotations

from enum import Enum


class BinarySource(str, Enum):
    """可执行文件解析来源枚举。"""
    env = "env"
    path = "path"
    candidate = "candidate"
    npm = "npm"


class SessionMode(str, Enum):
    """会话续接模式：仅允许 resume -> continue_fallback 单次迁移。"""
    new = "new"
    resume = "resume"
    continue_fallback = "continue_fallback"

    def fallback(self) -> SessionMode | None:
        """返回失败后的兜底模式；兜底模式本身不再继续兜底。"""
        if self is SessionMode.resume:
            return SessionMode.continue_fallback
        return None
