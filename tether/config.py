"""全局配置加载模块：从环境变量构建 worker 运行参数并提供缓存访问。"""

from __future__ import annotations

import errno
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """worker 运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Tether Worker"
    environment: str = "dev"

    agent_type: str = "claude"
    claude_bin: str | None = None
    opencode_bin: str | None = None
    codex_bin: str | None = None
    claude_working_dir: str | None = None
    tz: str = "UTC"

    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "claude"
    worker_concurrency: int = 2
    job_max_attempts: int = 3
    job_backoff_seconds: float = 1.0
    # 须远大于 agent 最长运行时间，否则 acks_late 下未确认消息会被 Redis 重投。
    job_visibility_timeout_seconds: int = 24 * 60 * 60
    celery_task_always_eager: bool = False

    discord_bot_token: str | None = None
    discord_api_base_url: str = "https://discord.com/api/v10"
    discord_request_timeout_seconds: float = 30.0
    discord_max_message_length: int = 2000
    rate_limit_max_retries: int = 3
    rate_limit_default_delay_seconds: float = 5.0
    rate_limit_max_jitter_seconds: float = 0.5
    rate_limit_max_delay_seconds: float = 60.0

    log_dir: Path = Field(default=Path("./logs"))
    log_level: str = "INFO"
    log_debug_modules: str = ""
    log_debug_job_ids: str = ""
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 2000
    log_max_bytes: int = 20 * 1024 * 1024
    log_backup_count: int = 5

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_job_ids_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_job_ids)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings，同时确保日志根目录可写。"""
    settings = Settings()
    # 相对路径统一按当前工作目录解析，避免不同启动方式下语义漂移。
    if not settings.log_dir.is_absolute():
        settings.log_dir = (Path.cwd() / settings.log_dir).resolve()
    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        if exc.errno not in {errno.EACCES, errno.EPERM, errno.EROFS}:
            raise
        # 容器只读或权限受限时回退到当前工作目录下的本地路径。
        fallback = (Path.cwd() / "logs").resolve()
        fallback.mkdir(parents=True, exist_ok=True)
        settings.log_dir = fallback
    return settings
