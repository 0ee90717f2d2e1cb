"""日志初始化：worker 进程的 JSONL 文件输出、凭据脱敏与按作业/线程放行 DEBUG。"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextlib import suppress
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any, Iterable

from tether.config import Settings
from tether.infra.logging.context import LOG_CONTEXT_KEYS, get_log_context

SERVICE_NAME = "tether-worker"

_listener: QueueListener | None = None
_queue_handler: QueueHandler | None = None

_MASK = "***"
# Discord bot token 形如 <base64 id>.<timestamp>.<hmac>
_BOT_TOKEN_SHAPE = re.compile(r"\b[\w-]{23,28}\.[\w-]{6,7}\.[\w-]{27,}\b")
_CREDENTIAL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i)(authorization\s*[:=]\s*(?:bot|bearer)\s+)[^\s,;\"']+"),
    re.compile(r"(?i)((?:token|secret|password)\s*[:=]\s*)[^\s,;\"']+"),
)
_NUMERIC_FIELDS = ("duration_ms", "status_code", "retry")
_TEXT_FIELDS = ("external_service", "op", "error_type")
_NOISY_LOGGERS = ("httpx", "httpcore", "kombu", "celery.redirected")


def redact_text(value: str | None, mode: str, secrets: Iterable[str] = ()) -> str | None:
    """脱敏 bot token 与凭据字段；mode 为 off 时原样返回。"""
    if value is None:
        return None
    text = str(value)
    if mode.lower() == "off":
        return text
    for secret in secrets:
        if secret:
            text = text.replace(secret, _MASK)
    text = _BOT_TOKEN_SHAPE.sub(_MASK, text)
    for pattern in _CREDENTIAL_PATTERNS:
        text = pattern.sub(rf"\1{_MASK}", text)
    return text


def render_payload_preview(
    payload: Any,
    *,
    max_chars: int,
    redaction_mode: str,
    secrets: Iterable[str] = (),
) -> str | None:
    if payload is None:
        return None
    serialized = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False, default=str)
    redacted = redact_text(serialized, redaction_mode, secrets) or ""
    if len(redacted) <= max_chars:
        return redacted
    return f"{redacted[:max_chars]}...(truncated)"


class DebugRoutingFilter(logging.Filter):
    """按最低级别过滤；DEBUG 仅对指定模块或指定 job/task/thread 放行。"""

    def __init__(self, *, min_level: int, debug_modules: set[str], debug_ids: set[str]) -> None:
        super().__init__()
        self._min_level = min_level
        self._debug_modules = debug_modules
        self._debug_ids = debug_ids

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self._min_level:
            return True
        if record.levelno != logging.DEBUG:
            return False
        if any(record.name == item or record.name.startswith(f"{item}.") for item in self._debug_modules):
            return True
        if not self._debug_ids:
            return False
        ctx = get_log_context()
        ids = {getattr(record, key, None) or ctx.get(key) for key in ("job_id", "task_id", "thread_id")}
        return bool(ids & self._debug_ids)


class ContextInjectionFilter(logging.Filter):
    """入队前把 contextvars 固化到 record 上，监听线程中读取不到调用方上下文。"""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_log_context()
        for key in LOG_CONTEXT_KEYS:
            if getattr(record, key, None) is None:
                setattr(record, key, ctx.get(key))
        return True


class StructuredJsonFormatter(logging.Formatter):
    """单行 JSON 输出，字段集合固定，缺省值写 null。"""

    def __init__(
        self,
        *,
        process_role: str,
        redaction_mode: str,
        payload_preview_chars: int,
        secrets: Iterable[str] = (),
    ) -> None:
        super().__init__()
        self._process_role = process_role
        self._redaction_mode = redaction_mode
        self._payload_preview_chars = payload_preview_chars
        self._secrets = tuple(item for item in secrets if item)

    def _redact(self, value: Any) -> str | None:
        return redact_text(None if value is None else str(value), self._redaction_mode, self._secrets)

    def format(self, record: logging.LogRecord) -> str:
        error = getattr(record, "error", None)
        if error is None and record.exc_info:
            error = self.formatException(record.exc_info)

        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "process_role": self._process_role,
            "module": record.name,
            "event": getattr(record, "event", None),
        }
        entry.update({key: getattr(record, key, None) for key in LOG_CONTEXT_KEYS})
        entry.update({key: getattr(record, key, None) for key in _TEXT_FIELDS})
        for key in _NUMERIC_FIELDS:
            value = getattr(record, key, None)
            entry[key] = value if isinstance(value, (int, float)) and not isinstance(value, bool) else None
        entry["message"] = self._redact(record.getMessage())
        entry["error"] = self._redact(error)
        entry["payload_preview"] = render_payload_preview(
            getattr(record, "payload_preview", None),
            max_chars=self._payload_preview_chars,
            redaction_mode=self._redaction_mode,
            secrets=self._secrets,
        )
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(settings: Settings, *, process_role: str) -> Path:
    """接管 root logger：记录经队列写入 ``<log_dir>/<role>/tether.jsonl``，ERROR 同时输出到 stderr。"""
    global _listener, _queue_handler
    shutdown_logging()

    log_file = settings.log_dir.resolve() / process_role / "tether.jsonl"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = StructuredJsonFormatter(
        process_role=process_role,
        redaction_mode=settings.log_redaction_mode,
        payload_preview_chars=settings.log_payload_preview_chars,
        secrets=[settings.discord_bot_token or ""],
    )
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    queue_obj: SimpleQueue[logging.LogRecord] = SimpleQueue()
    _queue_handler = QueueHandler(queue_obj)
    _queue_handler.addFilter(ContextInjectionFilter())
    _queue_handler.addFilter(
        DebugRoutingFilter(
            min_level=getattr(logging, settings.log_level.upper(), logging.INFO),
            debug_modules=set(settings.log_debug_modules_list()),
            debug_ids=set(settings.log_debug_job_ids_list()),
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [_queue_handler]
    root_logger.setLevel(logging.DEBUG)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _listener = QueueListener(queue_obj, file_handler, stderr_handler, respect_handler_level=True)
    _listener.start()
    return log_file


def shutdown_logging() -> None:
    """停止监听线程、刷新并关闭文件句柄。"""
    global _listener, _queue_handler
    if _queue_handler is not None:
        logging.getLogger().removeHandler(_queue_handler)
        _queue_handler = None
    if _listener is None:
        return
    _listener.stop()
    for handler in _listener.handlers:
        with suppress(OSError):
            handler.close()
    _listener = None
