"""
Structured logging for the progression engine.

Every record produced by the engine passes through one root
`QueueHandler`; a background `QueueListener` thread does the actual
formatting and I/O so coroutines holding a row lock never block on a
slow stdout or disk.

Records are enriched from a ContextVar-backed operation context
(`LogContext` / `set_log_context`) with the acting `user_id`, the
`challenge_id` under work, the `operation` name and a short
`correlation_id` shared by everything one unit of work logs.

Output
------
- JSON lines when LOG_JSON is set (default in production).
- Plain or colored text otherwise.
- An optional midnight-rotated JSON file under LOGS_DIR (LOG_TO_FILE).

The queue is bounded. When it is full the record is dropped and counted;
`get_logging_health()` reports those counters.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from questline.core.config.config import Config

_INITIALIZED_FLAG = "_questline_logging_initialized"

_CONTEXT_FIELDS = ("user_id", "challenge_id", "operation", "correlation_id", "component")

_operation_context: ContextVar[Dict[str, Any]] = ContextVar("questline_log_context", default={})


@dataclass(frozen=True, slots=True)
class LoggerConfig:
    """Resolved logging settings, read lazily from `Config`."""

    TEXT_FORMAT: str = "%(asctime)s %(levelname)-8s [%(component)s] %(message)s"
    DATE_FORMAT: str = "%H:%M:%S"
    FILE_NAME: str = "questline.jsonl"
    FILE_BACKUPS: int = 3
    QUEUE_CAPACITY: int = 10_000

    @property
    def environment(self) -> str:
        return str(Config.ENVIRONMENT).lower()

    @property
    def level(self) -> int:
        level = logging.getLevelName(str(Config.LOG_LEVEL or "INFO").upper())
        return level if isinstance(level, int) else logging.INFO

    @property
    def use_json(self) -> bool:
        if Config.LOG_JSON is None:
            return self.environment == "production"
        return bool(Config.LOG_JSON)

    @property
    def use_colors(self) -> bool:
        return not self.use_json and bool(Config.LOG_COLORS) and sys.stdout.isatty()

    @property
    def file_path(self) -> Optional[Path]:
        if not Config.LOG_TO_FILE:
            return None
        return Path(Config.LOGS_DIR).resolve() / self.FILE_NAME


LOGGER_CONFIG = LoggerConfig()


@dataclass(frozen=True, slots=True)
class LoggingHealth:
    initialized: bool
    queue_size: int
    queue_capacity: int
    enqueued: int
    dropped: int


class _Counters:
    enqueued = 0
    dropped = 0

    @classmethod
    def reset(cls) -> None:
        cls.enqueued = cls.dropped = 0


# ============================================================================
# Filters and formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the current operation context onto the record.

    Runs on the producing task; the listener thread has no context.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _operation_context.get()
        for field in _CONTEXT_FIELDS:
            # values passed through extra= are left alone
            if getattr(record, field, None) is None:
                setattr(record, field, context.get(field))
        if record.component is None:
            record.component = record.name.rsplit(".", 1)[-1]
        return True


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[36m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        return f"{color}{line}{self.RESET}" if color else line


class JSONFormatter(logging.Formatter):
    """One JSON object per record; unknown attributes land under `extra`."""

    _RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
        "message",
        "asctime",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._RESERVED and key not in _CONTEXT_FIELDS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


# ============================================================================
# Queue plumbing
# ============================================================================


class BoundedQueueHandler(QueueHandler):
    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _Counters.dropped += 1
            return
        _Counters.enqueued += 1


_listener: Optional[QueueListener] = None
_queue: Optional["queue.Queue[logging.LogRecord]"] = None


def _text_formatter() -> logging.Formatter:
    cls = ColoredFormatter if LOGGER_CONFIG.use_colors else logging.Formatter
    return cls(fmt=LOGGER_CONFIG.TEXT_FORMAT, datefmt=LOGGER_CONFIG.DATE_FORMAT)


def _build_handlers() -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(JSONFormatter() if LOGGER_CONFIG.use_json else _text_formatter())
    handlers: List[logging.Handler] = [console]

    path = LOGGER_CONFIG.file_path
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        rotating = TimedRotatingFileHandler(
            path,
            when="midnight",
            backupCount=LOGGER_CONFIG.FILE_BACKUPS,
            encoding="utf-8",
            utc=True,
        )
        rotating.setFormatter(JSONFormatter())
        handlers.append(rotating)

    for handler in handlers:
        handler.setLevel(LOGGER_CONFIG.level)
    return handlers


def setup_logging() -> None:
    """Install the queue handler on the root logger. Safe to call twice."""
    global _listener, _queue

    root = logging.getLogger()
    if getattr(root, _INITIALIZED_FLAG, False):
        return

    _Counters.reset()
    root.handlers.clear()
    root.setLevel(LOGGER_CONFIG.level)

    _queue = queue.Queue(LOGGER_CONFIG.QUEUE_CAPACITY)
    _listener = QueueListener(_queue, *_build_handlers(), respect_handler_level=True)
    _listener.start()

    producer = BoundedQueueHandler(_queue)
    producer.addFilter(ContextFilter())
    root.addHandler(producer)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if Config.DATABASE_ECHO else logging.WARNING
    )
    for noisy in ("asyncio", "aiosqlite", "aiohttp.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    setattr(root, _INITIALIZED_FLAG, True)
    logging.getLogger(__name__).debug(
        "Logging ready",
        extra={"environment": LOGGER_CONFIG.environment, "json": LOGGER_CONFIG.use_json},
    )


def shutdown_logging() -> None:
    """Drain the queue and detach every root handler."""
    global _listener, _queue

    root = logging.getLogger()
    if not getattr(root, _INITIALIZED_FLAG, False):
        return

    if _listener is not None:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
        _listener = None

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    _queue = None
    setattr(root, _INITIALIZED_FLAG, False)


def get_logging_health() -> LoggingHealth:
    return LoggingHealth(
        initialized=bool(getattr(logging.getLogger(), _INITIALIZED_FLAG, False)),
        queue_size=_queue.qsize() if _queue is not None else 0,
        queue_capacity=_queue.maxsize if _queue is not None else 0,
        enqueued=_Counters.enqueued,
        dropped=_Counters.dropped,
    )


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


# ============================================================================
# Operation context
# ============================================================================


def _merged_context(base: Dict[str, Any], **values: Any) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in values.items():
        if value is None:
            continue
        merged[key] = str(value) if key in ("user_id", "challenge_id") else value
    return merged


class LogContext:
    """
    Scope operation fields to a block; nested blocks inherit and override.

        async with LogContext(user_id=42, operation="complete_habit"):
            logger.info("Completing habit")

    A correlation id is generated for the outermost block and reused by
    nested ones unless one is passed explicitly.
    """

    def __init__(
        self,
        user_id: Optional[int] = None,
        challenge_id: Optional[int] = None,
        operation: Optional[str] = None,
        component: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        parent = _operation_context.get()
        self.context = _merged_context(
            parent,
            user_id=user_id,
            challenge_id=challenge_id,
            operation=operation,
            component=component,
            correlation_id=correlation_id or parent.get("correlation_id") or uuid.uuid4().hex[:8],
            **extra,
        )
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _operation_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _operation_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def set_log_context(
    user_id: Optional[int] = None,
    challenge_id: Optional[int] = None,
    operation: Optional[str] = None,
    component: Optional[str] = None,
    correlation_id: Optional[str] = None,
    **extra: Any,
) -> None:
    """Merge fields into the current context without a scope."""
    _operation_context.set(
        _merged_context(
            _operation_context.get(),
            user_id=user_id,
            challenge_id=challenge_id,
            operation=operation,
            component=component,
            correlation_id=correlation_id,
            **extra,
        )
    )


def get_log_context() -> Dict[str, Any]:
    return dict(_operation_context.get())


def clear_log_context() -> None:
    _operation_context.set({})


setup_logging()
