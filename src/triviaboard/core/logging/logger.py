"""
Triviaboard Logging Subsystem

Purpose
-------
One logging stack shared by the ingest path, the dispatch worker threads,
and the asyncio feed loop:

- Operation context (component, operation, board, feed, correlation id)
  carried in a ContextVar and stamped on every record.
- Console output: colored text in development, JSON lines in production.
- Optional JSON log file rotated at midnight, one day of history kept.
- Handlers run on a QueueListener thread, so a slow sink never stalls
  an ingest or a subscriber delivery.

Threads do not inherit ContextVars. Work handed to another thread goes
through ``bind_log_context`` so its records keep the caller's context
(a background delivery logs with the correlation id of the ingest that
produced the snapshot).

Public API
----------
- setup_logging() / shutdown_logging()
- get_logger(name)
- LogContext (sync and async context manager)
- set_log_context() / get_log_context() / clear_log_context()
- bind_log_context(fn)
- get_logging_health()
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import threading
import uuid
from contextvars import ContextVar, Token, copy_context
from dataclasses import dataclass
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from triviaboard.core.config.config import Config

T = TypeVar("T")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("triviaboard_log_context", default={})

_INITIALIZED_FLAG = "_triviaboard_logging_initialized"


# ============================================================================
# Settings
# ============================================================================


@dataclass(frozen=True, slots=True)
class LoggingSettings:
    """Resolved logging options. Built from Config at setup time."""

    level: int = logging.INFO
    json_console: bool = False
    colors: bool = False
    log_to_file: bool = False
    logs_dir: Path = Path("logs")
    file_name: str = "triviaboard.json.log"
    file_backups: int = 1
    queue_size: int = 10_000
    console_format: str = "%(asctime)s | %(levelname)-8s | %(threadName)-20s | %(name)s | %(message)s"
    date_format: str = "%H:%M:%S"

    @classmethod
    def from_config(cls) -> LoggingSettings:
        json_console = Config.is_production() if Config.LOG_JSON is None else Config.LOG_JSON
        level = logging.getLevelName(Config.LOG_LEVEL)
        return cls(
            level=level if isinstance(level, int) else logging.INFO,
            json_console=json_console,
            colors=not json_console and Config.LOG_COLORS and sys.stdout.isatty(),
            log_to_file=Config.LOG_TO_FILE,
            logs_dir=Path(Config.LOGS_DIR),
        )


# ============================================================================
# Health
# ============================================================================


class _QueueStats:
    """Counters updated from every logging thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.enqueued = 0
        self.dropped = 0
        self.handler_errors = 0

    def bump(self, field: str) -> None:
        with self._lock:
            setattr(self, field, getattr(self, field) + 1)


@dataclass(frozen=True, slots=True)
class LoggingHealth:
    initialized: bool
    queue_depth: int
    queue_capacity: int
    records_enqueued: int
    records_dropped: int
    handler_errors: int

    @property
    def healthy(self) -> bool:
        return self.initialized and self.handler_errors == 0


_stats = _QueueStats()
_log_queue: Optional["queue.Queue[logging.LogRecord]"] = None
_listener: Optional[QueueListener] = None


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the active log context onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _log_context.get()
        record.correlation_id = context.get("correlation_id") or "N/A"
        record.component = context.get("component") or record.name.split(".", 1)[0]
        record.operation = context.get("operation") or "N/A"
        for key, value in context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class ConsoleFormatter(logging.Formatter):
    """Human-readable line, level name colored when writing to a terminal."""

    LEVEL_COLORS: Dict[str, str] = {
        "DEBUG": "\033[90m",
        "INFO": "\033[36m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, datefmt: str, colors: bool = False) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelname) if self.colors else None
        if color:
            line = line.replace(record.levelname, f"{color}{record.levelname}{self.RESET}", 1)
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per record; unknown attributes land under ``extra``."""

    # Attributes every LogRecord carries; never repeated under "extra".
    RESERVED = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
        | {"message", "asctime", "taskName"}
    )
    CONTEXT_KEYS = ("correlation_id", "component", "operation")

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        for key in self.CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value not in (None, "N/A"):
                payload[key] = value

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in self.RESERVED
            and key not in self.CONTEXT_KEYS
            and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


# ============================================================================
# Queue plumbing
# ============================================================================


class _BoundedQueueHandler(QueueHandler):
    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _stats.bump("dropped")
            sys.stderr.write("triviaboard: log queue full, record dropped\n")
        else:
            _stats.bump("enqueued")


class _CountingHandlerMixin:
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _stats.bump("handler_errors")
        super().handleError(record)  # type: ignore[misc]


class _ConsoleHandler(_CountingHandlerMixin, logging.StreamHandler):
    pass


class _DailyFileHandler(_CountingHandlerMixin, TimedRotatingFileHandler):
    pass


def _build_handlers(settings: LoggingSettings) -> List[logging.Handler]:
    console = _ConsoleHandler(sys.stdout)
    if settings.json_console:
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(
            ConsoleFormatter(settings.console_format, settings.date_format, settings.colors)
        )
    handlers: List[logging.Handler] = [console]

    if settings.log_to_file:
        settings.logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = _DailyFileHandler(
            filename=str(settings.logs_dir / settings.file_name),
            when="midnight",
            backupCount=settings.file_backups,
            encoding="utf-8",
            utc=True,
        )
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(settings.level)
    return handlers


# ============================================================================
# Setup / Shutdown
# ============================================================================


def setup_logging(settings: Optional[LoggingSettings] = None) -> None:
    """Install the queue handler on the root logger. Idempotent."""
    global _log_queue, _listener, _stats

    root = logging.getLogger()
    if getattr(root, _INITIALIZED_FLAG, False):
        return

    settings = settings or LoggingSettings.from_config()
    _stats = _QueueStats()
    _log_queue = queue.Queue(settings.queue_size)

    _listener = QueueListener(_log_queue, *_build_handlers(settings), respect_handler_level=True)
    _listener.start()

    # The filter runs in the producing thread, where the context is visible.
    handler = _BoundedQueueHandler(_log_queue)
    handler.addFilter(ContextFilter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.level)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if Config.DATABASE_ECHO else logging.WARNING
    )
    for noisy in ("aiosqlite", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    setattr(root, _INITIALIZED_FLAG, True)
    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": Config.ENVIRONMENT,
            "log_level": logging.getLevelName(settings.level),
            "json_console": settings.json_console,
            "log_file": str(settings.logs_dir / settings.file_name)
            if settings.log_to_file
            else None,
        },
    )


def shutdown_logging() -> None:
    """Flush queued records, stop the listener, and detach handlers."""
    global _listener, _log_queue

    root = logging.getLogger()
    if not getattr(root, _INITIALIZED_FLAG, False):
        return

    logging.getLogger(__name__).info("Logging shutting down")
    if _listener is not None:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
        _listener = None

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    setattr(root, _INITIALIZED_FLAG, False)
    _log_queue = None


def get_logging_health() -> LoggingHealth:
    return LoggingHealth(
        initialized=bool(getattr(logging.getLogger(), _INITIALIZED_FLAG, False)),
        queue_depth=_log_queue.qsize() if _log_queue is not None else 0,
        queue_capacity=_log_queue.maxsize if _log_queue is not None else 0,
        records_enqueued=_stats.enqueued,
        records_dropped=_stats.dropped,
        handler_errors=_stats.handler_errors,
    )


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Scope log context to a block of work.

    Nested contexts inherit the outer keys. A correlation id is generated
    unless one is given or already active.

    Usage:
        >>> with LogContext(component="leaderboard", operation="ingest", board="global"):
        ...     logger.info("Snapshot published")
        >>> async with LogContext(component="feed", feed="sql"):
        ...     await feed.poll_once()
    """

    def __init__(
        self,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        outer = _log_context.get()
        self.context: Dict[str, Any] = {**outer, **extra}
        if component is not None:
            self.context["component"] = component
        if operation is not None:
            self.context["operation"] = operation
        self.context["correlation_id"] = (
            correlation_id or outer.get("correlation_id") or uuid.uuid4().hex[:8]
        )
        self._token: Optional[Token[Dict[str, Any]]] = None

    @property
    def correlation_id(self) -> str:
        return self.context["correlation_id"]

    def __enter__(self) -> LogContext:
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def set_log_context(**values: Any) -> None:
    """Merge keys into the current context without scoping them."""
    merged = dict(_log_context.get())
    merged.update({key: value for key, value in values.items() if value is not None})
    _log_context.set(merged)


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


def clear_log_context() -> None:
    _log_context.set({})


def bind_log_context(fn: Callable[..., T]) -> Callable[..., T]:
    """Wrap `fn` so it runs in a copy of the caller's context, on any thread."""
    context = copy_context()

    def run(*args: Any, **kwargs: Any) -> T:
        return context.run(fn, *args, **kwargs)

    return run
