"""
Triviaboard Logging Infrastructure

Structured logging, log context helpers, and context propagation into
worker threads.
"""

from triviaboard.core.logging.logger import (
    LogContext,
    LoggingSettings,
    bind_log_context,
    clear_log_context,
    get_log_context,
    get_logger,
    get_logging_health,
    set_log_context,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "get_logger",
    "get_logging_health",
    "LogContext",
    "LoggingSettings",
    "bind_log_context",
    "set_log_context",
    "get_log_context",
    "clear_log_context",
]
