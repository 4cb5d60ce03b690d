"""
Infrastructure exceptions for Triviaboard.

Purpose
-------
Define the structured exception hierarchy for infrastructure-level concerns:
configuration errors, database and feed failures, and misuse of the
subscription API.

Design Notes
------------
- All infrastructure exceptions inherit from `TriviaboardException`.
- Each exception carries:
  - `message`: human-readable description
  - `details`: additional structured context (dict)
  - `severity`: `ErrorSeverity` value for logging/alerting
  - `is_retryable`: whether the operation can be retried
  - `error_code`: short, stable identifier for programmatic use
- Malformed score records are NOT exceptions at this layer: they are
  rejected by the domain layer (`DomainValidationError`) and dropped by the
  leaderboard service.
- `get_error_severity` gives plain exceptions a severity too, so logging
  code can treat every failure alike.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TriviaboardException(Exception):
    """
    Base exception for all Triviaboard infrastructure-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling

    Example:
        >>> raise TriviaboardException(
        ...     "Feed poll failed",
        ...     {"feed": "sql", "limit": 25}
        ... )
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"


class ConfigurationError(TriviaboardException):
    """
    Raised when a configuration key is invalid or missing.

    Args:
        config_key: The configuration key that has issues
        message: Description of the configuration problem
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL
    DEFAULT_RETRYABLE = False

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class DatabaseError(TriviaboardException):
    """
    Raised when database operations fail.

    Args:
        operation: Description of the database operation that failed
        original_error: The underlying database exception
    """

    DEFAULT_SEVERITY = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Database error during {operation}: {original_error}",
            details={
                "operation": operation,
                "error": str(original_error),
                "error_type": type(original_error).__name__,
            },
            error_code="DATABASE_ERROR",
        )


class FeedError(TriviaboardException):
    """
    Raised when a score feed cannot produce a batch.

    Feed failures are transient by nature: the next poll or push replaces
    the whole record set, so callers log and carry on.

    Args:
        feed_name: Name of the feed that failed
        message: Description of the failure
        original_error: Optional underlying exception
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(
        self,
        feed_name: str,
        message: str,
        original_error: Optional[Exception] = None,
    ) -> None:
        self.feed_name = feed_name
        self.original_error = original_error
        details: Dict[str, Any] = {"feed": feed_name}
        if original_error is not None:
            details["error"] = str(original_error)
            details["error_type"] = type(original_error).__name__
        super().__init__(
            f"Feed '{feed_name}' failed: {message}",
            details=details,
            error_code="FEED_ERROR",
        )


class SubscriptionError(TriviaboardException):
    """
    Raised when a snapshot subscription cannot be registered.

    Args:
        identifier: Subscription identifier (or callback name)
        reason: Why the subscription was rejected
    """

    DEFAULT_SEVERITY = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE = False

    def __init__(self, identifier: str, reason: str) -> None:
        self.identifier = identifier
        self.reason = reason
        super().__init__(
            f"Cannot subscribe '{identifier}': {reason}",
            details={"identifier": identifier, "reason": reason},
            error_code="SUBSCRIPTION_ERROR",
        )


class ReentrantIngestError(TriviaboardException):
    """
    Raised when ``ingest`` is called from inside an inline subscriber.

    An inline subscriber runs while the ingest lock is held; a nested
    ingest would publish a newer snapshot before older deliveries finish.

    Args:
        board: Name of the leaderboard service
    """

    DEFAULT_SEVERITY = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE = False

    def __init__(self, board: str) -> None:
        self.board = board
        super().__init__(
            f"Re-entrant ingest on leaderboard '{board}' from an inline subscriber",
            details={"board": board},
            error_code="REENTRANT_INGEST",
        )


# ============================================================================
# Helpers
# ============================================================================


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Severity for logging; unknown exceptions are treated as errors."""
    if isinstance(exc, TriviaboardException):
        return exc.severity
    return ErrorSeverity.ERROR
