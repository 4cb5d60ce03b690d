"""
Base domain validation helpers for Triviaboard.

Purpose
-------
Provide the validation vocabulary shared by the domain value objects.
Value objects are frozen dataclasses that validate themselves in
``__post_init__`` and raise `DomainValidationError` on violation, so an
invalid instance can never exist.

Non-Responsibilities
--------------------
- Persistence (handled by the feed adapters)
- Deciding what to do with invalid input (the leaderboard service drops it)
"""

from __future__ import annotations

from typing import Any, Optional


class DomainValidationError(Exception):
    """
    Exception raised when domain model validation fails.

    This is the base exception for all business rule violations
    in domain models.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        """
        Initialize validation error.

        Parameters
        ----------
        message : str
            Human-readable error message
        field : Optional[str]
            Field name that failed validation (if applicable)
        """
        super().__init__(message)
        self.field = field


def validate_non_negative(value: int, field_name: str) -> None:
    if value < 0:
        raise DomainValidationError(
            f"{field_name} must be non-negative, got {value}",
            field=field_name,
        )


def validate_not_empty(value: str, field_name: str) -> None:
    """Reject empty and whitespace-only strings."""
    if not value or not value.strip():
        raise DomainValidationError(
            f"{field_name} cannot be empty",
            field=field_name,
        )


def validate_type(value: Any, expected: type, field_name: str) -> None:
    """
    Validate the runtime type of a value.

    ``bool`` is rejected where ``int`` is expected, since it is a subclass
    of ``int`` but never a meaningful score.

    Raises
    ------
    DomainValidationError
        If value is not an instance of `expected`
    """
    if isinstance(value, bool) and expected is not bool:
        raise DomainValidationError(
            f"{field_name} must be {expected.__name__}, got bool",
            field=field_name,
        )
    if not isinstance(value, expected):
        raise DomainValidationError(
            f"{field_name} must be {expected.__name__}, got {type(value).__name__}",
            field=field_name,
        )
