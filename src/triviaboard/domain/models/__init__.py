"""
Domain models package for Triviaboard.

Design Notes
------------
Domain models are separate from database models:
- Database models (triviaboard/database/models/): SQLAlchemy schemas
- Domain models (triviaboard/domain/models/): validated value objects

Feeds convert database rows to raw records; the leaderboard service turns
raw records into domain models.
"""

from .base import (
    DomainValidationError,
    validate_non_negative,
    validate_not_empty,
    validate_type,
)
from .score import LeaderboardSnapshot, RankedEntry, ScoreRecord

__all__ = [
    "DomainValidationError",
    "validate_non_negative",
    "validate_not_empty",
    "validate_type",
    "ScoreRecord",
    "RankedEntry",
    "LeaderboardSnapshot",
]
