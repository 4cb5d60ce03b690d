"""Async database engine, sessions, and declarative base."""

from triviaboard.core.database.base import Base
from triviaboard.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
    build_engine,
)

__all__ = [
    "Base",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "build_engine",
]
