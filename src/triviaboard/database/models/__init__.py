"""
Database Models Package

Schema-only SQLAlchemy models. Every model inherits from
`triviaboard.core.database.base.Base` and uses ``Mapped[...]`` declarations.
"""

from triviaboard.core.database.base import Base

from .user_score import UserScore

__all__ = ["Base", "UserScore"]
