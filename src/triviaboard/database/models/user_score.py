"""
UserScore: one row per player in the score table the SQL feed polls.
Schema only.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from triviaboard.core.database.base import Base


class UserScore(Base):
    """
    Latest accumulated score of a user.

    Column names follow the game client's records; `score_achieved_at` is
    epoch seconds and may be NULL for rows written before it existed.
    """

    __tablename__ = "user_scores"
    __table_args__ = (
        Index("ix_user_scores_ranking", "accumulated_score", "id"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    fullname: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    ciudad: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    accumulated_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score_achieved_at: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    def to_raw(self, fields: Any) -> dict[str, Any]:
        """Raw feed record keyed by the field names in `fields` (a FieldMap)."""
        return {
            fields.user_id: self.id,
            fields.display_name: self.fullname,
            fields.location: self.ciudad,
            fields.score: self.accumulated_score,
            fields.achieved_at: self.score_achieved_at,
        }

    def __repr__(self) -> str:
        return f"<UserScore id={self.id!r} score={self.accumulated_score}>"
