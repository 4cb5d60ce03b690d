"""Plain-text rendering of a leaderboard snapshot."""

from __future__ import annotations

from typing import List, Optional

from triviaboard.domain.models.score import LeaderboardSnapshot

HEADER = ("POS", "NAME", "CITY", "SCORE")
SELECTED_MARKER = ">"


def _clip(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    return text[: max(0, width - 1)] + "…"


def format_table(
    snapshot: LeaderboardSnapshot,
    *,
    selected_user_id: Optional[str] = None,
    name_width: int = 24,
    city_width: int = 16,
) -> str:
    """
    Render `snapshot` as an aligned table, one row per entry.

    The row of `selected_user_id` is prefixed with ``>``. An empty snapshot
    renders the header and a "no scores yet" line.
    """
    row_format = f"{{marker}} {{pos:>4}}  {{name:<{name_width}}}  {{city:<{city_width}}}  {{score:>8}}"

    lines: List[str] = [
        row_format.format(
            marker=" ", pos=HEADER[0], name=HEADER[1], city=HEADER[2], score=HEADER[3]
        )
    ]
    for entry in snapshot:
        marker = SELECTED_MARKER if entry.user_id == selected_user_id else " "
        lines.append(
            row_format.format(
                marker=marker,
                pos=entry.rank,
                name=_clip(entry.display_name, name_width),
                city=_clip(entry.location, city_width),
                score=entry.score,
            )
        )
    if not snapshot:
        lines.append("  (no scores yet)")
    return "\n".join(line.rstrip() for line in lines)
