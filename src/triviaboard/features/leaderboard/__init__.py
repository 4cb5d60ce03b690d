"""
Leaderboard feature: ranking, the snapshot-publishing service, and the
feeds that supply it with score batches.
"""

from triviaboard.features.leaderboard.feed import InMemoryScoreFeed, ScoreFeed
from triviaboard.features.leaderboard.ranking import (
    FieldMap,
    RecordParser,
    rank_records,
    records_from_children,
)
from triviaboard.features.leaderboard.service import LeaderboardService
from triviaboard.features.leaderboard.sql_feed import SqlScoreFeed

__all__ = [
    "LeaderboardService",
    "ScoreFeed",
    "InMemoryScoreFeed",
    "SqlScoreFeed",
    "FieldMap",
    "RecordParser",
    "rank_records",
    "records_from_children",
]
