"""
Score domain models: input records, ranked entries, and snapshots.

Purpose
-------
Immutable value objects that flow through the leaderboard:

    feed batch -> ScoreRecord -> ranking -> RankedEntry -> LeaderboardSnapshot

Design Notes
------------
- `ScoreRecord` validates itself; a record that fails validation cannot be
  constructed, which is how malformed feed records are filtered out.
- `RankedEntry` flattens every ScoreRecord field and adds `rank`, so
  presentation layers never need to look at the input record.
- `LeaderboardSnapshot` is an ordered, read-only sequence of entries. It is
  never mutated after construction; a new ingest builds a new snapshot.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Tuple, Union, overload

from triviaboard.domain.models.base import (
    DomainValidationError,
    validate_non_negative,
    validate_not_empty,
    validate_type,
)


@dataclass(frozen=True)
class ScoreRecord:
    """
    Latest known score state for one user, as delivered by the feed.

    Attributes
    ----------
    user_id : str
        Opaque unique identifier, stable across updates.
    display_name : str
        Name shown on the board; may change between batches.
    location : str
        Free-text location label (city).
    score : int
        Accumulated score, non-negative.
    achieved_at : Optional[datetime]
        When `score` was last set. None means unknown.
    """

    user_id: str
    display_name: str
    location: str
    score: int
    achieved_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate record on creation."""
        validate_type(self.user_id, str, "user_id")
        validate_not_empty(self.user_id, "user_id")
        validate_type(self.display_name, str, "display_name")
        validate_type(self.location, str, "location")
        validate_type(self.score, int, "score")
        validate_non_negative(self.score, "score")
        if self.achieved_at is not None and not isinstance(self.achieved_at, datetime):
            raise DomainValidationError(
                f"achieved_at must be datetime or None, got {type(self.achieved_at).__name__}",
                field="achieved_at",
            )


@dataclass(frozen=True)
class RankedEntry:
    """One row of a leaderboard snapshot."""

    user_id: str
    display_name: str
    location: str
    score: int
    achieved_at: Optional[datetime]
    rank: int

    @classmethod
    def from_record(cls, record: ScoreRecord, rank: int) -> RankedEntry:
        if rank < 1:
            raise DomainValidationError(f"rank must be >= 1, got {rank}", field="rank")
        return cls(
            user_id=record.user_id,
            display_name=record.display_name,
            location=record.location,
            score=record.score,
            achieved_at=record.achieved_at,
            rank=rank,
        )


@dataclass(frozen=True)
class LeaderboardSnapshot(Sequence):
    """
    Complete, immutable ranked view of the board at one point in time.

    Behaves as a read-only sequence of `RankedEntry` ordered by rank.

    Attributes
    ----------
    entries : Tuple[RankedEntry, ...]
        Ranked entries; ``entries[i].rank == i + 1``.
    version : int
        Sequence number within the owning service (0 = never ingested).
    computed_at : datetime
        UTC time the snapshot was computed.
    dropped : int
        Input records rejected while computing this snapshot.
    """

    entries: Tuple[RankedEntry, ...] = ()
    version: int = 0
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    dropped: int = 0
    _by_user: Dict[str, RankedEntry] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self) -> None:
        entries = tuple(self.entries)
        object.__setattr__(self, "entries", entries)

        by_user: Dict[str, RankedEntry] = {}
        for position, entry in enumerate(entries, start=1):
            if entry.rank != position:
                raise DomainValidationError(
                    f"entry {entry.user_id!r} has rank {entry.rank}, expected {position}",
                    field="rank",
                )
            if entry.user_id in by_user:
                raise DomainValidationError(
                    f"duplicate user_id {entry.user_id!r} in snapshot",
                    field="user_id",
                )
            by_user[entry.user_id] = entry
        object.__setattr__(self, "_by_user", by_user)

    @classmethod
    def empty(cls) -> LeaderboardSnapshot:
        return cls()

    @overload
    def __getitem__(self, index: int) -> RankedEntry: ...

    @overload
    def __getitem__(self, index: slice) -> Tuple[RankedEntry, ...]: ...

    def __getitem__(self, index: Union[int, slice]) -> Union[RankedEntry, Tuple[RankedEntry, ...]]:
        return self.entries[index]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[RankedEntry]:
        return iter(self.entries)

    def entry_for(self, user_id: str) -> Optional[RankedEntry]:
        """Entry for `user_id`, or None if the user is not on the board."""
        return self._by_user.get(user_id)

    def top(self, count: int) -> Tuple[RankedEntry, ...]:
        return self.entries[: max(0, count)]
