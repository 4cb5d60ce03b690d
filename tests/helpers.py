"""Test data builders shared across the suite."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from triviaboard.domain.models.score import LeaderboardSnapshot

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
T1 = datetime(2024, 5, 1, 12, 5, tzinfo=timezone.utc)


def make_raw(
    user_id: str,
    score: Any,
    achieved_at: Any = None,
    *,
    name: Optional[str] = None,
    city: str = "Lima",
) -> Dict[str, Any]:
    """Raw feed record using the default field names."""
    record: Dict[str, Any] = {
        "id": user_id,
        "fullname": name if name is not None else user_id.title(),
        "ciudad": city,
        "accumulatedPuntuacion": score,
    }
    if achieved_at is not None:
        record["scoreAchievedAt"] = achieved_at
    return record


class SnapshotRecorder:
    """Callable subscriber that keeps every snapshot it receives."""

    def __init__(self) -> None:
        self.snapshots: List[LeaderboardSnapshot] = []
        self._lock = threading.Lock()

    def __call__(self, snapshot: LeaderboardSnapshot) -> None:
        with self._lock:
            self.snapshots.append(snapshot)

    @property
    def versions(self) -> List[int]:
        with self._lock:
            return [snapshot.version for snapshot in self.snapshots]

    @property
    def last(self) -> LeaderboardSnapshot:
        with self._lock:
            return self.snapshots[-1]

    def __len__(self) -> int:
        with self._lock:
            return len(self.snapshots)
