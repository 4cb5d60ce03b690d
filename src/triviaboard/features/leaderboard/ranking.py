"""
Ranking: raw feed records -> validated ScoreRecords -> ranked entries.

Ranking rules:
    1. Score descending.
    2. For equal scores, the more recent `achieved_at` ranks first. A record
       with no `achieved_at` counts as the earliest possible time.
    3. Exact ties (same score and same or missing time) keep input order.
    4. Ranks are dense 1-based positions: the first entry is rank 1 and the
       last is rank N, ties included.

Raw record parsing is lenient: a mapping missing a required field, or with
a field of the wrong type, is dropped. An unparseable `achieved_at` only
clears the timestamp; the record itself is kept.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from triviaboard.core.config.manager import ConfigManager
from triviaboard.core.logging.logger import get_logger
from triviaboard.domain.models.base import DomainValidationError
from triviaboard.domain.models.score import RankedEntry, ScoreRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class FieldMap:
    """Raw feed key for each ScoreRecord field."""

    user_id: str = "id"
    display_name: str = "fullname"
    location: str = "ciudad"
    score: str = "accumulatedPuntuacion"
    achieved_at: str = "scoreAchievedAt"

    @classmethod
    def from_config(cls, config: ConfigManager) -> FieldMap:
        """Build from the ``leaderboard.fields`` config section."""
        section = config.section("leaderboard.fields")
        known = {name: str(section[name]) for name in cls.__dataclass_fields__ if name in section}
        return cls(**known)


def _coerce_score(value: Any) -> int:
    # bool is an int subclass; a flag is not a score
    if isinstance(value, bool):
        raise DomainValidationError("score must be a number, got bool", field="score")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise DomainValidationError(
        f"score must be an integer, got {value!r}", field="score"
    )


def _coerce_achieved_at(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        # float() overflows for ints beyond the double range
        seconds = float(value)
        if not math.isfinite(seconds):
            return None
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class RecordParser:
    """
    Turns raw feed mappings into ScoreRecords.

    Usage:
        >>> parser = RecordParser()
        >>> parser.parse({"id": "u1", "fullname": "Ana", "ciudad": "Lima",
        ...               "accumulatedPuntuacion": 90})
        ScoreRecord(user_id='u1', display_name='Ana', location='Lima', score=90, achieved_at=None)
    """

    def __init__(self, fields: Optional[FieldMap] = None) -> None:
        self.fields = fields or FieldMap()

    def parse(self, raw: Mapping[str, Any]) -> ScoreRecord:
        """
        Parse one raw record.

        Raises:
            DomainValidationError: if a required field is missing or invalid
        """
        fields = self.fields
        for name in ("user_id", "display_name", "location", "score"):
            key = getattr(fields, name)
            if key not in raw or raw[key] is None:
                raise DomainValidationError(f"missing field {key!r}", field=name)

        return ScoreRecord(
            user_id=raw[fields.user_id],
            display_name=raw[fields.display_name],
            location=raw[fields.location],
            score=_coerce_score(raw[fields.score]),
            achieved_at=_coerce_achieved_at(raw.get(fields.achieved_at)),
        )

    def coerce(self, item: Any) -> Optional[ScoreRecord]:
        """ScoreRecord for `item`, or None if it cannot be used."""
        if isinstance(item, ScoreRecord):
            return item
        if not isinstance(item, Mapping):
            logger.debug(
                "Dropping non-mapping feed record",
                extra={"record_type": type(item).__name__},
            )
            return None
        try:
            return self.parse(item)
        except DomainValidationError as exc:
            logger.debug(
                "Dropping malformed feed record",
                extra={"field": exc.field, "error": str(exc)},
            )
            return None


def records_from_children(
    children: Mapping[str, Any], *, id_key: str = "id"
) -> List[dict[str, Any]]:
    """
    Flatten a keyed batch ``{user_id: {fields...}}`` into raw records.

    The child key becomes the record's `id_key` value. Children that are not
    mappings are passed through as bare ``{id_key: key}`` records so they are
    counted as dropped downstream.
    """
    records: List[dict[str, Any]] = []
    for key, value in children.items():
        record = dict(value) if isinstance(value, Mapping) else {}
        record[id_key] = key
        records.append(record)
    return records


@dataclass
class PreparedBatch:
    """Validated, de-duplicated records of one ingest plus rejection counts."""

    records: List[ScoreRecord] = field(default_factory=list)
    malformed: int = 0
    duplicates: int = 0

    @property
    def dropped(self) -> int:
        return self.malformed + self.duplicates


def prepare_records(items: Iterable[Any], parser: RecordParser) -> PreparedBatch:
    """
    Validate a batch. The first occurrence of a user_id wins; later
    occurrences are dropped.
    """
    batch = PreparedBatch()
    seen: set[str] = set()

    for item in items:
        record = parser.coerce(item)
        if record is None:
            batch.malformed += 1
            continue
        if record.user_id in seen:
            batch.duplicates += 1
            logger.warning(
                "Duplicate user_id in feed batch; keeping first occurrence",
                extra={"user_id": record.user_id},
            )
            continue
        seen.add(record.user_id)
        batch.records.append(record)

    return batch


_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def recency_key(record: ScoreRecord) -> Tuple[bool, datetime]:
    """Secondary key: known times above unknown ones, then by aware `achieved_at`."""
    achieved_at = record.achieved_at
    if achieved_at is None:
        return (False, _EARLIEST)
    if achieved_at.tzinfo is None:
        achieved_at = achieved_at.replace(tzinfo=timezone.utc)
    return (True, achieved_at)


def rank_records(records: Iterable[ScoreRecord]) -> Tuple[RankedEntry, ...]:
    """Order records and assign ranks ``1..N``."""
    # Two stable passes: most recent first, then score descending.
    # reverse=True keeps equal keys in input order.
    ordered = sorted(records, key=recency_key, reverse=True)
    ordered.sort(key=lambda record: record.score, reverse=True)
    return tuple(
        RankedEntry.from_record(record, rank)
        for rank, record in enumerate(ordered, start=1)
    )
