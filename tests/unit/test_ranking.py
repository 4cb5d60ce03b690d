"""
Unit Tests for Ranking and Record Parsing
=========================================

Test Coverage
-------------
- Raw record parsing (field map, score and timestamp coercion)
- Keyed batch flattening
- Batch preparation (malformed and duplicate records)
- Ordering rules and dense ranks
"""

import random
from datetime import datetime, timedelta, timezone

import pytest

from triviaboard.core.config.manager import ConfigManager
from triviaboard.domain.models.base import DomainValidationError
from triviaboard.domain.models.score import ScoreRecord
from triviaboard.features.leaderboard.ranking import (
    FieldMap,
    RecordParser,
    prepare_records,
    rank_records,
    recency_key,
    records_from_children,
)

from tests.helpers import T0, T1, make_raw


def _record(user_id: str, score: int, achieved_at=None) -> ScoreRecord:
    return ScoreRecord(
        user_id=user_id,
        display_name=user_id.title(),
        location="Lima",
        score=score,
        achieved_at=achieved_at,
    )


# ============================================================================
# FIELD MAP
# ============================================================================


@pytest.mark.unit
class TestFieldMap:
    """Test raw key mapping."""

    def test_defaults_match_original_keys(self):
        fields = FieldMap()

        assert fields.user_id == "id"
        assert fields.score == "accumulatedPuntuacion"
        assert fields.achieved_at == "scoreAchievedAt"

    def test_from_config_uses_overrides(self):
        # Arrange
        config = ConfigManager()
        config.set("leaderboard.fields.score", "points")

        # Act
        fields = FieldMap.from_config(config)

        # Assert
        assert fields.score == "points"
        assert fields.display_name == "fullname"


# ============================================================================
# RECORD PARSER
# ============================================================================


@pytest.mark.unit
class TestRecordParser:
    """Test lenient parsing of raw feed records."""

    def test_parse_valid_record(self):
        # Arrange
        parser = RecordParser()

        # Act
        record = parser.parse(make_raw("u1", 90, name="Ana", city="Quito"))

        # Assert
        assert record == ScoreRecord(
            user_id="u1", display_name="Ana", location="Quito", score=90
        )

    def test_epoch_seconds_become_utc_datetime(self):
        parser = RecordParser()

        record = parser.parse(make_raw("u1", 90, achieved_at=T0.timestamp()))

        assert record.achieved_at == T0
        assert record.achieved_at.tzinfo is not None

    def test_integer_epoch_accepted(self):
        record = RecordParser().parse(make_raw("u1", 90, achieved_at=int(T1.timestamp())))

        assert record.achieved_at == T1

    def test_naive_datetime_assumed_utc(self):
        naive = datetime(2024, 5, 1, 12, 0)

        record = RecordParser().parse(make_raw("u1", 90, achieved_at=naive))

        assert record.achieved_at == T0

    @pytest.mark.parametrize(
        "value", ["yesterday", True, float("nan"), float("inf"), 1e20, 10**400]
    )
    def test_unusable_timestamp_kept_as_unknown(self, value):
        """Test that a bad timestamp clears the field but keeps the record."""
        record = RecordParser().parse(make_raw("u1", 90, achieved_at=value))

        assert record.achieved_at is None
        assert record.score == 90

    def test_integral_float_score_accepted(self):
        record = RecordParser().parse(make_raw("u1", 90.0))

        assert record.score == 90
        assert isinstance(record.score, int)

    @pytest.mark.parametrize("score", [90.5, "90", None, True, -5])
    def test_invalid_score_rejected(self, score):
        with pytest.raises(DomainValidationError):
            RecordParser().parse(make_raw("u1", score))

    @pytest.mark.parametrize("key", ["id", "fullname", "ciudad", "accumulatedPuntuacion"])
    def test_missing_required_field_rejected(self, key):
        # Arrange
        raw = make_raw("u1", 90)
        del raw[key]

        # Act & Assert
        with pytest.raises(DomainValidationError):
            RecordParser().parse(raw)

    def test_custom_field_map(self):
        parser = RecordParser(FieldMap(user_id="uid", score="points"))

        record = parser.parse(
            {"uid": "u9", "fullname": "Zoe", "ciudad": "Cusco", "points": 7}
        )

        assert record.user_id == "u9"
        assert record.score == 7

    def test_coerce_passes_score_records_through(self):
        record = _record("u1", 10)

        assert RecordParser().coerce(record) is record

    def test_coerce_returns_none_for_garbage(self):
        parser = RecordParser()

        assert parser.coerce("not a record") is None
        assert parser.coerce({"id": "u1"}) is None


# ============================================================================
# KEYED BATCHES
# ============================================================================


@pytest.mark.unit
class TestRecordsFromChildren:
    """Test flattening of {user_id: fields} batches."""

    def test_child_key_becomes_id(self):
        # Arrange
        children = {
            "u1": {"fullname": "Ana", "ciudad": "Lima", "accumulatedPuntuacion": 5},
            "u2": {"fullname": "Bo", "ciudad": "Quito", "accumulatedPuntuacion": 7},
        }

        # Act
        records = records_from_children(children)

        # Assert
        assert [record["id"] for record in records] == ["u1", "u2"]
        assert records[1]["fullname"] == "Bo"

    def test_key_overrides_embedded_id(self):
        records = records_from_children({"u1": {"id": "spoofed"}})

        assert records[0]["id"] == "u1"

    def test_non_mapping_child_yields_bare_record(self):
        records = records_from_children({"u1": 42})

        assert records == [{"id": "u1"}]
        assert RecordParser().coerce(records[0]) is None

    def test_does_not_mutate_input(self):
        child = {"fullname": "Ana"}

        records_from_children({"u1": child})

        assert child == {"fullname": "Ana"}


# ============================================================================
# BATCH PREPARATION
# ============================================================================


@pytest.mark.unit
class TestPrepareRecords:
    """Test validation and de-duplication of a batch."""

    def test_malformed_records_counted(self):
        # Arrange
        broken = make_raw("u2", 50)
        del broken["fullname"]
        items = [make_raw("u1", 90), broken, "junk"]

        # Act
        batch = prepare_records(items, RecordParser())

        # Assert
        assert [record.user_id for record in batch.records] == ["u1"]
        assert batch.malformed == 2
        assert batch.dropped == 2

    def test_first_duplicate_wins(self):
        items = [make_raw("u1", 10), make_raw("u1", 99), make_raw("u2", 5)]

        batch = prepare_records(items, RecordParser())

        assert [(r.user_id, r.score) for r in batch.records] == [("u1", 10), ("u2", 5)]
        assert batch.duplicates == 1
        assert batch.dropped == 1

    def test_mixed_records_and_mappings(self):
        items = [_record("u1", 10), make_raw("u2", 20)]

        batch = prepare_records(items, RecordParser())

        assert len(batch.records) == 2
        assert batch.dropped == 0

    def test_empty_batch(self):
        batch = prepare_records([], RecordParser())

        assert batch.records == []
        assert batch.dropped == 0


# ============================================================================
# ORDERING & RANKS
# ============================================================================


@pytest.mark.unit
class TestRankRecords:
    """Test ordering rules and dense ranks."""

    def test_tie_scenario(self):
        """carol 95 (no time), alice 90 (newer), bob 90 (older)."""
        # Arrange
        records = [
            _record("alice", 90, T1),
            _record("bob", 90, T0),
            _record("carol", 95),
        ]

        # Act
        entries = rank_records(records)

        # Assert
        assert [(e.user_id, e.rank, e.score) for e in entries] == [
            ("carol", 1, 95),
            ("alice", 2, 90),
            ("bob", 3, 90),
        ]

    def test_missing_time_ranks_below_known_time(self):
        entries = rank_records([_record("a", 50), _record("b", 50, T0)])

        assert [e.user_id for e in entries] == ["b", "a"]

    def test_exact_ties_keep_input_order(self):
        records = [_record("x", 10), _record("y", 10), _record("z", 10)]

        entries = rank_records(records)

        assert [e.user_id for e in entries] == ["x", "y", "z"]
        assert [e.rank for e in entries] == [1, 2, 3]

    def test_same_score_and_time_keep_input_order(self):
        entries = rank_records([_record("y", 10, T0), _record("x", 10, T0)])

        assert [e.user_id for e in entries] == ["y", "x"]

    def test_naive_and_aware_times_compare(self):
        naive_later = datetime(2024, 5, 1, 12, 10)

        entries = rank_records([_record("aware", 10, T1), _record("naive", 10, naive_later)])

        assert [e.user_id for e in entries] == ["naive", "aware"]

    def test_empty_input(self):
        assert rank_records([]) == ()

    def test_recency_key_treats_missing_time_as_earliest(self):
        missing = recency_key(_record("a", 10))
        ancient = recency_key(_record("b", 10, datetime(1, 1, 2, tzinfo=timezone.utc)))

        assert missing < ancient

    def test_far_future_times_keep_microsecond_order(self):
        """Test that times one microsecond apart order correctly far from the epoch."""
        older = datetime(9000, 1, 1, tzinfo=timezone.utc)
        newer = older + timedelta(microseconds=1)

        entries = rank_records([_record("older", 10, older), _record("newer", 10, newer)])

        assert [e.user_id for e in entries] == ["newer", "older"]

    def test_ranks_dense_and_ordered_for_random_input(self):
        """Test rank and ordering properties over a random batch."""
        # Arrange
        rng = random.Random(1234)
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        records = [
            _record(
                f"user{i}",
                rng.randint(0, 20),
                base + timedelta(minutes=rng.randint(0, 30)) if rng.random() < 0.7 else None,
            )
            for i in range(200)
        ]

        # Act
        entries = rank_records(records)

        # Assert
        assert [e.rank for e in entries] == list(range(1, len(records) + 1))
        for higher, lower in zip(entries, entries[1:]):
            assert higher.score >= lower.score
            if higher.score == lower.score and lower.achieved_at is not None:
                assert higher.achieved_at is not None
                assert higher.achieved_at >= lower.achieved_at

    def test_order_independent_without_ties(self):
        """Test that shuffled input without ties ranks identically."""
        # Arrange
        records = [_record(f"u{i}", i * 3) for i in range(30)]
        shuffled = list(records)
        random.Random(7).shuffle(shuffled)

        # Act & Assert
        assert rank_records(records) == rank_records(shuffled)
