"""
Integration Tests for SqlScoreFeed and DatabaseService
======================================================

Purpose
-------
Exercise the polling feed and the database service against a real SQLite
database (in memory, via aiosqlite).

Test Coverage
-------------
- Top-N query ordering and field mapping
- Change detection between polls
- End-to-end: table rows -> feed -> LeaderboardService snapshot
- Failure handling (FeedError, polling loop survives)
- DatabaseService lifecycle, transactions, and health check
"""

import asyncio

import pytest
from sqlalchemy import delete, update
from sqlalchemy.exc import OperationalError

from triviaboard.core.database.service import (
    DatabaseNotInitializedError,
    DatabaseService,
)
from triviaboard.core.exceptions import FeedError
from triviaboard.database.models import UserScore
from triviaboard.features.leaderboard.ranking import FieldMap
from triviaboard.features.leaderboard.sql_feed import SqlScoreFeed

from tests.helpers import T0, T1


async def _seed(session_factory, *rows: UserScore) -> None:
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()


def _row(user_id, score, achieved_at=None, name=None, city="Lima") -> UserScore:
    return UserScore(
        id=user_id,
        fullname=name or user_id.title(),
        ciudad=city,
        accumulated_score=score,
        score_achieved_at=achieved_at,
    )


# ============================================================================
# POLLING
# ============================================================================


@pytest.mark.integration
class TestSqlScoreFeedPolling:
    """Test poll_once against a real table."""

    @pytest.mark.asyncio
    async def test_first_poll_delivers_empty_table(self, session_factory):
        # Arrange
        feed = SqlScoreFeed(session_factory)
        batches = []
        feed.bind(batches.append)

        # Act
        delivered = await feed.poll_once()

        # Assert
        assert delivered is True
        assert batches == [[]]

    @pytest.mark.asyncio
    async def test_rows_mapped_to_raw_records(self, session_factory):
        await _seed(session_factory, _row("u1", 90, T0.timestamp(), name="Ana", city="Quito"))
        feed = SqlScoreFeed(session_factory)

        batch = await feed.fetch_batch()

        assert batch == [
            {
                "id": "u1",
                "fullname": "Ana",
                "ciudad": "Quito",
                "accumulatedPuntuacion": 90,
                "scoreAchievedAt": T0.timestamp(),
            }
        ]

    @pytest.mark.asyncio
    async def test_top_n_ordered_by_score_then_id(self, session_factory):
        # Arrange
        await _seed(
            session_factory,
            _row("c", 10),
            _row("b", 50),
            _row("a", 50),
            _row("d", 5),
        )
        feed = SqlScoreFeed(session_factory, limit=3)

        # Act
        batch = await feed.fetch_batch()

        # Assert
        assert [record["id"] for record in batch] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_unchanged_table_not_redelivered(self, session_factory):
        await _seed(session_factory, _row("u1", 10))
        feed = SqlScoreFeed(session_factory)
        batches = []
        feed.bind(batches.append)

        assert await feed.poll_once() is True
        assert await feed.poll_once() is False
        assert len(batches) == 1

    @pytest.mark.asyncio
    async def test_change_redelivered(self, session_factory):
        # Arrange
        await _seed(session_factory, _row("u1", 10), _row("u2", 20))
        feed = SqlScoreFeed(session_factory)
        batches = []
        feed.bind(batches.append)
        await feed.poll_once()

        # Act
        async with session_factory() as session:
            await session.execute(
                update(UserScore).where(UserScore.id == "u1").values(accumulated_score=30)
            )
            await session.commit()
        delivered = await feed.poll_once()

        # Assert
        assert delivered is True
        assert [record["id"] for record in batches[-1]] == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_custom_field_names(self, session_factory):
        await _seed(session_factory, _row("u1", 10))
        feed = SqlScoreFeed(session_factory, fields=FieldMap(score="points"))

        batch = await feed.fetch_batch()

        assert batch[0]["points"] == 10

    @pytest.mark.asyncio
    async def test_from_config(self, session_factory, config_manager):
        config_manager.set("leaderboard.feed.limit", 7)
        config_manager.set("leaderboard.feed.poll_interval_seconds", 0.5)

        feed = SqlScoreFeed.from_config(session_factory, config_manager)

        assert feed.limit == 7
        assert feed.poll_interval_seconds == 0.5

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            SqlScoreFeed(lambda: None, limit=-1)
        with pytest.raises(ValueError):
            SqlScoreFeed(lambda: None, poll_interval_seconds=0)


# ============================================================================
# END TO END
# ============================================================================


@pytest.mark.integration
class TestSqlFeedWithService:
    """Test table rows flowing into leaderboard snapshots."""

    @pytest.mark.asyncio
    async def test_rows_ranked_by_service(self, session_factory, service, recorder):
        # Arrange
        await _seed(
            session_factory,
            _row("alice", 90, T1.timestamp()),
            _row("bob", 90, T0.timestamp()),
            _row("carol", 95),
        )
        feed = SqlScoreFeed(session_factory)
        service.subscribe(recorder)
        service.attach(feed)

        # Act
        await feed.poll_once()

        # Assert
        snapshot = service.current_snapshot()
        assert [(e.user_id, e.rank) for e in snapshot] == [
            ("carol", 1),
            ("alice", 2),
            ("bob", 3),
        ]
        assert snapshot.entry_for("alice").achieved_at == T1
        assert recorder.versions == [1]

    @pytest.mark.asyncio
    async def test_score_update_produces_one_notification(
        self, session_factory, service, recorder
    ):
        # Arrange
        await _seed(
            session_factory,
            _row("alice", 90, T1.timestamp()),
            _row("bob", 90, T0.timestamp()),
            _row("carol", 95),
        )
        feed = SqlScoreFeed(session_factory)
        service.attach(feed)
        await feed.poll_once()
        service.subscribe(recorder)

        # Act
        async with session_factory() as session:
            await session.execute(
                update(UserScore).where(UserScore.id == "bob").values(accumulated_score=96)
            )
            await session.commit()
        await feed.poll_once()
        await feed.poll_once()

        # Assert
        assert len(recorder) == 1
        assert recorder.last[0].user_id == "bob"

    @pytest.mark.asyncio
    async def test_removed_rows_leave_board(self, session_factory, service):
        await _seed(session_factory, _row("u1", 10), _row("u2", 20))
        feed = SqlScoreFeed(session_factory)
        service.attach(feed)
        await feed.poll_once()

        async with session_factory() as session:
            await session.execute(delete(UserScore).where(UserScore.id == "u2"))
            await session.commit()
        await feed.poll_once()

        assert [entry.user_id for entry in service.current_snapshot()] == ["u1"]


# ============================================================================
# FAILURES & LOOP
# ============================================================================


class _FailingSession:
    async def __aenter__(self):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.mark.integration
class TestSqlFeedFailures:
    """Test failure handling and the polling loop."""

    @pytest.mark.asyncio
    async def test_query_failure_raises_feed_error(self):
        feed = SqlScoreFeed(_FailingSession)

        with pytest.raises(FeedError) as exc_info:
            await feed.poll_once()

        assert exc_info.value.is_retryable
        assert isinstance(exc_info.value.original_error, OperationalError)

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self, caplog):
        # Arrange
        feed = SqlScoreFeed(_FailingSession, poll_interval_seconds=0.01)

        # Act
        await feed.start()
        await asyncio.sleep(0.1)
        stats = feed.get_stats()
        await feed.stop()

        # Assert
        assert stats["running"] is True
        assert stats["failures"] >= 2
        assert feed.running is False
        assert "SQL feed poll failed" in caplog.text

    @pytest.mark.asyncio
    async def test_loop_delivers_initial_batch(self, session_factory):
        # Arrange
        await _seed(session_factory, _row("u1", 10))
        feed = SqlScoreFeed(session_factory, poll_interval_seconds=0.01)
        batches = []
        feed.bind(batches.append)

        # Act
        await feed.start()
        await feed.start()
        for _ in range(100):
            if batches:
                break
            await asyncio.sleep(0.01)
        await feed.stop()

        # Assert
        assert len(batches) == 1
        assert [record["id"] for record in batches[0]] == ["u1"]
        assert feed.get_stats()["polls"] >= 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self, session_factory):
        feed = SqlScoreFeed(session_factory)

        await feed.stop()

        assert feed.running is False


# ============================================================================
# DATABASE SERVICE
# ============================================================================


@pytest.mark.integration
class TestDatabaseService:
    """Test DatabaseService lifecycle against in-memory SQLite."""

    @pytest.mark.asyncio
    async def test_lifecycle_and_feed(self):
        # Arrange
        await DatabaseService.initialize("sqlite+aiosqlite:///:memory:")
        try:
            await DatabaseService.create_all()

            # Act
            async with DatabaseService.get_transaction() as session:
                session.add(_row("u1", 42))
            feed = SqlScoreFeed(DatabaseService.get_session)
            batch = await feed.fetch_batch()
            healthy = await DatabaseService.health_check()
        finally:
            await DatabaseService.shutdown()

        # Assert
        assert [record["id"] for record in batch] == ["u1"]
        assert healthy is True
        assert DatabaseService.is_initialized() is False

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self):
        await DatabaseService.initialize("sqlite+aiosqlite:///:memory:")
        try:
            await DatabaseService.create_all()

            with pytest.raises(RuntimeError):
                async with DatabaseService.get_transaction() as session:
                    session.add(_row("u1", 42))
                    await session.flush()
                    raise RuntimeError("abort")

            async with DatabaseService.get_session() as session:
                rows = (await session.execute(UserScore.__table__.select())).all()
        finally:
            await DatabaseService.shutdown()

        assert rows == []

    @pytest.mark.asyncio
    async def test_session_before_initialize_fails(self):
        with pytest.raises(DatabaseNotInitializedError):
            async with DatabaseService.get_session():
                pass

    @pytest.mark.asyncio
    async def test_health_check_uninitialized(self):
        assert await DatabaseService.health_check() is False
