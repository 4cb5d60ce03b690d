"""
Triviaboard console front end.

Follows the SQL score table and prints the ranked board every time it
changes. The selected user's row is marked with ``>``.

    python -m triviaboard --user-id u42
    python -m triviaboard --once --database-url sqlite+aiosqlite:///scores.db
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from triviaboard.core.config.config import Config, check_async_database_url
from triviaboard.core.config.manager import ConfigManager
from triviaboard.core.database.service import DatabaseInitializationError, DatabaseService
from triviaboard.core.exceptions import TriviaboardException
from triviaboard.core.logging.logger import get_logger, setup_logging, shutdown_logging
from triviaboard.domain.models.score import LeaderboardSnapshot
from triviaboard.features.leaderboard.service import LeaderboardService
from triviaboard.features.leaderboard.sql_feed import SqlScoreFeed
from triviaboard.features.leaderboard.table import format_table

logger = get_logger(__name__)


def _non_negative_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {value}")
    return value


def _database_url(text: str) -> str:
    try:
        return check_async_database_url(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="triviaboard",
        description="Show the live trivia leaderboard from the score table.",
    )
    parser.add_argument(
        "--database-url", type=_database_url, help="Override DATABASE_URL (async driver)"
    )
    parser.add_argument("--config-dir", help="Directory with YAML defaults")
    parser.add_argument(
        "--limit", type=_non_negative_int, help="Number of top scores to show"
    )
    parser.add_argument("--user-id", help="Mark this user's row")
    parser.add_argument(
        "--once", action="store_true", help="Print the board once and exit"
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create the score table if it does not exist",
    )
    return parser


class BoardPrinter:
    """Inline subscriber that prints each snapshot."""

    def __init__(self, selected_user_id: Optional[str], stream=None) -> None:
        self.selected_user_id = selected_user_id
        self.stream = stream or sys.stdout

    def __call__(self, snapshot: LeaderboardSnapshot) -> None:
        self.stream.write(f"\nLeaderboard (version {snapshot.version})\n")
        self.stream.write(
            format_table(snapshot, selected_user_id=self.selected_user_id) + "\n"
        )
        if self.selected_user_id is not None and snapshot.entry_for(self.selected_user_id) is None:
            self.stream.write(f"  {self.selected_user_id} is not on the board\n")
        self.stream.flush()


async def run(args: argparse.Namespace) -> int:
    config = ConfigManager.load(args.config_dir)
    if args.limit is not None:
        config.set("leaderboard.feed.limit", args.limit)

    await DatabaseService.initialize(args.database_url)
    service = LeaderboardService(config)
    feed = SqlScoreFeed.from_config(DatabaseService.get_session, config)

    try:
        if args.create_schema:
            await DatabaseService.create_all()

        service.subscribe(BoardPrinter(args.user_id), identifier="console")
        service.attach(feed)

        if args.once:
            await feed.poll_once()
            return 0

        await feed.start()
        # Runs until cancelled (Ctrl+C).
        await asyncio.Event().wait()
        return 0
    finally:
        await feed.stop()
        service.close()
        await DatabaseService.shutdown()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging()
    try:
        Config.validate()
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Leaderboard stopped via keyboard interrupt")
        return 0
    except TriviaboardException as exc:
        logger.critical(
            "Leaderboard failed", extra={"error_details": exc.to_dict()}, exc_info=True
        )
        return 1
    except DatabaseInitializationError as exc:
        logger.critical(f"Database unavailable: {exc}", exc_info=True)
        return 1
    finally:
        shutdown_logging()


if __name__ == "__main__":
    sys.exit(main())
