"""Triviaboard: live trivia leaderboard core."""

__version__ = "1.0.0"
