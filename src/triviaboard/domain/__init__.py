"""Domain layer: validated value objects for the leaderboard."""
