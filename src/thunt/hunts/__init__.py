"""Treasure hunt core: participation state machine, ranking, rewards, leaderboard."""
