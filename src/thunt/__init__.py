"""Treasure hunt engine: clue progression, race-free ranking and rewards."""

__version__ = "0.1.0"
