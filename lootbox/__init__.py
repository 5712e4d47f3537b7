"""Lootbox - Randomized reward resolution and fair-play core."""

__version__ = "1.0.0"
