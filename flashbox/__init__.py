"""Flashbox: Leitner spaced-repetition scheduling service."""

__version__ = "0.1.0"
