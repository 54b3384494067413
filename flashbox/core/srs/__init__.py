"""Spaced repetition scheduling."""

from flashbox.core.srs.leitner import (
    MAX_BOX_LEVEL,
    MIN_BOX_LEVEL,
    RESET_BOX_LEVEL,
    IntervalTable,
    LeitnerScheduler,
    TrainingType,
    Transition,
    build_interval_tables,
)

__all__ = [
    "MAX_BOX_LEVEL",
    "MIN_BOX_LEVEL",
    "RESET_BOX_LEVEL",
    "IntervalTable",
    "LeitnerScheduler",
    "TrainingType",
    "Transition",
    "build_interval_tables",
]
