"""Leitner box scheduler used for every training type.

Items move through seven discrete boxes. Box 0 means "never studied" and is
always due. A correct answer promotes an item by one box (capped at 6); an
incorrect answer sends it back to box 1, which keeps a failed item distinct
from one that was never studied. Every box above 0 maps to a retention
interval that pushes the next review further into the future.

Nothing in this module performs I/O, so the functions can be called from the
repository transaction, from the review session's optimistic path, and from
tests alike.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import IntEnum
from typing import Mapping, Sequence

MIN_BOX_LEVEL = 0
MAX_BOX_LEVEL = 6
RESET_BOX_LEVEL = 1

DEFAULT_INTERVAL_DAYS: tuple[int, ...] = (1, 3, 7, 14, 30, 60)

TZ = dt.timezone.utc


class TrainingType(IntEnum):
    """Kind of drill a study status belongs to.

    The integer values match the discriminator already stored in existing
    rows, so they must not be renumbered.
    """

    TRANSLATION = 1
    WORD_LEARNING = 2
    VOCABULARY = 3
    SENTENCE = 4


@dataclass(frozen=True, slots=True)
class Transition:
    """Outcome of applying one answer to a box level."""

    before_box_level: int
    after_box_level: int
    next_review_date: dt.datetime


class IntervalTable:
    """Box level to retention interval mapping for one training type."""

    def __init__(self, days: Sequence[int]) -> None:
        if len(days) != MAX_BOX_LEVEL:
            raise ValueError(f"Expected {MAX_BOX_LEVEL} intervals, got {len(days)}")
        if any(later <= earlier for earlier, later in zip(days, days[1:])) or days[0] <= 0:
            raise ValueError("Intervals must be positive and strictly increasing")
        self._intervals = tuple(dt.timedelta(days=value) for value in days)

    def interval_for(self, box_level: int) -> dt.timedelta:
        _check_box_level(box_level)
        if box_level == MIN_BOX_LEVEL:
            return dt.timedelta(0)
        return self._intervals[box_level - 1]

    @property
    def days(self) -> tuple[int, ...]:
        return tuple(interval.days for interval in self._intervals)


def _check_box_level(box_level: int) -> None:
    if not MIN_BOX_LEVEL <= box_level <= MAX_BOX_LEVEL:
        raise ValueError(f"Box level must be between {MIN_BOX_LEVEL} and {MAX_BOX_LEVEL}, got {box_level}")


def _ensure_timezone(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=TZ)
    return value.astimezone(TZ)


def build_interval_tables(
    days: Sequence[int] = DEFAULT_INTERVAL_DAYS,
    overrides: Mapping[TrainingType, Sequence[int]] | None = None,
) -> dict[TrainingType, IntervalTable]:
    """Return one interval table per training type."""

    shared = IntervalTable(days)
    tables = {training_type: shared for training_type in TrainingType}
    for training_type, override in (overrides or {}).items():
        tables[TrainingType(training_type)] = IntervalTable(override)
    return tables


class LeitnerScheduler:
    """Deterministic scheduler keyed by training type."""

    def __init__(self, tables: Mapping[TrainingType, IntervalTable] | None = None) -> None:
        self.tables = dict(tables or build_interval_tables())

    @classmethod
    def from_settings(cls, config=None) -> "LeitnerScheduler":
        """Build the scheduler from ``BOX_INTERVAL_DAYS`` and ``BOX_INTERVAL_OVERRIDES``."""

        if config is None:
            from flashbox.config import settings as config

        overrides = {
            TrainingType[name]: days for name, days in config.BOX_INTERVAL_OVERRIDES.items()
        }
        return cls(build_interval_tables(config.BOX_INTERVAL_DAYS, overrides))

    def next_box_level(self, current: int, is_correct: bool) -> int:
        """Return the box an item lands in after an answer."""

        _check_box_level(current)
        if is_correct:
            return min(current + 1, MAX_BOX_LEVEL)
        return RESET_BOX_LEVEL

    def next_due_date(
        self,
        new_box_level: int,
        now: dt.datetime,
        training_type: TrainingType = TrainingType.VOCABULARY,
    ) -> dt.datetime:
        """Return when an item in ``new_box_level`` becomes due again."""

        table = self.tables[TrainingType(training_type)]
        return _ensure_timezone(now) + table.interval_for(new_box_level)

    def apply_review(
        self,
        current: int,
        is_correct: bool,
        now: dt.datetime,
        training_type: TrainingType = TrainingType.VOCABULARY,
    ) -> Transition:
        new_level = self.next_box_level(current, is_correct)
        return Transition(
            before_box_level=current,
            after_box_level=new_level,
            next_review_date=self.next_due_date(new_level, now, training_type),
        )

    @staticmethod
    def is_due(box_level: int, next_review_date: dt.datetime | None, now: dt.datetime) -> bool:
        """Box 0 and unscheduled items are always due."""

        if box_level == MIN_BOX_LEVEL or next_review_date is None:
            return True
        return _ensure_timezone(next_review_date) <= _ensure_timezone(now)

