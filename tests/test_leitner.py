"""Tests for the Leitner scheduler."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from flashbox.config import Settings
from flashbox.core.srs import (
    MAX_BOX_LEVEL,
    IntervalTable,
    LeitnerScheduler,
    TrainingType,
    build_interval_tables,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

scheduler = LeitnerScheduler()
next_box_level = scheduler.next_box_level
next_due_date = scheduler.next_due_date


@pytest.mark.parametrize("current", range(0, MAX_BOX_LEVEL + 1))
def test_correct_answer_promotes_by_one_and_caps_at_top_box(current):
    assert next_box_level(current, True) == min(current + 1, MAX_BOX_LEVEL)
    assert next_box_level(current, True) <= MAX_BOX_LEVEL


@pytest.mark.parametrize("current", range(0, MAX_BOX_LEVEL + 1))
def test_incorrect_answer_resets_to_box_one(current):
    assert next_box_level(current, False) == 1


@pytest.mark.parametrize("current", [-1, 7, 99])
def test_box_level_outside_range_is_rejected(current):
    with pytest.raises(ValueError):
        next_box_level(current, True)


def test_box_zero_is_due_immediately():
    assert next_due_date(0, NOW) == NOW
    assert LeitnerScheduler.is_due(0, NOW + timedelta(days=5), NOW)


def test_default_intervals_grow_with_box_level():
    expected = [1, 3, 7, 14, 30, 60]
    for level, days in enumerate(expected, start=1):
        assert next_due_date(level, NOW) == NOW + timedelta(days=days)


def test_top_box_still_reschedules_forward():
    scheduler = LeitnerScheduler()
    transition = scheduler.apply_review(MAX_BOX_LEVEL, True, NOW)

    assert transition.before_box_level == MAX_BOX_LEVEL
    assert transition.after_box_level == MAX_BOX_LEVEL
    assert transition.next_review_date == NOW + timedelta(days=60)


def test_six_correct_answers_walk_an_item_from_box_zero_to_six():
    scheduler = LeitnerScheduler()
    level = 0
    for _ in range(6):
        level = scheduler.apply_review(level, True, NOW).after_box_level
    assert level == MAX_BOX_LEVEL


def test_failed_item_at_box_four_returns_to_box_one_due_tomorrow():
    transition = LeitnerScheduler().apply_review(4, False, NOW)

    assert transition.after_box_level == 1
    assert transition.next_review_date == NOW + timedelta(days=1)


def test_naive_now_is_treated_as_utc():
    naive = datetime(2024, 5, 1, 12, 0)
    assert next_due_date(2, naive) == NOW + timedelta(days=3)


def test_training_type_can_have_its_own_table():
    tables = build_interval_tables(overrides={TrainingType.SENTENCE: [2, 4, 8, 16, 32, 64]})
    scheduler = LeitnerScheduler(tables)

    assert scheduler.next_due_date(1, NOW, TrainingType.SENTENCE) == NOW + timedelta(days=2)
    assert scheduler.next_due_date(1, NOW, TrainingType.VOCABULARY) == NOW + timedelta(days=1)


@pytest.mark.parametrize(
    "days",
    [[1, 2, 3], [1, 3, 3, 14, 30, 60], [0, 3, 7, 14, 30, 60], [60, 30, 14, 7, 3, 1]],
)
def test_interval_table_must_be_six_increasing_positive_entries(days):
    with pytest.raises(ValueError):
        IntervalTable(days)


def test_is_due_compares_against_now():
    assert LeitnerScheduler.is_due(3, NOW - timedelta(seconds=1), NOW)
    assert LeitnerScheduler.is_due(3, NOW, NOW)
    assert not LeitnerScheduler.is_due(3, NOW + timedelta(seconds=1), NOW)
    assert LeitnerScheduler.is_due(3, None, NOW)


def test_scheduler_from_settings_uses_per_type_overrides():
    config = Settings(
        SECRET_KEY="test",
        BOX_INTERVAL_DAYS=[2, 4, 6, 8, 10, 12],
        BOX_INTERVAL_OVERRIDES={"sentence": [1, 2, 3, 4, 5, 6]},
    )
    scheduler = LeitnerScheduler.from_settings(config)

    assert scheduler.next_due_date(3, NOW, TrainingType.VOCABULARY) == NOW + timedelta(days=6)
    assert scheduler.next_due_date(3, NOW, TrainingType.SENTENCE) == NOW + timedelta(days=3)


def test_unknown_training_type_override_is_rejected():
    with pytest.raises(ValidationError):
        Settings(SECRET_KEY="test", BOX_INTERVAL_OVERRIDES={"LISTENING": [1, 2, 3, 4, 5, 6]})
