"""Tests for level progress aggregation."""
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select, update

from flashbox.core.srs import TrainingType
from flashbox.db.models.level_progress import LevelProgressSnapshot
from flashbox.db.models.study import StudyStatus
from flashbox.db.models.vocabulary import Level, VocabularyItem
from flashbox.services.level_progress import KeyedLocks, LevelProgressAggregator, is_level_completed
from flashbox.services.study_status import StudyStatusRepository
from flashbox.utils.exceptions import AggregationFailureError

VOCAB = TrainingType.VOCABULARY
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def aggregator(db_session) -> LevelProgressAggregator:
    return LevelProgressAggregator(db_session, locks=KeyedLocks())


@pytest.fixture()
def registered(db_session, learner, level_items):
    repository = StudyStatusRepository(db_session)
    for item in level_items:
        repository.ensure_registered(user_id=learner.id, vocabulary_id=item.id, training_type=VOCAB, now=NOW)
    return repository


def set_boxes(db_session, user, boxes: dict[int, int]) -> None:
    for vocabulary_id, box_level in boxes.items():
        db_session.execute(
            update(StudyStatus)
            .where(StudyStatus.user_id == user.id, StudyStatus.vocabulary_id == vocabulary_id)
            .values(box_level=box_level)
            .execution_options(synchronize_session=False)
        )
    db_session.commit()


@pytest.mark.parametrize(
    "counts,total,expected",
    [
        ({1: 0, 2: 0, 3: 1, 4: 1, 5: 0, 6: 1}, 3, True),
        ({1: 1, 2: 0, 3: 1, 4: 1, 5: 0, 6: 0}, 3, False),
        ({1: 0, 2: 0, 3: 2, 4: 0, 5: 0, 6: 0}, 3, False),
        ({}, 0, False),
    ],
)
def test_completion_rule(counts, total, expected):
    assert is_level_completed(counts, total) is expected


def test_recompute_buckets_active_rows_by_box(aggregator, registered, db_session, learner, level, level_items):
    apple, run, quiet = level_items
    set_boxes(db_session, learner, {apple.id: 1, run.id: 3, quiet.id: 0})

    snapshot = aggregator.recompute(user_id=learner.id, level_id=level.id, now=NOW)

    assert snapshot.total_count == 3
    assert snapshot.box_level_counts() == {1: 1, 2: 0, 3: 1, 4: 0, 5: 0, 6: 0}
    assert snapshot.is_completed is False


def test_recompute_is_idempotent(aggregator, registered, db_session, learner, level, level_items):
    set_boxes(db_session, learner, {level_items[0].id: 2, level_items[1].id: 5})

    first = aggregator.recompute(user_id=learner.id, level_id=level.id, now=NOW)
    first_values = (first.total_count, first.box_level_counts(), first.is_completed)
    second = aggregator.recompute(user_id=learner.id, level_id=level.id, now=NOW)

    assert (second.total_count, second.box_level_counts(), second.is_completed) == first_values
    assert db_session.scalar(select(func.count(LevelProgressSnapshot.id))) == 1


def test_completion_is_a_ratchet(aggregator, registered, db_session, learner, level, level_items):
    set_boxes(db_session, learner, {item.id: 4 for item in level_items})
    assert aggregator.recompute(user_id=learner.id, level_id=level.id, now=NOW).is_completed is True

    set_boxes(db_session, learner, {level_items[0].id: 1})
    regressed = aggregator.recompute(user_id=learner.id, level_id=level.id, now=NOW)

    assert regressed.box_level_1 == 1
    assert regressed.is_completed is True


def test_soft_deleted_and_other_users_rows_are_not_counted(
    aggregator, registered, db_session, learner, other_learner, level, level_items
):
    set_boxes(db_session, learner, {item.id: 3 for item in level_items})
    registered.unregister(user_id=learner.id, vocabulary_id=level_items[2].id, training_type=VOCAB)
    registered.ensure_registered(user_id=other_learner.id, vocabulary_id=level_items[2].id, training_type=VOCAB)
    set_boxes(db_session, other_learner, {level_items[2].id: 6})

    snapshot = aggregator.recompute(user_id=learner.id, level_id=level.id, now=NOW)

    assert snapshot.box_level_3 == 2
    assert snapshot.box_level_6 == 0
    assert snapshot.is_completed is False


def test_rows_of_another_training_type_are_not_counted(aggregator, registered, db_session, learner, level, level_items):
    registered.ensure_registered(
        user_id=learner.id, vocabulary_id=level_items[0].id, training_type=TrainingType.SENTENCE
    )
    db_session.execute(
        update(StudyStatus)
        .where(StudyStatus.training_type == TrainingType.SENTENCE)
        .values(box_level=6)
        .execution_options(synchronize_session=False)
    )
    db_session.commit()

    snapshot = aggregator.recompute(user_id=learner.id, level_id=level.id, now=NOW)
    assert snapshot.box_level_6 == 0


def test_unknown_level_is_an_aggregation_failure(aggregator, learner):
    with pytest.raises(AggregationFailureError):
        aggregator.recompute(user_id=learner.id, level_id=999, now=NOW)


def test_get_level_progress_builds_missing_snapshot(aggregator, registered, db_session, learner, level):
    assert db_session.scalar(select(func.count(LevelProgressSnapshot.id))) == 0

    snapshot = aggregator.get_level_progress(user_id=learner.id, level_id=level.id)

    assert snapshot.total_count == 3
    assert db_session.scalar(select(func.count(LevelProgressSnapshot.id))) == 1
    assert aggregator.get_level_progress(user_id=learner.id, level_id=level.id).id == snapshot.id


def test_recompute_all_covers_every_level_of_the_training_type(
    aggregator, registered, db_session, learner, level
):
    second = Level(code="A1-2", title="More words", training_type=VOCAB)
    sentences = Level(code="S1", title="Sentences", training_type=TrainingType.SENTENCE)
    db_session.add_all([second, sentences])
    db_session.commit()
    db_session.add(VocabularyItem(text="bread", level_id=second.id, meanings=[], synonyms=[]))
    db_session.commit()

    snapshots = aggregator.recompute_all(user_id=learner.id, training_type=VOCAB)

    assert sorted(snapshot.level_id for snapshot in snapshots) == [level.id, second.id]


def test_same_key_recomputes_never_overlap():
    locks = KeyedLocks()
    active = {"count": 0, "peak": 0}
    guard = threading.Lock()

    def work():
        with locks.hold(("user", 1)):
            with guard:
                active["count"] += 1
                active["peak"] = max(active["peak"], active["count"])
            time.sleep(0.01)
            with guard:
                active["count"] -= 1

    threads = [threading.Thread(target=work) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert active["peak"] == 1
    assert len(locks) == 0


def test_different_keys_do_not_block_each_other():
    locks = KeyedLocks()
    entered = threading.Event()
    release = threading.Event()

    def hold_first():
        with locks.hold(("user", 1)):
            entered.set()
            release.wait(timeout=2)

    thread = threading.Thread(target=hold_first)
    thread.start()
    entered.wait(timeout=2)
    try:
        with locks.hold(("user", 2)):
            acquired_other = True
            held_keys = len(locks)
    finally:
        release.set()
        thread.join()

    assert acquired_other
    assert held_keys == 2
    assert len(locks) == 0


def test_released_keys_do_not_accumulate():
    locks = KeyedLocks()
    for level_id in range(100):
        with locks.hold(("user", level_id)):
            with locks.hold(("user", level_id)):
                assert len(locks) == 1

    assert len(locks) == 0
