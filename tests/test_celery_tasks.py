"""Tests for Celery background tasks."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from flashbox.core.srs import TrainingType
from flashbox.db.models.level_progress import LevelProgressSnapshot
from flashbox.services.study_status import StudyStatusRepository
from flashbox.tasks.level_progress import (
    recompute_active_users,
    recompute_level_progress,
    recompute_user_levels,
)

VOCAB = TrainingType.VOCABULARY


@pytest.fixture()
def task_session_factory(db_session):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=db_session.bind)
    sessions: list = []

    def create_session():
        session = factory()
        sessions.append(session)
        return session

    try:
        yield create_session
    finally:
        for session in sessions:
            session.close()


@pytest.fixture()
def reviewed(db_session, learner, level_items):
    repository = StudyStatusRepository(db_session)
    now = datetime.now(timezone.utc)
    for item in level_items:
        repository.ensure_registered(user_id=learner.id, vocabulary_id=item.id, training_type=VOCAB, now=now)
        repository.record_review(
            user_id=learner.id, vocabulary_id=item.id, training_type=VOCAB, is_correct=True, now=now
        )
    return level_items


def test_recompute_level_progress_task(task_session_factory, db_session, learner, level, reviewed):
    with patch("flashbox.tasks.level_progress.SessionLocal", side_effect=task_session_factory):
        result = recompute_level_progress.run(str(learner.id), level.id)

    assert result["status"] == "ok"
    assert result["total_count"] == 3
    snapshot = db_session.scalars(select(LevelProgressSnapshot)).one()
    assert snapshot.box_level_1 == 3


def test_recompute_level_progress_task_reports_failure(task_session_factory, learner):
    with patch("flashbox.tasks.level_progress.SessionLocal", side_effect=task_session_factory):
        result = recompute_level_progress.run(str(learner.id), 12345)

    assert result["status"] == "failed"


def test_recompute_level_progress_task_rejects_bad_user_id(task_session_factory):
    with patch("flashbox.tasks.level_progress.SessionLocal", side_effect=task_session_factory):
        with pytest.raises(ValueError):
            recompute_level_progress.run("not-a-uuid", 1)


def test_recompute_user_levels_task(task_session_factory, learner, level, reviewed):
    with patch("flashbox.tasks.level_progress.SessionLocal", side_effect=task_session_factory):
        result = recompute_user_levels.run(str(learner.id), int(VOCAB))

    assert result == {"user_id": str(learner.id), "levels": 1, "completed": 0}


def test_recompute_active_users_only_touches_recent_reviews(
    task_session_factory, db_session, learner, other_learner, level, level_items, reviewed
):
    repository = StudyStatusRepository(db_session)
    stale = datetime.now(timezone.utc) - timedelta(days=3)
    repository.ensure_registered(
        user_id=other_learner.id, vocabulary_id=level_items[0].id, training_type=VOCAB, now=stale
    )
    repository.record_review(
        user_id=other_learner.id, vocabulary_id=level_items[0].id, training_type=VOCAB, is_correct=True, now=stale
    )

    with patch("flashbox.tasks.level_progress.SessionLocal", side_effect=task_session_factory):
        result = recompute_active_users.run()

    assert result == {"pairs": 1, "levels": 1}
    snapshots = db_session.scalars(select(LevelProgressSnapshot)).all()
    assert [snapshot.user_id for snapshot in snapshots] == [learner.id]
