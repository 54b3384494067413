"""Celery tasks keeping level progress snapshots fresh."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import select

from flashbox.celery_app import celery_app
from flashbox.core.srs.leitner import TrainingType
from flashbox.db.models.study import StudyStatus
from flashbox.db.session import SessionLocal
from flashbox.services.level_progress import LevelProgressAggregator
from flashbox.utils.exceptions import AggregationFailureError


def _parse_user_id(user_id: str) -> UUID:
    try:
        return UUID(user_id)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid user ID: {user_id}") from exc


@celery_app.task(name="flashbox.tasks.level_progress.recompute_level_progress")
def recompute_level_progress(user_id: str, level_id: int) -> dict[str, int | bool | str]:
    """Rebuild one learner's snapshot for one level after a review."""

    db = SessionLocal()
    try:
        user_uuid = _parse_user_id(user_id)
        try:
            snapshot = LevelProgressAggregator(db).recompute(user_id=user_uuid, level_id=level_id)
        except AggregationFailureError as exc:
            # the snapshot stays stale until the next successful run
            logger.warning("Level progress task failed", user_id=user_id, level_id=level_id, error=exc.message)
            return {"user_id": user_id, "level_id": level_id, "status": "failed"}

        return {
            "user_id": user_id,
            "level_id": level_id,
            "status": "ok",
            "total_count": snapshot.total_count,
            "is_completed": snapshot.is_completed,
        }
    finally:
        db.close()


@celery_app.task(name="flashbox.tasks.level_progress.recompute_user_levels")
def recompute_user_levels(user_id: str, training_type: int) -> dict[str, int | str]:
    """Rebuild every level of one training type for a learner."""

    db = SessionLocal()
    try:
        user_uuid = _parse_user_id(user_id)
        snapshots = LevelProgressAggregator(db).recompute_all(
            user_id=user_uuid, training_type=TrainingType(training_type)
        )
        completed = sum(1 for snapshot in snapshots if snapshot.is_completed)
        logger.info(
            "User level progress recomputed",
            user_id=user_id,
            training_type=training_type,
            levels=len(snapshots),
            completed=completed,
        )
        return {"user_id": user_id, "levels": len(snapshots), "completed": completed}
    finally:
        db.close()


@celery_app.task(name="flashbox.tasks.level_progress.recompute_active_users")
def recompute_active_users(lookback_hours: int = 24) -> dict[str, int]:
    """Nightly pass over learners who reviewed something recently."""

    db = SessionLocal()
    try:
        since = datetime.now(timezone.utc) - timedelta(hours=lookback_hours)
        pairs = db.execute(
            select(StudyStatus.user_id, StudyStatus.training_type)
            .where(StudyStatus.last_studied_at >= since)
            .distinct()
        ).all()

        aggregator = LevelProgressAggregator(db)
        total_levels = 0
        for user_id, training_type in pairs:
            snapshots = aggregator.recompute_all(user_id=user_id, training_type=training_type)
            total_levels += len(snapshots)

        logger.info("Nightly level progress pass completed", users=len(pairs), levels=total_levels)
        return {"pairs": len(pairs), "levels": total_levels}
    finally:
        db.close()
