"""Per-level progress snapshots derived from study status rows."""
from __future__ import annotations

import hashlib
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from kombu.exceptions import OperationalError as BrokerUnavailableError
from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from flashbox.config import settings
from flashbox.core.srs.leitner import MAX_BOX_LEVEL, TrainingType
from flashbox.db.models.level_progress import LevelProgressSnapshot
from flashbox.db.models.study import StudyStatus
from flashbox.db.models.vocabulary import Level, VocabularyItem
from flashbox.services.vocabulary import VocabularyStore
from flashbox.utils.exceptions import AggregationFailureError

COUNTED_BOX_LEVELS = tuple(range(1, MAX_BOX_LEVEL + 1))


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """One re-entrant lock per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, int], _KeyLock] = {}

    @contextmanager
    def hold(self, key: tuple[str, int]) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


_recompute_locks = KeyedLocks()


def is_level_completed(counts: dict[int, int], total_count: int) -> bool:
    """A level is done when nothing sits in boxes 1-2 and every item reached box 3+."""

    if total_count <= 0:
        return False
    if counts.get(1, 0) + counts.get(2, 0) != 0:
        return False
    return sum(counts.get(level, 0) for level in range(3, MAX_BOX_LEVEL + 1)) == total_count


def advisory_key(user_id: uuid.UUID, level_id: int) -> int:
    digest = hashlib.blake2b(f"{user_id}:{level_id}".encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class LevelProgressAggregator:
    """Rebuilds ``level_progress`` rows; the only writer of that table."""

    def __init__(self, db: Session, *, locks: KeyedLocks | None = None) -> None:
        self.db = db
        self.locks = locks or _recompute_locks

    @property
    def _dialect(self) -> str:
        return self.db.get_bind().dialect.name

    def _serialize(self, user_id: uuid.UUID, level_id: int) -> None:
        if self._dialect == "postgresql":
            self.db.execute(select(func.pg_advisory_xact_lock(advisory_key(user_id, level_id))))

    def _bucket_counts(self, user_id: uuid.UUID, level: Level) -> dict[int, int]:
        stmt = (
            select(StudyStatus.box_level, func.count(StudyStatus.id))
            .join(VocabularyItem, VocabularyItem.id == StudyStatus.vocabulary_id)
            .where(
                VocabularyItem.level_id == level.id,
                StudyStatus.user_id == user_id,
                StudyStatus.training_type == TrainingType(level.training_type),
                StudyStatus.delete_flag.is_(False),
                StudyStatus.box_level.in_(COUNTED_BOX_LEVELS),
            )
            .group_by(StudyStatus.box_level)
        )
        counts = {box: 0 for box in COUNTED_BOX_LEVELS}
        for box_level, count in self.db.execute(stmt).all():
            counts[int(box_level)] = int(count or 0)
        return counts

    def _upsert(self, values: dict) -> None:
        insert = pg_insert if self._dialect == "postgresql" else sqlite_insert
        stmt = insert(LevelProgressSnapshot).values(id=uuid.uuid4(), **values)
        updates = {key: stmt.excluded[key] for key in values if key not in ("user_id", "level_id")}
        # completion is a ratchet: a regressed distribution never clears it
        updates["is_completed"] = or_(stmt.excluded.is_completed, LevelProgressSnapshot.is_completed)
        self.db.execute(
            stmt.on_conflict_do_update(index_elements=["user_id", "level_id"], set_=updates)
        )

    def _fetch(self, user_id: uuid.UUID, level_id: int) -> LevelProgressSnapshot | None:
        stmt = (
            select(LevelProgressSnapshot)
            .where(LevelProgressSnapshot.user_id == user_id, LevelProgressSnapshot.level_id == level_id)
            .execution_options(populate_existing=True)
        )
        return self.db.scalars(stmt).first()

    def recompute(
        self, *, user_id: uuid.UUID, level_id: int, now: datetime | None = None
    ) -> LevelProgressSnapshot:
        """Rebuild the snapshot for one learner and level.

        Recomputes of the same key never overlap; different keys run freely.
        Raises ``AggregationFailureError`` when the level is unknown or the
        database write fails, leaving the previous snapshot in place.
        """

        now = now or datetime.now(timezone.utc)
        with self.locks.hold((str(user_id), level_id)):
            try:
                level = self.db.get(Level, level_id)
                if level is None:
                    raise AggregationFailureError("Level not found", details={"level_id": level_id})
                self._serialize(user_id, level_id)

                total_count = VocabularyStore(self.db).count_level_items(level_id)
                counts = self._bucket_counts(user_id, level)
                completed = is_level_completed(counts, total_count)

                values = {
                    "user_id": user_id,
                    "level_id": level_id,
                    "total_count": total_count,
                    "is_completed": completed,
                    "updated_at": now,
                }
                values.update({f"box_level_{box}": counts[box] for box in COUNTED_BOX_LEVELS})
                self._upsert(values)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error(
                    "Level progress recompute failed",
                    user_id=str(user_id),
                    level_id=level_id,
                    error=str(exc),
                )
                raise AggregationFailureError(
                    "Level progress could not be recomputed", details={"level_id": level_id}
                ) from exc

        snapshot = self._fetch(user_id, level_id)
        logger.info(
            "Level progress recomputed",
            user_id=str(user_id),
            level_id=level_id,
            total=total_count,
            is_completed=snapshot.is_completed if snapshot else completed,
        )
        return snapshot

    def recompute_all(
        self, *, user_id: uuid.UUID, training_type: TrainingType, now: datetime | None = None
    ) -> list[LevelProgressSnapshot]:
        """Recompute every level of a training type; failed levels are logged and skipped."""

        level_ids = self.db.scalars(
            select(Level.id).where(Level.training_type == TrainingType(training_type)).order_by(Level.id)
        ).all()
        snapshots: list[LevelProgressSnapshot] = []
        for level_id in level_ids:
            try:
                snapshots.append(self.recompute(user_id=user_id, level_id=level_id, now=now))
            except AggregationFailureError as exc:
                logger.warning("Skipping level after failed recompute", level_id=level_id, error=exc.message)
        return snapshots

    def get_level_progress(self, *, user_id: uuid.UUID, level_id: int) -> LevelProgressSnapshot:
        """Return the stored snapshot, building it the first time it is asked for."""

        snapshot = self._fetch(user_id, level_id)
        if snapshot is None:
            snapshot = self.recompute(user_id=user_id, level_id=level_id)
        return snapshot


def refresh_level_progress(
    aggregator: LevelProgressAggregator, *, user_id: uuid.UUID, level_id: int | None
) -> None:
    """Bring a level snapshot up to date after a review, following ``LEVEL_PROGRESS_MODE``.

    Failures are logged and swallowed; a stale snapshot is repaired by the next
    review or the nightly recompute.
    """

    mode = settings.LEVEL_PROGRESS_MODE
    if mode == "off" or level_id is None:
        return
    if mode == "inline":
        try:
            aggregator.recompute(user_id=user_id, level_id=level_id)
        except AggregationFailureError as exc:
            logger.warning("Level progress left stale", level_id=level_id, error=exc.message)
        return

    from flashbox.tasks.level_progress import recompute_level_progress

    try:
        recompute_level_progress.delay(str(user_id), level_id)
    except BrokerUnavailableError as exc:
        logger.warning("Could not queue level progress recompute", level_id=level_id, error=str(exc))
