"""Repository for per-learner study status rows.

This is the only place that writes ``study_status`` and ``study_history``.
Reviews run as one transaction: lock the row, compute the Leitner transition,
write it with a compare-and-swap ``UPDATE ... RETURNING`` guarded by the row's
version counter, append the history entry, commit. A writer that loses the
race re-reads the row and tries again, so two devices reviewing the same item
never overwrite each other's result.
"""
from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Sequence

from loguru import logger
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, joinedload
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt

from flashbox.config import settings
from flashbox.core.srs.leitner import MAX_BOX_LEVEL, MIN_BOX_LEVEL, LeitnerScheduler, TrainingType
from flashbox.db.models.study import StudyHistoryEntry, StudyStatus
from flashbox.db.models.vocabulary import VocabularyItem
from flashbox.utils.exceptions import (
    ConcurrentModificationError,
    PersistenceUnavailableError,
    StudyStatusNotFoundError,
)


@dataclass(slots=True)
class DueItem:
    """A due study status joined with the item it schedules."""

    status: StudyStatus
    item: VocabularyItem


@dataclass(frozen=True, slots=True)
class ReviewResult:
    """What a committed review changed."""

    study_status_id: uuid.UUID
    vocabulary_id: int
    before_box_level: int
    after_box_level: int
    next_review_date: datetime
    level_id: int | None = None


class _LostRace(Exception):
    """The CAS update matched no row because another writer got there first."""


def _utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


class StudyStatusRepository:
    """Durable scheduling records keyed by (user, item, training type)."""

    def __init__(
        self,
        db: Session,
        *,
        scheduler: LeitnerScheduler | None = None,
        cas_attempts: int | None = None,
    ) -> None:
        self.db = db
        self.scheduler = scheduler or LeitnerScheduler.from_settings()
        self.cas_attempts = cas_attempts or settings.REVIEW_CAS_ATTEMPTS

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _persistence_guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (OperationalError, InterfaceError) as exc:
            self.db.rollback()
            logger.error("Study status storage unavailable", operation=operation, error=str(exc))
            raise PersistenceUnavailableError(
                "Study status storage is unavailable", details={"operation": operation}
            ) from exc

    def _key_query(self, user_id: uuid.UUID, vocabulary_id: int, training_type: TrainingType) -> select:
        return select(StudyStatus).where(
            and_(
                StudyStatus.user_id == user_id,
                StudyStatus.vocabulary_id == vocabulary_id,
                StudyStatus.training_type == TrainingType(training_type),
            )
        )

    def get_status(
        self,
        *,
        user_id: uuid.UUID,
        vocabulary_id: int,
        training_type: TrainingType,
        include_deleted: bool = False,
    ) -> StudyStatus | None:
        """Return the row for the key, ignoring soft-deleted rows unless asked."""

        stmt = self._key_query(user_id, vocabulary_id, training_type).execution_options(
            populate_existing=True
        )
        if not include_deleted:
            stmt = stmt.where(StudyStatus.delete_flag.is_(False))
        with self._persistence_guard("get_status"):
            return self.db.scalars(stmt).first()

    def saved_map(
        self, *, user_id: uuid.UUID, vocabulary_ids: Sequence[int], training_type: TrainingType
    ) -> dict[int, bool]:
        """Return whether each id is actively registered; unknown ids map to ``False``."""

        wanted = list(dict.fromkeys(vocabulary_ids))
        if not wanted:
            return {}
        stmt = select(StudyStatus.vocabulary_id).where(
            StudyStatus.user_id == user_id,
            StudyStatus.training_type == TrainingType(training_type),
            StudyStatus.vocabulary_id.in_(wanted),
            StudyStatus.delete_flag.is_(False),
        )
        with self._persistence_guard("saved_map"):
            saved = set(self.db.scalars(stmt))
        return {vocabulary_id: vocabulary_id in saved for vocabulary_id in wanted}

    def _due_filter(self, user_id: uuid.UUID, training_type: TrainingType, now: datetime):
        return and_(
            StudyStatus.user_id == user_id,
            StudyStatus.training_type == TrainingType(training_type),
            StudyStatus.delete_flag.is_(False),
            StudyStatus.is_completed.is_(False),
            or_(
                StudyStatus.next_review_date.is_(None),
                StudyStatus.next_review_date <= now,
                StudyStatus.box_level == MIN_BOX_LEVEL,
            ),
        )

    def get_due_items(
        self,
        *,
        user_id: uuid.UUID,
        training_type: TrainingType,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[DueItem]:
        """Return due rows, most overdue first and never-scheduled rows before all others."""

        now = _utc(now)
        stmt = (
            select(StudyStatus)
            .options(joinedload(StudyStatus.item))
            .where(self._due_filter(user_id, training_type, now))
            .order_by(
                StudyStatus.next_review_date.asc().nullsfirst(),
                StudyStatus.created_at.asc(),
                StudyStatus.vocabulary_id.asc(),
            )
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._persistence_guard("get_due_items"):
            rows = list(self.db.scalars(stmt))
        return [DueItem(status=row, item=row.item) for row in rows if row.item is not None]

    def count_due(
        self, *, user_id: uuid.UUID, training_type: TrainingType, now: datetime | None = None
    ) -> int:
        now = _utc(now)
        stmt = select(func.count(StudyStatus.id)).where(self._due_filter(user_id, training_type, now))
        with self._persistence_guard("count_due"):
            return int(self.db.scalar(stmt) or 0)

    def count_by_completion(
        self, *, user_id: uuid.UUID, training_type: TrainingType | None = None
    ) -> dict[str, int]:
        """Return how many active rows are completed and how many are still being learned."""

        stmt = (
            select(StudyStatus.is_completed, func.count(StudyStatus.id))
            .where(StudyStatus.user_id == user_id, StudyStatus.delete_flag.is_(False))
            .group_by(StudyStatus.is_completed)
        )
        if training_type is not None:
            stmt = stmt.where(StudyStatus.training_type == TrainingType(training_type))
        with self._persistence_guard("count_by_completion"):
            rows = self.db.execute(stmt).all()
        counts = {"completed": 0, "learning": 0}
        for is_completed, count in rows:
            counts["completed" if is_completed else "learning"] += int(count or 0)
        return counts

    def history_for(
        self, *, user_id: uuid.UUID, vocabulary_id: int, training_type: TrainingType
    ) -> list[StudyHistoryEntry]:
        stmt = (
            select(StudyHistoryEntry)
            .where(
                StudyHistoryEntry.user_id == user_id,
                StudyHistoryEntry.vocabulary_id == vocabulary_id,
                StudyHistoryEntry.training_type == TrainingType(training_type),
            )
            .order_by(StudyHistoryEntry.created_at.asc())
        )
        with self._persistence_guard("history_for"):
            return list(self.db.scalars(stmt))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def _register(
        self, user_id: uuid.UUID, vocabulary_id: int, training_type: TrainingType, now: datetime
    ) -> StudyStatus:
        with self._persistence_guard("ensure_registered"):
            status = self.get_status(
                user_id=user_id,
                vocabulary_id=vocabulary_id,
                training_type=training_type,
                include_deleted=True,
            )
            if status is not None:
                if status.delete_flag:
                    status.revive(now)
                    self.db.commit()
                    logger.info(
                        "Study status revived",
                        user_id=str(user_id),
                        vocabulary_id=vocabulary_id,
                        training_type=int(training_type),
                    )
                return status

            status = StudyStatus(
                user_id=user_id,
                vocabulary_id=vocabulary_id,
                training_type=TrainingType(training_type),
                box_level=MIN_BOX_LEVEL,
                next_review_date=None,
                is_completed=False,
                delete_flag=False,
                version=1,
                created_at=now,
                updated_at=now,
            )
            self.db.add(status)
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise ConcurrentModificationError(
                    "Study status was created concurrently",
                    details={"vocabulary_id": vocabulary_id, "training_type": int(training_type)},
                ) from exc
        logger.info(
            "Study status registered",
            user_id=str(user_id),
            vocabulary_id=vocabulary_id,
            training_type=int(training_type),
        )
        return status

    def ensure_registered(
        self,
        *,
        user_id: uuid.UUID,
        vocabulary_id: int,
        training_type: TrainingType,
        now: datetime | None = None,
    ) -> StudyStatus:
        """Return the active row for the key, creating or reviving it as needed."""

        now = _utc(now)
        training_type = TrainingType(training_type)
        try:
            return self._register(user_id, vocabulary_id, training_type, now)
        except ConcurrentModificationError:
            logger.warning(
                "Registration raced with another writer, retrying as upsert",
                user_id=str(user_id),
                vocabulary_id=vocabulary_id,
            )
            return self._register(user_id, vocabulary_id, training_type, now)

    def unregister(
        self,
        *,
        user_id: uuid.UUID,
        vocabulary_id: int,
        training_type: TrainingType,
        now: datetime | None = None,
    ) -> bool:
        """Soft delete the active row; returns False when nothing was active."""

        now = _utc(now)
        status = self.get_status(
            user_id=user_id, vocabulary_id=vocabulary_id, training_type=training_type
        )
        if status is None:
            return False
        with self._persistence_guard("unregister"):
            status.soft_delete(now)
            self.db.commit()
        return True

    def toggle_registration(
        self,
        *,
        user_id: uuid.UUID,
        vocabulary_id: int,
        training_type: TrainingType,
        now: datetime | None = None,
    ) -> bool:
        """Flip the saved state of an item and return whether it is now saved."""

        if self.unregister(
            user_id=user_id, vocabulary_id=vocabulary_id, training_type=training_type, now=now
        ):
            return False
        self.ensure_registered(
            user_id=user_id, vocabulary_id=vocabulary_id, training_type=training_type, now=now
        )
        return True

    # ------------------------------------------------------------------
    # Review helpers
    # ------------------------------------------------------------------
    def _level_id_for(self, vocabulary_id: int) -> int | None:
        return self.db.scalar(select(VocabularyItem.level_id).where(VocabularyItem.id == vocabulary_id))

    def _review_once(
        self,
        user_id: uuid.UUID,
        vocabulary_id: int,
        training_type: TrainingType,
        is_correct: bool,
        now: datetime,
    ) -> ReviewResult:
        with self._persistence_guard("record_review"):
            stmt = (
                self._key_query(user_id, vocabulary_id, training_type)
                .where(StudyStatus.delete_flag.is_(False))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            status = self.db.scalars(stmt).first()
            if status is None:
                self.db.rollback()
                raise StudyStatusNotFoundError(
                    "No active study status for this item; register it first",
                    details={"vocabulary_id": vocabulary_id, "training_type": int(training_type)},
                )

            expected_version = status.version
            transition = self.scheduler.apply_review(status.box_level, is_correct, now, training_type)
            cas = (
                update(StudyStatus)
                .where(
                    StudyStatus.id == status.id,
                    StudyStatus.version == expected_version,
                    StudyStatus.delete_flag.is_(False),
                )
                .values(
                    box_level=transition.after_box_level,
                    next_review_date=transition.next_review_date,
                    last_studied_at=now,
                    updated_at=now,
                    version=StudyStatus.version + 1,
                )
                .returning(StudyStatus.id)
                .execution_options(synchronize_session=False)
            )
            if self.db.execute(cas).first() is None:
                self.db.rollback()
                raise _LostRace()

            self.db.add(
                StudyHistoryEntry(
                    study_status_id=status.id,
                    user_id=user_id,
                    vocabulary_id=vocabulary_id,
                    before_box_level=transition.before_box_level,
                    after_box_level=transition.after_box_level,
                    is_correct=is_correct,
                    training_type=training_type,
                    created_at=now,
                )
            )
            level_id = self._level_id_for(vocabulary_id)
            self.db.commit()
            self.db.expire(status)

        return ReviewResult(
            study_status_id=status.id,
            vocabulary_id=vocabulary_id,
            before_box_level=transition.before_box_level,
            after_box_level=transition.after_box_level,
            next_review_date=transition.next_review_date,
            level_id=level_id,
        )

    @staticmethod
    def _log_lost_race(retry_state) -> None:
        logger.warning("Review lost a concurrent update, re-reading", attempt=retry_state.attempt_number)

    def record_review(
        self,
        *,
        user_id: uuid.UUID,
        vocabulary_id: int,
        training_type: TrainingType,
        is_correct: bool,
        now: datetime | None = None,
    ) -> ReviewResult:
        """Apply one answer atomically and append its history entry."""

        now = _utc(now)
        training_type = TrainingType(training_type)
        retrying = Retrying(
            stop=stop_after_attempt(self.cas_attempts),
            retry=retry_if_exception_type(_LostRace),
            before_sleep=self._log_lost_race,
        )
        try:
            result = retrying(self._review_once, user_id, vocabulary_id, training_type, is_correct, now)
        except RetryError as exc:
            raise ConcurrentModificationError(
                "Review kept losing concurrent updates",
                details={"vocabulary_id": vocabulary_id, "attempts": self.cas_attempts},
            ) from exc

        logger.info(
            "Review recorded",
            user_id=str(user_id),
            vocabulary_id=vocabulary_id,
            training_type=int(training_type),
            is_correct=is_correct,
            before=result.before_box_level,
            after=result.after_box_level,
        )
        return result

    def classify(
        self,
        *,
        user_id: uuid.UUID,
        vocabulary_id: int,
        training_type: TrainingType,
        known: bool,
        now: datetime | None = None,
    ) -> ReviewResult:
        """Sort an item as already known (retired at the top box) or unknown (back to box 0)."""

        now = _utc(now)
        training_type = TrainingType(training_type)
        self.ensure_registered(
            user_id=user_id, vocabulary_id=vocabulary_id, training_type=training_type, now=now
        )
        with self._persistence_guard("classify"):
            stmt = (
                self._key_query(user_id, vocabulary_id, training_type)
                .where(StudyStatus.delete_flag.is_(False))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            status = self.db.scalars(stmt).one()
            before = status.box_level
            after = MAX_BOX_LEVEL if known else MIN_BOX_LEVEL
            next_review = self.scheduler.next_due_date(after, now, training_type)

            status.box_level = after
            status.is_completed = known
            status.next_review_date = next_review
            status.last_studied_at = now
            status.updated_at = now
            status.version = (status.version or 0) + 1
            self.db.add(
                StudyHistoryEntry(
                    study_status_id=status.id,
                    user_id=user_id,
                    vocabulary_id=vocabulary_id,
                    before_box_level=before,
                    after_box_level=after,
                    is_correct=known,
                    training_type=training_type,
                    created_at=now,
                )
            )
            level_id = self._level_id_for(vocabulary_id)
            self.db.commit()

        return ReviewResult(
            study_status_id=status.id,
            vocabulary_id=vocabulary_id,
            before_box_level=before,
            after_box_level=after,
            next_review_date=next_review,
            level_id=level_id,
        )
