"""Drives review sessions between HTTP requests.

The pure machine in :mod:`flashbox.core.review_session` decides what happens
next; this service loads due items, persists answers through the study status
repository and keeps the machine's state in the cache backend under an opaque
handle. Answers go through the session's outbox: a write that fails with a
transient error is retried on later calls instead of blocking the learner.
"""
from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from flashbox.config import settings
from flashbox.core import outbox as outbox_ops
from flashbox.core.review_session import (
    Abandoned,
    AnswerRecorded,
    AnswerSubmitted,
    ItemPresented,
    QueueEntry,
    ReviewSessionState,
    SessionStatus,
    load,
    transition,
    with_outbox,
)
from flashbox.core.srs.leitner import LeitnerScheduler, TrainingType
from flashbox.db.models.user import User
from flashbox.db.models.vocabulary import VocabularyItem
from flashbox.services.level_progress import LevelProgressAggregator, refresh_level_progress
from flashbox.services.study_status import ReviewResult, StudyStatusRepository
from flashbox.services.vocabulary import VocabularyStore
from flashbox.utils.cache import CacheBackend, cache_backend
from flashbox.utils.exceptions import (
    ConcurrentModificationError,
    PersistenceUnavailableError,
    SessionNotFoundError,
    StudyStatusNotFoundError,
)

SESSION_NAMESPACE = "review:session"

# errors after which a queued answer is worth retrying
RETRYABLE_ERRORS = (PersistenceUnavailableError, ConcurrentModificationError)


@dataclass(slots=True)
class SessionSummary:
    """Counters reported to the client after every session call."""

    handle: str
    training_type: TrainingType
    status: SessionStatus
    answered_count: int
    correct_count: int
    total_count: int
    is_completed: bool
    has_more: bool
    unsaved_count: int
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AnswerOutcome:
    session_status: SessionSummary
    new_box_level: int
    saved: bool


@dataclass(slots=True)
class _StoredSession:
    handle: str
    user_id: str
    training_type: TrainingType
    state: ReviewSessionState

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "training_type": int(self.training_type),
            "state": self.state.to_payload(),
        }


def _utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


class ReviewSessionService:
    """Start, answer and inspect review sessions for one database session."""

    def __init__(
        self,
        db: Session,
        *,
        repository: StudyStatusRepository | None = None,
        aggregator: LevelProgressAggregator | None = None,
        scheduler: LeitnerScheduler | None = None,
        store: CacheBackend | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.db = db
        self.scheduler = scheduler or LeitnerScheduler.from_settings()
        self.repository = repository or StudyStatusRepository(db, scheduler=self.scheduler)
        self.aggregator = aggregator or LevelProgressAggregator(db)
        self.vocabulary = VocabularyStore(db)
        self.store = store or cache_backend
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    def _save(self, stored: _StoredSession) -> None:
        self.store.set(
            SESSION_NAMESPACE,
            stored.handle,
            stored.to_payload(),
            ttl_seconds=settings.REVIEW_SESSION_TTL_SECONDS,
        )

    def _load(self, user: User, handle: str) -> _StoredSession:
        payload = self.store.get(SESSION_NAMESPACE, handle)
        # a handle owned by someone else looks exactly like an unknown one
        if payload is None or payload.get("user_id") != str(user.id):
            raise SessionNotFoundError("Review session not found", details={"handle": handle})
        return _StoredSession(
            handle=handle,
            user_id=payload["user_id"],
            training_type=TrainingType(payload["training_type"]),
            state=ReviewSessionState.from_payload(payload["state"]),
        )

    def _summary(self, stored: _StoredSession) -> SessionSummary:
        state = stored.state
        warnings = [
            f"Answer for item {entry.vocabulary_id} could not be saved"
            for entry in outbox_ops.failed_entries(state.outbox)
        ]
        return SessionSummary(
            handle=stored.handle,
            training_type=stored.training_type,
            status=state.status,
            answered_count=state.answered_count,
            correct_count=state.correct_count,
            total_count=state.total_count,
            is_completed=state.is_completed,
            has_more=state.has_more,
            unsaved_count=outbox_ops.unsaved_count(state.outbox),
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Persistence of answers
    # ------------------------------------------------------------------
    def _refresh_level_progress(self, user_id: uuid.UUID, result: ReviewResult) -> None:
        refresh_level_progress(self.aggregator, user_id=user_id, level_id=result.level_id)

    def _write(
        self,
        stored: _StoredSession,
        user_id: uuid.UUID,
        entry: outbox_ops.PendingReview,
        now: datetime,
    ) -> tuple[outbox_ops.Outbox, ReviewResult | None]:
        """Try to persist one outbox entry and return the updated outbox."""

        pending = stored.state.outbox
        try:
            result = self.repository.record_review(
                user_id=user_id,
                vocabulary_id=entry.vocabulary_id,
                training_type=stored.training_type,
                is_correct=entry.is_correct,
                now=entry.answered_at,
            )
        except RETRYABLE_ERRORS as exc:
            updated = outbox_ops.record_failure(
                pending,
                entry.seq,
                now=now,
                error=exc.message,
                max_attempts=settings.REVIEW_RETRY_MAX_ATTEMPTS,
                base_seconds=settings.REVIEW_RETRY_BASE_SECONDS,
            )
            logger.warning(
                "Review not saved, will retry",
                handle=stored.handle,
                vocabulary_id=entry.vocabulary_id,
                attempts=entry.attempts + 1,
                error=exc.message,
            )
            return updated, None
        except StudyStatusNotFoundError as exc:
            logger.warning(
                "Review dropped, item is no longer registered",
                handle=stored.handle,
                vocabulary_id=entry.vocabulary_id,
            )
            return outbox_ops.mark_failed(pending, entry.seq, error=exc.message), None

        self._refresh_level_progress(user_id, result)
        return outbox_ops.confirm(pending, entry.seq), result

    def _drain(self, stored: _StoredSession, user_id: uuid.UUID, now: datetime) -> None:
        """Retry every queued answer whose backoff has elapsed, oldest first.

        Answers for one item are applied in order: once an entry for an item
        is still waiting, later entries for the same item wait too.
        """

        blocked: set[int] = set()
        for entry in sorted(stored.state.outbox, key=lambda item: item.seq):
            if entry.state is outbox_ops.PendingState.FAILED:
                continue
            if entry.vocabulary_id in blocked or not entry.is_ready(now):
                blocked.add(entry.vocabulary_id)
                continue
            updated, result = self._write(stored, user_id, entry, now)
            stored.state = with_outbox(stored.state, updated)
            if result is None:
                blocked.add(entry.vocabulary_id)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def start_session(
        self,
        *,
        user: User,
        training_type: TrainingType,
        now: datetime | None = None,
        shuffle: bool | None = None,
    ) -> SessionSummary:
        """Snapshot the learner's due items and open a session over them."""

        now = _utc(now)
        training_type = TrainingType(training_type)
        batch_size = settings.REVIEW_SESSION_BATCH_SIZE
        due = self.repository.get_due_items(
            user_id=user.id, training_type=training_type, now=now, limit=batch_size + 1
        )
        has_more = len(due) > batch_size
        entries = [
            QueueEntry(
                study_status_id=str(row.status.id),
                vocabulary_id=row.item.id,
                box_level=row.status.box_level,
                level_id=row.item.level_id,
            )
            for row in due[:batch_size]
        ]
        if settings.REVIEW_SESSION_SHUFFLE if shuffle is None else shuffle:
            self.rng.shuffle(entries)

        stored = _StoredSession(
            handle=uuid.uuid4().hex,
            user_id=str(user.id),
            training_type=training_type,
            state=load(entries, has_more=has_more),
        )
        user.mark_activity(now.date())
        self.db.commit()
        self._save(stored)
        logger.info(
            "Review session started",
            handle=stored.handle,
            user_id=str(user.id),
            training_type=int(training_type),
            total=len(entries),
            has_more=has_more,
        )
        return self._summary(stored)

    def current_item(self, *, user: User, handle: str) -> VocabularyItem | None:
        """Return the item to show next, or ``None`` once the session is over."""

        stored = self._load(user, handle)
        entry = stored.state.current_entry
        if entry is None:
            return None
        if stored.state.status is SessionStatus.READY:
            stored.state = transition(stored.state, ItemPresented())
            self._save(stored)
        return self.vocabulary.get_item(entry.vocabulary_id)

    def answer(
        self,
        *,
        user: User,
        handle: str,
        is_correct: bool,
        now: datetime | None = None,
    ) -> AnswerOutcome:
        """Record an answer for the current item and advance the session."""

        now = _utc(now)
        stored = self._load(user, handle)
        answering = transition(stored.state, AnswerSubmitted(is_correct=is_correct))
        index = answering.current_index
        entry = answering.queue[index]

        stored.state = answering
        self._drain(stored, user.id, now)

        outbox, pending = outbox_ops.enqueue(
            stored.state.outbox, vocabulary_id=entry.vocabulary_id, is_correct=is_correct, now=now
        )
        stored.state = with_outbox(stored.state, outbox)

        earlier_waiting = any(
            queued.vocabulary_id == entry.vocabulary_id
            and queued.seq != pending.seq
            and queued.state is outbox_ops.PendingState.PENDING
            for queued in outbox
        )
        result = None
        if not earlier_waiting:
            updated, result = self._write(stored, user.id, pending, now)
            stored.state = with_outbox(stored.state, updated)

        if result is not None:
            new_box_level = result.after_box_level
        else:
            new_box_level = self.scheduler.next_box_level(stored.state.box_levels[index], is_correct)

        stored.state = transition(stored.state, AnswerRecorded(new_box_level=new_box_level))
        self._save(stored)
        logger.info(
            "Review session answer",
            handle=handle,
            vocabulary_id=entry.vocabulary_id,
            is_correct=is_correct,
            new_box_level=new_box_level,
            saved=result is not None,
            status=stored.state.status.value,
        )
        return AnswerOutcome(
            session_status=self._summary(stored),
            new_box_level=new_box_level,
            saved=result is not None,
        )

    def session_status(self, *, user: User, handle: str) -> SessionSummary:
        return self._summary(self._load(user, handle))

    def sync(self, *, user: User, handle: str, now: datetime | None = None) -> SessionSummary:
        """Retry queued answers that are due for another attempt."""

        stored = self._load(user, handle)
        self._drain(stored, user.id, _utc(now))
        self._save(stored)
        return self._summary(stored)

    def abandon(self, *, user: User, handle: str, now: datetime | None = None) -> SessionSummary:
        """Close a session; answers already saved stay saved."""

        stored = self._load(user, handle)
        self._drain(stored, user.id, _utc(now))
        stored.state = transition(stored.state, Abandoned())
        summary = self._summary(stored)
        if summary.unsaved_count:
            logger.warning(
                "Review session abandoned with unsaved answers",
                handle=handle,
                unsaved=summary.unsaved_count,
            )
        self.store.delete(SESSION_NAMESPACE, handle)
        return summary
