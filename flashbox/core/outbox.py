"""Pending review writes kept alongside a review session.

Every answer is appended here before it is persisted. A confirmed write is
removed, a failed write is retried later with exponential backoff, and a write
that exhausted its attempts is kept as ``failed`` so the learner can be told
it was not saved. All helpers return new tuples; nothing is mutated in place.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class PendingState(str, Enum):
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PendingReview:
    """A review answer that has not been confirmed by the repository yet."""

    seq: int
    vocabulary_id: int
    is_correct: bool
    answered_at: dt.datetime
    attempts: int = 0
    next_attempt_at: dt.datetime | None = None
    state: PendingState = PendingState.PENDING
    last_error: str | None = None

    def is_ready(self, now: dt.datetime) -> bool:
        if self.state is not PendingState.PENDING:
            return False
        return self.next_attempt_at is None or self.next_attempt_at <= now

    def to_payload(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "vocabulary_id": self.vocabulary_id,
            "is_correct": self.is_correct,
            "answered_at": self.answered_at.isoformat(),
            "attempts": self.attempts,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "state": self.state.value,
            "last_error": self.last_error,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PendingReview":
        next_attempt = payload.get("next_attempt_at")
        return cls(
            seq=int(payload["seq"]),
            vocabulary_id=int(payload["vocabulary_id"]),
            is_correct=bool(payload["is_correct"]),
            answered_at=dt.datetime.fromisoformat(payload["answered_at"]),
            attempts=int(payload.get("attempts", 0)),
            next_attempt_at=dt.datetime.fromisoformat(next_attempt) if next_attempt else None,
            state=PendingState(payload.get("state", PendingState.PENDING.value)),
            last_error=payload.get("last_error"),
        )


Outbox = tuple[PendingReview, ...]


def enqueue(outbox: Outbox, *, vocabulary_id: int, is_correct: bool, now: dt.datetime) -> tuple[Outbox, PendingReview]:
    seq = max((entry.seq for entry in outbox), default=0) + 1
    entry = PendingReview(seq=seq, vocabulary_id=vocabulary_id, is_correct=is_correct, answered_at=now)
    return outbox + (entry,), entry


def confirm(outbox: Outbox, seq: int) -> Outbox:
    return tuple(entry for entry in outbox if entry.seq != seq)


def backoff_delay(attempts: int, base_seconds: float) -> dt.timedelta:
    """Delay before the next attempt after ``attempts`` failures."""

    return dt.timedelta(seconds=base_seconds * (2 ** max(attempts - 1, 0)))


def record_failure(
    outbox: Outbox,
    seq: int,
    *,
    now: dt.datetime,
    error: str,
    max_attempts: int,
    base_seconds: float,
) -> Outbox:
    updated: list[PendingReview] = []
    for entry in outbox:
        if entry.seq != seq:
            updated.append(entry)
            continue
        attempts = entry.attempts + 1
        if attempts >= max_attempts:
            updated.append(
                replace(
                    entry,
                    attempts=attempts,
                    next_attempt_at=None,
                    state=PendingState.FAILED,
                    last_error=error,
                )
            )
        else:
            updated.append(
                replace(
                    entry,
                    attempts=attempts,
                    next_attempt_at=now + backoff_delay(attempts, base_seconds),
                    last_error=error,
                )
            )
    return tuple(updated)


def mark_failed(outbox: Outbox, seq: int, *, error: str) -> Outbox:
    """Give up on an entry immediately, e.g. when its study status is gone."""

    return tuple(
        replace(entry, attempts=entry.attempts + 1, next_attempt_at=None, state=PendingState.FAILED, last_error=error)
        if entry.seq == seq
        else entry
        for entry in outbox
    )


def ready_entries(outbox: Outbox, now: dt.datetime) -> list[PendingReview]:
    return [entry for entry in outbox if entry.is_ready(now)]


def unsaved_count(outbox: Outbox) -> int:
    return len(outbox)


def failed_entries(outbox: Outbox) -> list[PendingReview]:
    return [entry for entry in outbox if entry.state is PendingState.FAILED]
