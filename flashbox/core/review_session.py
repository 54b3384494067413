"""Review session state machine.

A session snapshots the learner's due items once and then cycles through them
until every item has been answered correctly at least once. The machine is a
plain ``(state, event) -> state`` function over immutable values so it can be
stored between requests and exercised without any web or database harness::

    Loading --ItemsLoaded--> Ready | Empty
    Ready --ItemPresented--> Presenting
    Ready/Presenting --AnswerSubmitted--> Answering
    Answering --AnswerRecorded--> Presenting(next) | Completed
    any --Abandoned--> Abandoned

A failed item is not dropped or re-queued; its flag simply stays false, so the
cyclic scan comes back to it after the items that follow it. Queue membership
is fixed once the session is Ready.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Sequence

from flashbox.core.outbox import Outbox, PendingReview
from flashbox.utils.exceptions import InvalidTransitionError


class SessionStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    PRESENTING = "presenting"
    ANSWERING = "answering"
    COMPLETED = "completed"
    EMPTY = "empty"
    ABANDONED = "abandoned"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.EMPTY, SessionStatus.ABANDONED})


@dataclass(frozen=True, slots=True)
class QueueEntry:
    """Snapshot of one due study status taken when the session starts."""

    study_status_id: str
    vocabulary_id: int
    box_level: int
    level_id: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "study_status_id": self.study_status_id,
            "vocabulary_id": self.vocabulary_id,
            "box_level": self.box_level,
            "level_id": self.level_id,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "QueueEntry":
        level_id = payload.get("level_id")
        return cls(
            study_status_id=str(payload["study_status_id"]),
            vocabulary_id=int(payload["vocabulary_id"]),
            box_level=int(payload["box_level"]),
            level_id=int(level_id) if level_id is not None else None,
        )


@dataclass(frozen=True, slots=True)
class ItemsLoaded:
    entries: Sequence[QueueEntry]
    has_more: bool = False


@dataclass(frozen=True, slots=True)
class ItemPresented:
    pass


@dataclass(frozen=True, slots=True)
class AnswerSubmitted:
    is_correct: bool


@dataclass(frozen=True, slots=True)
class AnswerRecorded:
    new_box_level: int


@dataclass(frozen=True, slots=True)
class Abandoned:
    pass


Event = ItemsLoaded | ItemPresented | AnswerSubmitted | AnswerRecorded | Abandoned


@dataclass(frozen=True, slots=True)
class ReviewSessionState:
    status: SessionStatus = SessionStatus.LOADING
    queue: tuple[QueueEntry, ...] = ()
    # None until an item is answered, then the latest answer's correctness
    correct_flags: tuple[bool | None, ...] = ()
    box_levels: tuple[int, ...] = ()
    current_index: int = 0
    answered_count: int = 0
    pending_answer: bool | None = None
    has_more: bool = False
    outbox: Outbox = field(default_factory=tuple)

    @property
    def total_count(self) -> int:
        return len(self.queue)

    @property
    def correct_count(self) -> int:
        return sum(1 for flag in self.correct_flags if flag is True)

    @property
    def is_completed(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_entry(self) -> QueueEntry | None:
        if self.status not in (SessionStatus.READY, SessionStatus.PRESENTING, SessionStatus.ANSWERING):
            return None
        return self.queue[self.current_index]

    def correct_flag(self, vocabulary_id: int) -> bool | None:
        for entry, flag in zip(self.queue, self.correct_flags):
            if entry.vocabulary_id == vocabulary_id:
                return flag
        raise KeyError(vocabulary_id)

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "queue": [entry.to_payload() for entry in self.queue],
            "correct_flags": list(self.correct_flags),
            "box_levels": list(self.box_levels),
            "current_index": self.current_index,
            "answered_count": self.answered_count,
            "pending_answer": self.pending_answer,
            "has_more": self.has_more,
            "outbox": [entry.to_payload() for entry in self.outbox],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ReviewSessionState":
        return cls(
            status=SessionStatus(payload["status"]),
            queue=tuple(QueueEntry.from_payload(item) for item in payload.get("queue", [])),
            correct_flags=tuple(payload.get("correct_flags", [])),
            box_levels=tuple(int(level) for level in payload.get("box_levels", [])),
            current_index=int(payload.get("current_index", 0)),
            answered_count=int(payload.get("answered_count", 0)),
            pending_answer=payload.get("pending_answer"),
            has_more=bool(payload.get("has_more", False)),
            outbox=tuple(PendingReview.from_payload(item) for item in payload.get("outbox", [])),
        )


def initial_state() -> ReviewSessionState:
    return ReviewSessionState()


def _next_pending_index(flags: Sequence[bool | None], start: int) -> int | None:
    """Return the first index after ``start`` (wrapping) whose flag is not True."""

    size = len(flags)
    for offset in range(1, size + 1):
        index = (start + offset) % size
        if flags[index] is not True:
            return index
    return None


def _reject(state: ReviewSessionState, event: object) -> InvalidTransitionError:
    return InvalidTransitionError(
        f"Cannot apply {type(event).__name__} while session is {state.status.value}",
        details={"status": state.status.value, "event": type(event).__name__},
    )


def transition(state: ReviewSessionState, event: Event) -> ReviewSessionState:
    """Apply ``event`` to ``state`` and return the resulting state."""

    if isinstance(event, ItemsLoaded):
        if state.status is not SessionStatus.LOADING:
            raise _reject(state, event)
        entries = tuple(event.entries)
        if not entries:
            return replace(state, status=SessionStatus.EMPTY)
        return replace(
            state,
            status=SessionStatus.READY,
            queue=entries,
            correct_flags=(None,) * len(entries),
            box_levels=tuple(entry.box_level for entry in entries),
            current_index=0,
            has_more=event.has_more,
        )

    if isinstance(event, ItemPresented):
        if state.status is SessionStatus.PRESENTING:
            return state
        if state.status is not SessionStatus.READY:
            raise _reject(state, event)
        return replace(state, status=SessionStatus.PRESENTING)

    if isinstance(event, AnswerSubmitted):
        if state.status not in (SessionStatus.READY, SessionStatus.PRESENTING):
            raise _reject(state, event)
        return replace(state, status=SessionStatus.ANSWERING, pending_answer=event.is_correct)

    if isinstance(event, AnswerRecorded):
        if state.status is not SessionStatus.ANSWERING or state.pending_answer is None:
            raise _reject(state, event)
        index = state.current_index
        flags = list(state.correct_flags)
        flags[index] = state.pending_answer
        levels = list(state.box_levels)
        levels[index] = event.new_box_level
        answered = replace(
            state,
            correct_flags=tuple(flags),
            box_levels=tuple(levels),
            answered_count=state.answered_count + 1,
            pending_answer=None,
        )
        next_index = _next_pending_index(flags, index)
        if next_index is None:
            return replace(answered, status=SessionStatus.COMPLETED)
        return replace(answered, status=SessionStatus.PRESENTING, current_index=next_index)

    if isinstance(event, Abandoned):
        # answers already recorded stay recorded
        if state.status is SessionStatus.ABANDONED:
            return state
        return replace(state, status=SessionStatus.ABANDONED, pending_answer=None)

    raise TypeError(f"Unknown session event: {event!r}")


def with_outbox(state: ReviewSessionState, outbox: Outbox) -> ReviewSessionState:
    return replace(state, outbox=outbox)


def load(entries: Sequence[QueueEntry], *, has_more: bool = False) -> ReviewSessionState:
    """Build a session directly from a due-item snapshot."""

    return transition(initial_state(), ItemsLoaded(entries=tuple(entries), has_more=has_more))
