"""Tests for the pure review session state machine."""
from __future__ import annotations

import pytest

from flashbox.core.review_session import (
    Abandoned,
    AnswerRecorded,
    AnswerSubmitted,
    ItemPresented,
    ItemsLoaded,
    QueueEntry,
    ReviewSessionState,
    SessionStatus,
    initial_state,
    load,
    transition,
)
from flashbox.core.srs import LeitnerScheduler
from flashbox.utils.exceptions import InvalidTransitionError

next_box_level = LeitnerScheduler().next_box_level


def make_entries(count: int, box_level: int = 0) -> list[QueueEntry]:
    return [
        QueueEntry(study_status_id=f"status-{index}", vocabulary_id=index, box_level=box_level)
        for index in range(1, count + 1)
    ]


def answer(state: ReviewSessionState, is_correct: bool) -> ReviewSessionState:
    entry = state.current_entry
    index = state.current_index
    state = transition(state, AnswerSubmitted(is_correct=is_correct))
    new_level = next_box_level(state.box_levels[index], is_correct)
    assert entry is not None
    return transition(state, AnswerRecorded(new_box_level=new_level))


def test_loading_with_no_items_is_empty():
    state = transition(initial_state(), ItemsLoaded(entries=()))

    assert state.status is SessionStatus.EMPTY
    assert state.is_terminal
    assert state.current_entry is None


def test_loading_items_makes_the_session_ready_on_the_first_item():
    state = load(make_entries(3))

    assert state.status is SessionStatus.READY
    assert state.current_entry.vocabulary_id == 1
    assert state.total_count == 3

    presented = transition(state, ItemPresented())
    assert presented.status is SessionStatus.PRESENTING
    assert transition(presented, ItemPresented()) == presented


def test_wrong_then_two_correct_is_not_completed_until_retry():
    state = load(make_entries(3))

    state = answer(state, False)
    state = answer(state, True)
    state = answer(state, True)

    assert state.status is SessionStatus.PRESENTING
    assert not state.is_completed
    assert state.current_entry.vocabulary_id == 1

    state = answer(state, True)
    assert state.status is SessionStatus.COMPLETED
    assert state.answered_count == 4
    assert state.correct_count == 3


def test_failed_item_reappears_after_the_rest_of_the_cycle():
    state = load(make_entries(3))
    state = answer(state, True)  # item 1 cleared
    state = answer(state, False)  # item 2 deferred

    assert state.current_entry.vocabulary_id == 3
    state = answer(state, True)
    assert state.current_entry.vocabulary_id == 2


def test_item_flagged_correct_is_never_presented_again():
    state = load(make_entries(1))
    levels = []
    presented = []
    for _ in range(6):
        if state.is_terminal:
            break
        presented.append(state.current_entry.vocabulary_id)
        state = answer(state, True)
        levels.append(state.box_levels[0])

    assert presented == [1]
    assert state.is_completed
    assert levels == [1]


def test_queue_membership_is_fixed_after_ready():
    state = load(make_entries(4))
    ids = {entry.vocabulary_id for entry in state.queue}

    for is_correct in [False, True, False, True, True, True, True]:
        if state.is_terminal:
            break
        state = answer(state, is_correct)
        assert {entry.vocabulary_id for entry in state.queue} == ids

    assert state.is_completed


def test_session_always_completes_with_eventual_correct_answers():
    state = load(make_entries(5))
    pattern = [False, False, True]
    steps = 0
    while not state.is_terminal:
        state = answer(state, pattern[steps % len(pattern)])
        steps += 1
        assert steps < 100

    assert all(flag is True for flag in state.correct_flags)


def test_answer_recorded_requires_a_submitted_answer():
    state = load(make_entries(2))
    with pytest.raises(InvalidTransitionError):
        transition(state, AnswerRecorded(new_box_level=1))


def test_no_answers_after_completion():
    state = answer(load(make_entries(1)), True)
    assert state.is_completed

    with pytest.raises(InvalidTransitionError):
        transition(state, AnswerSubmitted(is_correct=True))


def test_items_cannot_be_loaded_twice():
    with pytest.raises(InvalidTransitionError):
        transition(load(make_entries(1)), ItemsLoaded(entries=make_entries(2)))


def test_abandon_keeps_recorded_answers():
    state = answer(load(make_entries(2)), True)
    abandoned = transition(state, Abandoned())

    assert abandoned.status is SessionStatus.ABANDONED
    assert abandoned.answered_count == 1
    assert abandoned.is_terminal
    with pytest.raises(InvalidTransitionError):
        transition(abandoned, AnswerSubmitted(is_correct=True))


def test_state_survives_serialization():
    state = answer(load(make_entries(3), has_more=True), False)
    restored = ReviewSessionState.from_payload(state.to_payload())

    assert restored == state
    assert restored.has_more is True
