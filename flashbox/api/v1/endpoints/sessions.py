"""Endpoints driving review sessions."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from flashbox.api.deps import get_current_user, get_review_session_service
from flashbox.db.models.user import User
from flashbox.schemas import (
    SessionAnswerRequest,
    SessionAnswerResponse,
    SessionStartRequest,
    SessionStatusRead,
    VocabularyItemRead,
)
from flashbox.services.review_session import ReviewSessionService


router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionStatusRead, status_code=status.HTTP_201_CREATED)
def start_session(
    *,
    payload: SessionStartRequest,
    service: ReviewSessionService = Depends(get_review_session_service),
    current_user: User = Depends(get_current_user),
) -> SessionStatusRead:
    """Snapshot the learner's due items and open a session over them."""

    summary = service.start_session(
        user=current_user, training_type=payload.training_type, shuffle=payload.shuffle
    )
    return SessionStatusRead.model_validate(summary)


@router.get("/{handle}", response_model=SessionStatusRead)
def get_session_status(
    *,
    handle: str,
    service: ReviewSessionService = Depends(get_review_session_service),
    current_user: User = Depends(get_current_user),
) -> SessionStatusRead:
    return SessionStatusRead.model_validate(service.session_status(user=current_user, handle=handle))


@router.get("/{handle}/current", response_model=VocabularyItemRead | None)
def get_current_item(
    *,
    handle: str,
    service: ReviewSessionService = Depends(get_review_session_service),
    current_user: User = Depends(get_current_user),
) -> VocabularyItemRead | None:
    """Return the item to present next, or null once the session is over."""

    item = service.current_item(user=current_user, handle=handle)
    if item is None:
        return None
    return VocabularyItemRead.model_validate(item)


@router.post("/{handle}/answer", response_model=SessionAnswerResponse)
def answer_current_item(
    *,
    handle: str,
    payload: SessionAnswerRequest,
    service: ReviewSessionService = Depends(get_review_session_service),
    current_user: User = Depends(get_current_user),
) -> SessionAnswerResponse:
    outcome = service.answer(user=current_user, handle=handle, is_correct=payload.is_correct)
    return SessionAnswerResponse.model_validate(outcome)


@router.post("/{handle}/sync", response_model=SessionStatusRead)
def sync_session(
    *,
    handle: str,
    service: ReviewSessionService = Depends(get_review_session_service),
    current_user: User = Depends(get_current_user),
) -> SessionStatusRead:
    """Retry answers that could not be saved yet."""

    return SessionStatusRead.model_validate(service.sync(user=current_user, handle=handle))


@router.delete("/{handle}", status_code=status.HTTP_204_NO_CONTENT)
def abandon_session(
    *,
    handle: str,
    service: ReviewSessionService = Depends(get_review_session_service),
    current_user: User = Depends(get_current_user),
) -> Response:
    service.abandon(user=current_user, handle=handle)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
