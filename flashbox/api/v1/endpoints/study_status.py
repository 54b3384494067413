"""Endpoints for learner study status rows."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from flashbox.api.deps import (
    get_current_user,
    get_level_progress_aggregator,
    get_study_status_repository,
)
from flashbox.config import settings
from flashbox.core.srs.leitner import TrainingType
from flashbox.db.models.user import User
from flashbox.db.session import get_db
from flashbox.schemas import (
    ClassifyRequest,
    CompletionCounts,
    DueCount,
    DueItemRead,
    HistoryEntryRead,
    ReviewRequest,
    ReviewResultRead,
    SavedLookupRequest,
    SavedStateRead,
    StudyStatusKey,
    StudyStatusRead,
    ToggleResponse,
)
from flashbox.services.level_progress import LevelProgressAggregator, refresh_level_progress
from flashbox.services.study_status import StudyStatusRepository
from flashbox.services.vocabulary import VocabularyNotFoundError, VocabularyStore


router = APIRouter(prefix="/study-status", tags=["study-status"])


def _require_item(db: Session, vocabulary_id: int) -> None:
    try:
        VocabularyStore(db).get_item(vocabulary_id)
    except VocabularyNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("/due", response_model=list[DueItemRead])
def list_due_items(
    *,
    training_type: TrainingType = Query(TrainingType.VOCABULARY),
    limit: int = Query(
        settings.REVIEW_SESSION_BATCH_SIZE, ge=1, le=500, description="Maximum number of due items"
    ),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    current_user: User = Depends(get_current_user),
) -> list[DueItemRead]:
    """Return due items, most overdue first."""

    rows = repository.get_due_items(user_id=current_user.id, training_type=training_type, limit=limit)
    return [DueItemRead.model_validate(row) for row in rows]


@router.get("/due/count", response_model=DueCount)
def count_due_items(
    *,
    training_type: TrainingType = Query(TrainingType.VOCABULARY),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    current_user: User = Depends(get_current_user),
) -> DueCount:
    due = repository.count_due(user_id=current_user.id, training_type=training_type)
    return DueCount(training_type=training_type, due=due)


@router.get("/counts", response_model=CompletionCounts)
def count_by_completion(
    *,
    training_type: TrainingType | None = Query(None),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    current_user: User = Depends(get_current_user),
) -> CompletionCounts:
    """Return how many registered items are completed and how many are still being learned."""

    counts = repository.count_by_completion(user_id=current_user.id, training_type=training_type)
    return CompletionCounts(**counts)


@router.post("", response_model=StudyStatusRead, status_code=status.HTTP_201_CREATED)
def register_item(
    *,
    payload: StudyStatusKey,
    db: Session = Depends(get_db),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    current_user: User = Depends(get_current_user),
) -> StudyStatusRead:
    """Start studying an item; registering twice returns the same row."""

    _require_item(db, payload.vocabulary_id)
    row = repository.ensure_registered(
        user_id=current_user.id,
        vocabulary_id=payload.vocabulary_id,
        training_type=payload.training_type,
    )
    return StudyStatusRead.model_validate(row)


@router.delete("/{vocabulary_id}", status_code=status.HTTP_204_NO_CONTENT)
def unregister_item(
    *,
    vocabulary_id: int,
    training_type: TrainingType = Query(TrainingType.VOCABULARY),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    current_user: User = Depends(get_current_user),
) -> Response:
    removed = repository.unregister(
        user_id=current_user.id, vocabulary_id=vocabulary_id, training_type=training_type
    )
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item is not registered")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{vocabulary_id}/toggle", response_model=ToggleResponse)
def toggle_item(
    *,
    vocabulary_id: int,
    training_type: TrainingType = Query(TrainingType.VOCABULARY),
    db: Session = Depends(get_db),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    current_user: User = Depends(get_current_user),
) -> ToggleResponse:
    """Save an item for study, or unsave it when it is already saved."""

    _require_item(db, vocabulary_id)
    is_saved = repository.toggle_registration(
        user_id=current_user.id, vocabulary_id=vocabulary_id, training_type=training_type
    )
    return ToggleResponse(vocabulary_id=vocabulary_id, is_saved=is_saved)


@router.get("/{vocabulary_id}/history", response_model=list[HistoryEntryRead])
def list_history(
    *,
    vocabulary_id: int,
    training_type: TrainingType = Query(TrainingType.VOCABULARY),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    current_user: User = Depends(get_current_user),
) -> list[HistoryEntryRead]:
    entries = repository.history_for(
        user_id=current_user.id, vocabulary_id=vocabulary_id, training_type=training_type
    )
    return [HistoryEntryRead.model_validate(entry) for entry in entries]


@router.post("/review", response_model=ReviewResultRead)
def record_review(
    *,
    payload: ReviewRequest,
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    aggregator: LevelProgressAggregator = Depends(get_level_progress_aggregator),
    current_user: User = Depends(get_current_user),
) -> ReviewResultRead:
    """Apply one answer outside of a session."""

    result = repository.record_review(
        user_id=current_user.id,
        vocabulary_id=payload.vocabulary_id,
        training_type=payload.training_type,
        is_correct=payload.is_correct,
    )
    refresh_level_progress(aggregator, user_id=current_user.id, level_id=result.level_id)
    return ReviewResultRead.model_validate(result)


@router.post("/classify", response_model=ReviewResultRead)
def classify_item(
    *,
    payload: ClassifyRequest,
    db: Session = Depends(get_db),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    aggregator: LevelProgressAggregator = Depends(get_level_progress_aggregator),
    current_user: User = Depends(get_current_user),
) -> ReviewResultRead:
    """Sort an item as already known or still unknown."""

    _require_item(db, payload.vocabulary_id)
    result = repository.classify(
        user_id=current_user.id,
        vocabulary_id=payload.vocabulary_id,
        training_type=payload.training_type,
        known=payload.known,
    )
    refresh_level_progress(aggregator, user_id=current_user.id, level_id=result.level_id)
    return ReviewResultRead.model_validate(result)


@router.post("/saved", response_model=dict[int, bool])
def lookup_saved_items(
    *,
    payload: SavedLookupRequest,
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    current_user: User = Depends(get_current_user),
) -> dict[int, bool]:
    """Return which of the given items are saved for study."""

    return repository.saved_map(
        user_id=current_user.id,
        vocabulary_ids=payload.vocabulary_ids,
        training_type=payload.training_type,
    )


@router.get("/{vocabulary_id}", response_model=SavedStateRead)
def get_saved_state(
    *,
    vocabulary_id: int,
    training_type: TrainingType = Query(TrainingType.VOCABULARY),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    current_user: User = Depends(get_current_user),
) -> SavedStateRead:
    row = repository.get_status(
        user_id=current_user.id, vocabulary_id=vocabulary_id, training_type=training_type
    )
    return SavedStateRead(vocabulary_id=vocabulary_id, training_type=training_type, is_saved=row is not None)
