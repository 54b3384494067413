"""Endpoints for per-level progress."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from flashbox.api.deps import get_current_user, get_level_progress_aggregator
from flashbox.db.models.user import User
from flashbox.db.session import get_db
from flashbox.schemas import LevelProgressRead, VocabularyItemRead
from flashbox.services.level_progress import LevelProgressAggregator
from flashbox.services.vocabulary import VocabularyNotFoundError, VocabularyStore


router = APIRouter(prefix="/levels", tags=["levels"])


def _require_level(db: Session, level_id: int) -> None:
    try:
        VocabularyStore(db).get_level(level_id)
    except VocabularyNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("/{level_id}/progress", response_model=LevelProgressRead)
def get_level_progress(
    *,
    level_id: int,
    db: Session = Depends(get_db),
    aggregator: LevelProgressAggregator = Depends(get_level_progress_aggregator),
    current_user: User = Depends(get_current_user),
) -> LevelProgressRead:
    """Return the learner's box distribution for a level."""

    _require_level(db, level_id)
    snapshot = aggregator.get_level_progress(user_id=current_user.id, level_id=level_id)
    return LevelProgressRead.model_validate(snapshot)


@router.post("/{level_id}/progress/recompute", response_model=LevelProgressRead)
def recompute_level_progress(
    *,
    level_id: int,
    db: Session = Depends(get_db),
    aggregator: LevelProgressAggregator = Depends(get_level_progress_aggregator),
    current_user: User = Depends(get_current_user),
) -> LevelProgressRead:
    _require_level(db, level_id)
    snapshot = aggregator.recompute(user_id=current_user.id, level_id=level_id)
    return LevelProgressRead.model_validate(snapshot)


@router.get("/{level_id}/items", response_model=list[VocabularyItemRead])
def list_level_items(
    *,
    level_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[VocabularyItemRead]:
    """Return every item collected in a level."""

    _require_level(db, level_id)
    items = VocabularyStore(db).list_level_items(level_id)
    return [VocabularyItemRead.model_validate(item) for item in items]
