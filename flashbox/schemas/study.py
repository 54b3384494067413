"""Pydantic models for study status endpoints."""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from flashbox.core.srs.leitner import TrainingType
from flashbox.schemas.vocabulary import VocabularyItemRead


class StudyStatusKey(BaseModel):
    """Identifies one item for one training type."""

    vocabulary_id: int = Field(..., ge=1)
    training_type: TrainingType = TrainingType.VOCABULARY


class ReviewRequest(StudyStatusKey):
    is_correct: bool


class ClassifyRequest(StudyStatusKey):
    known: bool = Field(..., description="True moves the item straight to the top box")


class StudyStatusRead(BaseModel):
    id: uuid.UUID
    vocabulary_id: int
    training_type: TrainingType
    box_level: int
    next_review_date: datetime | None = None
    last_studied_at: datetime | None = None
    is_completed: bool
    delete_flag: bool

    model_config = ConfigDict(from_attributes=True)


class DueItemRead(BaseModel):
    status: StudyStatusRead
    item: VocabularyItemRead

    model_config = ConfigDict(from_attributes=True)


class ReviewResultRead(BaseModel):
    """Box level change produced by a review."""

    vocabulary_id: int
    before_box_level: int
    after_box_level: int
    next_review_date: datetime

    model_config = ConfigDict(from_attributes=True)


class HistoryEntryRead(BaseModel):
    before_box_level: int
    after_box_level: int
    is_correct: bool
    training_type: TrainingType
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ToggleResponse(BaseModel):
    vocabulary_id: int
    is_saved: bool


class DueCount(BaseModel):
    training_type: TrainingType
    due: int


class CompletionCounts(BaseModel):
    completed: int
    learning: int


class SavedStateRead(BaseModel):
    vocabulary_id: int
    training_type: TrainingType
    is_saved: bool


class SavedLookupRequest(BaseModel):
    """Ids to check in one call; unknown ids come back as not saved."""

    vocabulary_ids: list[int] = Field(..., min_length=1, max_length=500)
    training_type: TrainingType = TrainingType.VOCABULARY
