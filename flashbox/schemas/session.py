"""Pydantic models for review session endpoints."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field

from flashbox.core.review_session import SessionStatus
from flashbox.core.srs.leitner import TrainingType


class SessionStartRequest(BaseModel):
    training_type: TrainingType = TrainingType.VOCABULARY
    shuffle: bool | None = Field(None, description="Override the configured shuffle setting")


class SessionAnswerRequest(BaseModel):
    is_correct: bool


class SessionStatusRead(BaseModel):
    """Progress of a review session."""

    handle: str
    training_type: TrainingType
    status: SessionStatus
    answered_count: int
    correct_count: int
    total_count: int
    is_completed: bool
    has_more: bool
    unsaved_count: int
    warnings: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SessionAnswerResponse(BaseModel):
    session_status: SessionStatusRead
    new_box_level: int
    saved: bool

    model_config = ConfigDict(from_attributes=True)
