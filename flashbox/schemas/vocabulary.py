"""Pydantic schemas for vocabulary items."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExamplePair(BaseModel):
    source: str
    target: Optional[str] = None


class VocabularyItemRead(BaseModel):
    """Representation of a vocabulary item shown during review."""

    id: int
    text: str
    part_of_speech: Optional[str] = None
    meanings: List[str] = Field(default_factory=list)
    examples: List[ExamplePair] = Field(default_factory=list)
    synonyms: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    level_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("meanings", "examples", "synonyms", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []
