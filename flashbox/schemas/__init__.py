"""Pydantic schemas package."""

from flashbox.schemas.auth import TokenPayload
from flashbox.schemas.level import LevelProgressRead
from flashbox.schemas.session import (
    SessionAnswerRequest,
    SessionAnswerResponse,
    SessionStartRequest,
    SessionStatusRead,
)
from flashbox.schemas.study import (
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
from flashbox.schemas.vocabulary import ExamplePair, VocabularyItemRead

__all__ = [
    "ClassifyRequest",
    "CompletionCounts",
    "DueCount",
    "DueItemRead",
    "ExamplePair",
    "HistoryEntryRead",
    "LevelProgressRead",
    "ReviewRequest",
    "ReviewResultRead",
    "SavedLookupRequest",
    "SavedStateRead",
    "SessionAnswerRequest",
    "SessionAnswerResponse",
    "SessionStartRequest",
    "SessionStatusRead",
    "StudyStatusKey",
    "StudyStatusRead",
    "ToggleResponse",
    "TokenPayload",
    "VocabularyItemRead",
]
