"""Service layer package."""

from flashbox.services.level_progress import LevelProgressAggregator
from flashbox.services.review_session import ReviewSessionService
from flashbox.services.study_status import StudyStatusRepository
from flashbox.services.vocabulary import VocabularyStore

__all__ = [
    "LevelProgressAggregator",
    "ReviewSessionService",
    "StudyStatusRepository",
    "VocabularyStore",
]
