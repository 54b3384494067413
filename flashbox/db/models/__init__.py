"""Database models package."""
from flashbox.db.models.user import User
from flashbox.db.models.vocabulary import Level, VocabularyItem
from flashbox.db.models.study import StudyHistoryEntry, StudyStatus
from flashbox.db.models.level_progress import LevelProgressSnapshot

__all__ = [
    "User",
    "Level",
    "VocabularyItem",
    "StudyStatus",
    "StudyHistoryEntry",
    "LevelProgressSnapshot",
]
