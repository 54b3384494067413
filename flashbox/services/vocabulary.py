"""Read-only access to vocabulary reference data."""
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from flashbox.db.models.vocabulary import Level, VocabularyItem
from flashbox.utils.exceptions import VocabularyNotFoundError


class VocabularyStore:
    """Query helpers for items and levels; never writes."""

    def __init__(self, db: Session):
        self.db = db

    def get_item(self, item_id: int) -> VocabularyItem:
        """Retrieve a single vocabulary item by identifier."""

        item = self.db.get(VocabularyItem, item_id)
        if not item:
            raise VocabularyNotFoundError("Vocabulary item not found")
        return item

    def get_level(self, level_id: int) -> Level:
        level = self.db.get(Level, level_id)
        if not level:
            raise VocabularyNotFoundError("Level not found")
        return level

    def list_level_items(self, level_id: int) -> list[VocabularyItem]:
        stmt = select(VocabularyItem).where(VocabularyItem.level_id == level_id).order_by(VocabularyItem.id)
        return list(self.db.scalars(stmt))

    def count_level_items(self, level_id: int) -> int:
        stmt = select(func.count()).select_from(VocabularyItem).where(VocabularyItem.level_id == level_id)
        return int(self.db.scalar(stmt) or 0)


__all__ = ["VocabularyNotFoundError", "VocabularyStore"]
