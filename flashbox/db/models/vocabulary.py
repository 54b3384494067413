"""Vocabulary reference data: levels and the items they collect."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.types import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from flashbox.core.srs.leitner import TrainingType
from flashbox.db.base import Base
from flashbox.db.types import StringList, TrainingTypeColumn


class Level(Base):
    """A curated collection of items drilled with one training type."""

    __tablename__ = "levels"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    training_type = Column(TrainingTypeColumn, nullable=False, default=TrainingType.WORD_LEARNING, index=True)
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship("VocabularyItem", back_populates="level")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Level code={self.code!r} training_type={self.training_type!r}>"


class VocabularyItem(Base):
    """Read-only vocabulary entry; scheduling never writes to this table."""

    __tablename__ = "vocabulary_items"

    id = Column(Integer, primary_key=True)
    text = Column(String(255), nullable=False, index=True)
    part_of_speech = Column(String(50))
    meanings = Column(StringList, nullable=True)
    # list of {"source": ..., "target": ...} sentence pairs
    examples = Column(JSONB().with_variant(JSON(), "sqlite"), default=list)
    synonyms = Column(StringList, nullable=True)
    notes = Column(Text)

    level_id = Column(Integer, ForeignKey("levels.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    level = relationship("Level", back_populates="items")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<VocabularyItem text={self.text!r} level_id={self.level_id!r}>"
