"""Derived per-level progress summary."""
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from flashbox.db.base import Base


class LevelProgressSnapshot(Base):
    """Box level distribution of one learner's items in one level.

    Rows are rebuilt by the level progress aggregator only. ``is_completed`` is
    a ratchet: once a recompute sets it, later recomputes never clear it.
    """

    __tablename__ = "level_progress"
    __table_args__ = (UniqueConstraint("user_id", "level_id", name="uq_level_progress_user_level"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    level_id = Column(Integer, ForeignKey("levels.id", ondelete="CASCADE"), nullable=False, index=True)

    total_count = Column(Integer, nullable=False, default=0)
    box_level_1 = Column(Integer, nullable=False, default=0)
    box_level_2 = Column(Integer, nullable=False, default=0)
    box_level_3 = Column(Integer, nullable=False, default=0)
    box_level_4 = Column(Integer, nullable=False, default=0)
    box_level_5 = Column(Integer, nullable=False, default=0)
    box_level_6 = Column(Integer, nullable=False, default=0)
    is_completed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def box_level_counts(self) -> dict[int, int]:
        return {level: getattr(self, f"box_level_{level}") or 0 for level in range(1, 7)}
