"""Per-learner scheduling state and its review history."""
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from flashbox.core.srs.leitner import MAX_BOX_LEVEL, MIN_BOX_LEVEL, TrainingType
from flashbox.db.base import Base
from flashbox.db.types import TrainingTypeColumn


class StudyStatus(Base):
    """Leitner scheduling record for one (user, item, training type)."""

    __tablename__ = "study_status"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "vocabulary_id", "training_type", name="uq_study_status_user_item_type"
        ),
        CheckConstraint(
            f"box_level >= {MIN_BOX_LEVEL} AND box_level <= {MAX_BOX_LEVEL}",
            name="box_level_range",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    vocabulary_id = Column(
        Integer, ForeignKey("vocabulary_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    training_type = Column(TrainingTypeColumn, nullable=False, default=TrainingType.VOCABULARY)

    box_level = Column(Integer, nullable=False, default=MIN_BOX_LEVEL)
    next_review_date = Column(DateTime(timezone=True), nullable=True, index=True)
    last_studied_at = Column(DateTime(timezone=True), nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    delete_flag = Column(Boolean, nullable=False, default=False)
    # bumped on every scheduling write; guards the compare-and-swap update
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", backref="study_statuses")
    item = relationship("VocabularyItem")
    history = relationship(
        "StudyHistoryEntry",
        back_populates="study_status",
        order_by="StudyHistoryEntry.created_at",
        lazy="selectin",
        passive_deletes="all",
    )

    def revive(self, now: datetime) -> None:
        """Clear the soft-delete flag, keeping the scheduling state."""

        self.delete_flag = False
        self.updated_at = now

    def soft_delete(self, now: datetime) -> None:
        self.delete_flag = True
        self.updated_at = now


class StudyHistoryEntry(Base):
    """Immutable audit row written once per review action."""

    __tablename__ = "study_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    study_status_id = Column(
        UUID(as_uuid=True), ForeignKey("study_status.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    vocabulary_id = Column(Integer, nullable=False)
    before_box_level = Column(Integer, nullable=False)
    after_box_level = Column(Integer, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    training_type = Column(TrainingTypeColumn, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    study_status = relationship("StudyStatus", back_populates="history")


class HistoryImmutableError(RuntimeError):
    """Raised when code tries to change a written history entry."""


@event.listens_for(StudyHistoryEntry, "before_update")
def _reject_history_update(mapper, connection, target):
    raise HistoryImmutableError("Study history entries are append-only")


@event.listens_for(StudyHistoryEntry, "before_delete")
def _reject_history_delete(mapper, connection, target):
    raise HistoryImmutableError("Study history entries are append-only")
