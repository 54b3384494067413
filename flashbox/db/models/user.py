"""User database model."""
from datetime import date
import uuid

from sqlalchemy import Boolean, Column, Date, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from flashbox.db.base import Base


class User(Base):
    """Identity of a learner; credentials are managed by the auth provider."""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255))

    last_activity_date = Column(Date, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    is_active = Column(Boolean, default=True)

    def mark_activity(self, activity_date: date | None = None) -> None:
        """Update last activity metadata."""

        self.last_activity_date = activity_date or date.today()
