"""Pydantic models for level progress endpoints."""
from __future__ import annotations

import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict


class LevelProgressRead(BaseModel):
    """Box distribution of one learner's items in a level."""

    user_id: uuid.UUID
    level_id: int
    total_count: int
    box_level_1: int
    box_level_2: int
    box_level_3: int
    box_level_4: int
    box_level_5: int
    box_level_6: int
    is_completed: bool
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
