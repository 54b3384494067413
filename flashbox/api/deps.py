"""Shared API dependencies."""
from __future__ import annotations

import uuid

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from pydantic import ValidationError
from sqlalchemy.orm import Session

from flashbox.config import settings
from flashbox.core.security import InvalidTokenError, decode_token
from flashbox.db.models.user import User
from flashbox.db.session import get_db
from flashbox.schemas import TokenPayload
from flashbox.services.level_progress import LevelProgressAggregator
from flashbox.services.review_session import ReviewSessionService
from flashbox.services.study_status import StudyStatusRepository
from flashbox.utils.exceptions import NotAuthenticatedError, handle_not_authenticated

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token", auto_error=False)


def get_current_user(
    token: str | None = Depends(oauth2_scheme), db: Session = Depends(get_db)
) -> User:
    """Resolve the authenticated user from the Authorization header."""

    if not token:
        raise handle_not_authenticated(NotAuthenticatedError("Not authenticated"))

    try:
        payload = decode_token(token)
        if payload.get("type") != "access":
            raise InvalidTokenError("Token must be an access token")
        token_data = TokenPayload.model_validate(payload)
    except (InvalidTokenError, ValidationError, ValueError, KeyError) as exc:
        raise handle_not_authenticated(NotAuthenticatedError("Could not validate credentials")) from exc

    user = db.get(User, uuid.UUID(str(token_data.sub)))
    if not user or not user.is_active:
        raise handle_not_authenticated(NotAuthenticatedError("Could not validate credentials"))
    return user


def get_study_status_repository(db: Session = Depends(get_db)) -> StudyStatusRepository:
    return StudyStatusRepository(db)


def get_level_progress_aggregator(db: Session = Depends(get_db)) -> LevelProgressAggregator:
    return LevelProgressAggregator(db)


def get_review_session_service(
    db: Session = Depends(get_db),
    repository: StudyStatusRepository = Depends(get_study_status_repository),
    aggregator: LevelProgressAggregator = Depends(get_level_progress_aggregator),
) -> ReviewSessionService:
    """Assemble the review session service with request-scoped dependencies."""

    return ReviewSessionService(db, repository=repository, aggregator=aggregator)
