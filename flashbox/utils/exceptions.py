"""Custom exception classes and error handling utilities."""
from typing import Any, Dict, Optional
from fastapi import HTTPException, status
from loguru import logger


class FlashboxException(Exception):
    """Base exception for the application."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotAuthenticatedError(FlashboxException):
    """No valid user context is available for the operation."""
    pass


class StudyStatusNotFoundError(FlashboxException):
    """No active study status exists for the requested key."""
    pass


class VocabularyNotFoundError(FlashboxException):
    """A vocabulary item or level does not exist."""
    pass


class ConcurrentModificationError(FlashboxException):
    """A concurrent writer won a race on the same study status row."""
    pass


class PersistenceUnavailableError(FlashboxException):
    """The database could not be reached or failed mid-operation."""
    pass


class AggregationFailureError(FlashboxException):
    """Level progress could not be recomputed."""
    pass


class SessionError(FlashboxException):
    """Review session related errors."""
    pass


class SessionNotFoundError(SessionError):
    """The review session handle is unknown, expired or owned by someone else."""
    pass


class InvalidTransitionError(SessionError):
    """An event does not apply to the review session's current status."""
    pass


def handle_not_authenticated(error: NotAuthenticatedError) -> HTTPException:
    """Handle missing or invalid user context."""
    logger.warning(f"Authentication error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=error.message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def handle_not_found(
    error: StudyStatusNotFoundError | SessionNotFoundError | VocabularyNotFoundError,
) -> HTTPException:
    """Handle lookups that found nothing."""
    logger.info(f"Not found: {error.message}")
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "message": error.message,
            "details": error.details
        }
    )


def handle_conflict(error: ConcurrentModificationError | InvalidTransitionError) -> HTTPException:
    """Handle lost races and out-of-order session events."""
    logger.warning(f"Conflict: {error.message}")
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": error.message,
            "details": error.details
        }
    )


def handle_persistence_unavailable(error: PersistenceUnavailableError) -> HTTPException:
    """Handle database outages."""
    logger.error(f"Persistence error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Study data is temporarily unavailable. Please try again later."
    )


def handle_aggregation_failure(error: AggregationFailureError) -> HTTPException:
    """Handle level progress that could not be rebuilt."""
    logger.error(f"Aggregation error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Level progress is temporarily unavailable."
    )


def handle_session_error(error: SessionError) -> HTTPException:
    """Handle review session errors."""
    if isinstance(error, SessionNotFoundError):
        return handle_not_found(error)
    if isinstance(error, InvalidTransitionError):
        return handle_conflict(error)
    logger.error(f"Session error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=error.message
    )


def to_http_exception(error: FlashboxException) -> HTTPException:
    """Map a domain error onto the matching HTTP response."""
    if isinstance(error, NotAuthenticatedError):
        return handle_not_authenticated(error)
    if isinstance(error, (StudyStatusNotFoundError, VocabularyNotFoundError)):
        return handle_not_found(error)
    if isinstance(error, ConcurrentModificationError):
        return handle_conflict(error)
    if isinstance(error, PersistenceUnavailableError):
        return handle_persistence_unavailable(error)
    if isinstance(error, AggregationFailureError):
        return handle_aggregation_failure(error)
    if isinstance(error, SessionError):
        return handle_session_error(error)
    logger.error(f"Unhandled application error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=error.message
    )
