"""Celery tasks package."""

from flashbox.tasks import level_progress

__all__ = ["level_progress"]
