"""API endpoint modules for v1."""

from flashbox.api.v1.endpoints import levels, sessions, study_status

__all__ = ["levels", "sessions", "study_status"]
