"""Service layer for the Learning Companion."""

from .tutor_service import TutorService

__all__ = ["TutorService"]
