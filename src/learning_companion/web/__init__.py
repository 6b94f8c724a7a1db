"""HTTP surface for the Learning Companion."""

from .tutor_api import create_app, router

__all__ = ["create_app", "router"]
