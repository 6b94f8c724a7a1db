"""Command-line interface for the Learning Companion."""

from .main import cli, main

__all__ = ["cli", "main"]
