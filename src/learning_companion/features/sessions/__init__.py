"""Tutoring session state machine and turn pipeline."""

from .orchestrator import SessionOrchestrator
from .types import (
    Difficulty,
    EncouragementType,
    EnergyLevel,
    PerformanceLevel,
    Session,
    SessionStart,
    SessionState,
    SessionSummary,
    TurnContext,
    TurnResult,
)

__all__ = [
    "Difficulty",
    "EncouragementType",
    "EnergyLevel",
    "PerformanceLevel",
    "Session",
    "SessionOrchestrator",
    "SessionStart",
    "SessionState",
    "SessionSummary",
    "TurnContext",
    "TurnResult",
]
