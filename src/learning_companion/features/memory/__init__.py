"""Learner memory: recent sessions, long-term profile and concept mastery."""

from .consolidator import MemoryConsolidator
from .types import (
    ConceptAttempt,
    ConceptMasteryRecord,
    Interest,
    LearningSignals,
    LearningStyle,
    LongTermProfile,
    MemoryContext,
    ShortTermMemoryEntry,
)

__all__ = [
    "ConceptAttempt",
    "ConceptMasteryRecord",
    "Interest",
    "LearningSignals",
    "LearningStyle",
    "LongTermProfile",
    "MemoryConsolidator",
    "MemoryContext",
    "ShortTermMemoryEntry",
]
