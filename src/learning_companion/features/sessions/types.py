"""
Session data types for tutoring conversations.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from ...core.exceptions import InvalidSessionStateError
from ...core.llm import ChatMessage


class SessionState(Enum):
    """Lifecycle of a tutoring session."""

    CREATED = "created"
    ACTIVE = "active"
    BREAK_SUGGESTED = "break_suggested"
    ENDED = "ended"


ALLOWED_TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.CREATED: {SessionState.ACTIVE, SessionState.ENDED},
    SessionState.ACTIVE: {SessionState.BREAK_SUGGESTED, SessionState.ENDED},
    SessionState.BREAK_SUGGESTED: {SessionState.ACTIVE, SessionState.ENDED},
    SessionState.ENDED: set(),
}


class EnergyLevel(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PerformanceLevel(Enum):
    STRUGGLING = "struggling"
    PROGRESSING = "progressing"
    EXCELLING = "excelling"


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class EncouragementType(Enum):
    CELEBRATION = "celebration"
    MOTIVATION = "motivation"
    GENTLE_NUDGE = "gentle-nudge"
    BREAK_SUGGESTION = "break-suggestion"


@dataclass
class Session:
    """One continuous tutoring interaction for a module."""

    session_id: str
    user_id: str
    module: str
    started_at: float = field(default_factory=time.time)
    last_interaction_at: float = field(default_factory=time.time)
    state: SessionState = SessionState.CREATED
    energy_level: EnergyLevel = EnergyLevel.HIGH
    performance_level: PerformanceLevel = PerformanceLevel.PROGRESSING
    message_count: int = 0
    topics_discussed: List[str] = field(default_factory=list)
    mastered_concepts: Set[str] = field(default_factory=set)
    review_concepts: Set[str] = field(default_factory=set)
    mission_progress_pct: int = 0
    break_suggested: bool = False
    total_xp: int = 0
    history: List[ChatMessage] = field(default_factory=list)
    utterances: List[str] = field(default_factory=list)
    pending_replays: List[str] = field(default_factory=list)
    break_notice_pending: bool = False

    def transition(self, target: SessionState) -> None:
        """Move to ``target``; raises ``InvalidSessionStateError`` if not allowed."""
        if target is self.state:
            return
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidSessionStateError(self.session_id, self.state.value, target.value)
        self.state = target

    def mark_break(self) -> bool:
        """Flag the break suggestion. Returns False if it was already flagged."""
        if self.break_suggested:
            return False
        self.break_suggested = True
        self.transition(SessionState.BREAK_SUGGESTED)
        return True

    def add_topics(self, topics: List[str]) -> None:
        for topic in topics:
            if topic not in self.topics_discussed:
                self.topics_discussed.append(topic)

    @property
    def is_open(self) -> bool:
        return self.state is not SessionState.ENDED

    def elapsed_minutes(self, now: float) -> float:
        return (now - self.started_at) / 60

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "module": self.module,
            "started_at": self.started_at,
            "last_interaction_at": self.last_interaction_at,
            "state": self.state.value,
            "energy_level": self.energy_level.value,
            "performance_level": self.performance_level.value,
            "message_count": self.message_count,
            "topics_discussed": self.topics_discussed,
            "mastered_concepts": sorted(self.mastered_concepts),
            "review_concepts": sorted(self.review_concepts),
            "mission_progress_pct": self.mission_progress_pct,
            "break_suggested": self.break_suggested,
            "total_xp": self.total_xp,
        }


@dataclass
class SessionStart:
    """Result of starting a session."""

    session_id: str
    greeting: str
    suggested_topics: List[str] = field(default_factory=list)
    avoid_topics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "greeting": self.greeting,
            "suggested_topics": self.suggested_topics,
            "avoid_topics": self.avoid_topics,
        }


@dataclass
class TurnContext:
    """Enriched view of one utterance, handed to the request optimizer."""

    session_id: str
    user_id: str
    module: str
    utterance: str
    energy_level: EnergyLevel
    performance_level: PerformanceLevel
    difficulty: Difficulty
    encouragement_type: Optional[EncouragementType]
    break_triggered: bool
    detected_topics: List[str]
    message_count: int
    elapsed_minutes: float
    history: List[ChatMessage] = field(default_factory=list)


@dataclass
class TurnResult:
    """What the learner gets back for one utterance."""

    session_id: str
    reply: str
    xp_delta: int = 0
    cache_hit: bool = False
    difficulty: str = Difficulty.MEDIUM.value
    encouragement_type: Optional[str] = None
    break_suggested: bool = False
    error_kind: Optional[str] = None
    fallback: Optional[Dict[str, Any]] = None
    retry_after_s: Optional[int] = None
    tier: Optional[str] = None
    replayed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "reply": self.reply,
            "xp_delta": self.xp_delta,
            "cache_hit": self.cache_hit,
            "difficulty": self.difficulty,
            "encouragement_type": self.encouragement_type,
            "break_suggested": self.break_suggested,
            "error_kind": self.error_kind,
            "fallback": self.fallback,
            "retry_after_s": self.retry_after_s,
            "tier": self.tier,
            "replayed": self.replayed,
        }


@dataclass
class SessionSummary:
    """End-of-session report."""

    session_id: str
    user_id: str
    module: str
    started_at: float
    duration_minutes: int
    topics_learned: List[str]
    concepts_mastered: List[str]
    concepts_to_review: List[str]
    key_insights: List[str]
    energy_level: str
    performance_level: str
    total_xp: int
    message_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "module": self.module,
            "started_at": self.started_at,
            "duration_minutes": self.duration_minutes,
            "topics_learned": self.topics_learned,
            "concepts_mastered": self.concepts_mastered,
            "concepts_to_review": self.concepts_to_review,
            "key_insights": self.key_insights,
            "energy_level": self.energy_level,
            "performance_level": self.performance_level,
            "total_xp": self.total_xp,
            "message_count": self.message_count,
        }
