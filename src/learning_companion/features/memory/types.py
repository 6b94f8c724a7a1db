"""
Memory data types for the learning companion.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

LEARNING_STYLES = ("visual", "auditory", "kinesthetic", "reading")

PREFERRED_ACTIVITIES: Dict[str, List[str]] = {
    "visual": ["drawing", "diagrams", "videos", "color-coding", "mind maps"],
    "auditory": ["discussions", "explanations", "songs", "rhymes", "storytelling"],
    "kinesthetic": ["experiments", "building", "games", "role-play", "hands-on projects"],
    "reading": ["stories", "writing", "journaling", "research", "note-taking"],
}


@dataclass
class ShortTermMemoryEntry:
    """What happened in one finished session."""

    session_id: str
    date: float
    module: str
    topics: List[str] = field(default_factory=list)
    mistakes: List[str] = field(default_factory=list)
    vocabulary_used: List[str] = field(default_factory=list)
    energy: str = "medium"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "date": self.date,
            "module": self.module,
            "topics": self.topics,
            "mistakes": self.mistakes,
            "vocabulary_used": self.vocabulary_used,
            "energy": self.energy,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShortTermMemoryEntry":
        return cls(
            session_id=data["session_id"],
            date=data["date"],
            module=data["module"],
            topics=list(data.get("topics", [])),
            mistakes=list(data.get("mistakes", [])),
            vocabulary_used=list(data.get("vocabulary_used", [])),
            energy=data.get("energy", "medium"),
        )


@dataclass
class Interest:
    """A topic the learner has shown enthusiasm for."""

    topic: str
    strength: int = 0  # 0-10
    mention_count: int = 0
    discovered_at: float = 0.0
    last_mentioned: float = 0.0

    def effective_strength(self, now: float, decay_days: float) -> int:
        """Strength minus one point per ``decay_days`` since the last mention."""
        if decay_days <= 0:
            return self.strength
        idle_days = max(0.0, now - self.last_mentioned) / 86400
        return max(0, self.strength - int(idle_days // decay_days))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "strength": self.strength,
            "mention_count": self.mention_count,
            "discovered_at": self.discovered_at,
            "last_mentioned": self.last_mentioned,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Interest":
        return cls(
            topic=data["topic"],
            strength=data.get("strength", 0),
            mention_count=data.get("mention_count", 0),
            discovered_at=data.get("discovered_at", 0.0),
            last_mentioned=data.get("last_mentioned", 0.0),
        )


@dataclass
class LearningStyle:
    """Primary and secondary channel derived from cumulative indicator counts."""

    primary: str = "visual"
    secondary: Optional[str] = None
    counts: Dict[str, int] = field(
        default_factory=lambda: {style: 0 for style in LEARNING_STYLES}
    )

    @property
    def preferred_activities(self) -> List[str]:
        return list(PREFERRED_ACTIVITIES.get(self.primary, PREFERRED_ACTIVITIES["visual"]))

    def recompute(self) -> None:
        if not any(self.counts.values()):
            return
        # stable sort keeps LEARNING_STYLES order on ties
        ranked = sorted(LEARNING_STYLES, key=lambda s: -self.counts.get(s, 0))
        self.primary = ranked[0]
        self.secondary = ranked[1]

    def to_dict(self) -> Dict[str, Any]:
        return {"primary": self.primary, "secondary": self.secondary, "counts": self.counts}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningStyle":
        style = cls(primary=data.get("primary", "visual"), secondary=data.get("secondary"))
        style.counts.update(data.get("counts", {}))
        return style


@dataclass
class ConceptMasteryRecord:
    """Accuracy history for one concept. ``mastered`` only ever goes False -> True."""

    concept: str
    module: str
    attempts: int = 0
    correct_attempts: int = 0
    level: float = 0.0  # 0-100, weighted average of attempt performance
    confidence: int = 0  # 0-100
    mastered: bool = False
    first_seen_at: float = 0.0
    last_practiced: float = 0.0
    hours_to_mastery: Optional[float] = None

    @property
    def accuracy(self) -> float:
        return self.correct_attempts / self.attempts if self.attempts else 0.0

    def record_attempt(
        self,
        correct: bool,
        now: float,
        min_attempts: int = 5,
        required_accuracy: float = 0.8,
        confidence_increment: int = 5,
    ) -> bool:
        """Record one attempt. Returns True when this attempt newly masters the concept."""
        if self.attempts == 0 and not self.first_seen_at:
            self.first_seen_at = now
        self.attempts += 1
        if correct:
            self.correct_attempts += 1

        performance = 100.0 if correct else 0.0
        self.level = self.level * 0.7 + performance * 0.3
        self.confidence = min(100, self.confidence + confidence_increment)
        self.last_practiced = now

        if self.mastered:
            return False
        if self.attempts >= min_attempts and self.accuracy >= required_accuracy:
            self.mastered = True
            self.hours_to_mastery = (now - self.first_seen_at) / 3600
            return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "concept": self.concept,
            "module": self.module,
            "attempts": self.attempts,
            "correct_attempts": self.correct_attempts,
            "level": self.level,
            "confidence": self.confidence,
            "mastered": self.mastered,
            "first_seen_at": self.first_seen_at,
            "last_practiced": self.last_practiced,
            "hours_to_mastery": self.hours_to_mastery,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConceptMasteryRecord":
        return cls(
            concept=data["concept"],
            module=data.get("module", "general"),
            attempts=data.get("attempts", 0),
            correct_attempts=data.get("correct_attempts", 0),
            level=data.get("level", 0.0),
            confidence=data.get("confidence", 0),
            mastered=data.get("mastered", False),
            first_seen_at=data.get("first_seen_at", 0.0),
            last_practiced=data.get("last_practiced", 0.0),
            hours_to_mastery=data.get("hours_to_mastery"),
        )


@dataclass
class LongTermProfile:
    """Everything remembered about a learner across sessions."""

    user_id: str
    interests: List[Interest] = field(default_factory=list)
    learning_style: LearningStyle = field(default_factory=LearningStyle)
    topic_counts: Dict[str, int] = field(default_factory=dict)
    challenging_concepts: List[str] = field(default_factory=list)
    personality_traits: List[str] = field(default_factory=list)
    trait_counts: Dict[str, int] = field(default_factory=dict)
    question_counts: Dict[str, int] = field(default_factory=dict)
    achievements: List[str] = field(default_factory=list)
    streak_days: int = 0
    last_session_day: Optional[str] = None
    updated_at: float = 0.0

    @property
    def favorite_topics(self) -> List[str]:
        ranked = sorted(self.topic_counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return [topic for topic, _ in ranked[:5]]

    @property
    def recurring_questions(self) -> List[str]:
        repeated = [(q, n) for q, n in self.question_counts.items() if n > 1]
        repeated.sort(key=lambda qn: -qn[1])
        return [q for q, _ in repeated[:10]]

    def get_interest(self, topic: str) -> Optional[Interest]:
        for interest in self.interests:
            if interest.topic == topic:
                return interest
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "interests": [i.to_dict() for i in self.interests],
            "learning_style": self.learning_style.to_dict(),
            "topic_counts": self.topic_counts,
            "challenging_concepts": self.challenging_concepts,
            "personality_traits": self.personality_traits,
            "trait_counts": self.trait_counts,
            "question_counts": self.question_counts,
            "achievements": self.achievements,
            "streak_days": self.streak_days,
            "last_session_day": self.last_session_day,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LongTermProfile":
        return cls(
            user_id=data["user_id"],
            interests=[Interest.from_dict(i) for i in data.get("interests", [])],
            learning_style=LearningStyle.from_dict(data.get("learning_style", {})),
            topic_counts=dict(data.get("topic_counts", {})),
            challenging_concepts=list(data.get("challenging_concepts", [])),
            personality_traits=list(data.get("personality_traits", [])),
            trait_counts=dict(data.get("trait_counts", {})),
            question_counts=dict(data.get("question_counts", {})),
            achievements=list(data.get("achievements", [])),
            streak_days=data.get("streak_days", 0),
            last_session_day=data.get("last_session_day"),
            updated_at=data.get("updated_at", 0.0),
        )


@dataclass
class ConceptAttempt:
    """One observed try at a concept."""

    concept: str
    module: str
    correct: bool


@dataclass
class LearningSignals:
    """Observations from a turn or session fed into the long-term profile."""

    utterances: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    concept_attempts: List[ConceptAttempt] = field(default_factory=list)
    achievements: List[str] = field(default_factory=list)


@dataclass
class MemoryContext:
    """Personalized context for the start of a session."""

    user_id: str
    greeting: str
    suggested_topics: List[str]
    avoid_topics: List[str]
    recent_sessions: List[ShortTermMemoryEntry] = field(default_factory=list)
    interests: List[str] = field(default_factory=list)
    mastery: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "greeting": self.greeting,
            "suggested_topics": self.suggested_topics,
            "avoid_topics": self.avoid_topics,
            "recent_sessions": [s.to_dict() for s in self.recent_sessions],
            "interests": self.interests,
            "mastery": self.mastery,
        }
