"""
Memory consolidation for the learning companion.

Merges a bounded ring buffer of recent sessions with a long-term learner
profile to produce personalized session context, and folds per-turn learning
signals back into the profile and concept mastery records.
"""

import logging
import random
import re
import time
from collections import deque
from datetime import date, datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Set

from ...core.config import MemoryConfig
from ...core.persistence import BaseDataManager, BestEffortWriter, KeyValueStore
from .analysis import (
    detect_style_indicators,
    detect_traits,
    extract_interest_mentions,
    extract_questions,
)
from .types import (
    ConceptMasteryRecord,
    Interest,
    LearningSignals,
    LongTermProfile,
    MemoryContext,
    ShortTermMemoryEntry,
)

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_:@-]")

SUBJECT_NAMES: Dict[str, str] = {
    "science": "science",
    "math": "math",
    "stories": "story",
    "world": "world explorer",
    "entrepreneur": "business",
}

BASE_GREETINGS = [
    "Hey there! Ready for another awesome {subject} adventure?",
    "Welcome back! I can't wait to explore {subject} with you today!",
    "Hi! Let's discover something amazing in {subject} today!",
]
STREAK_GREETING = "Wow, {streak} days in a row! You're on fire! Let's keep your {subject} streak going!"
ACHIEVEMENT_GREETING = 'Hi! Still proud of your "{achievement}" achievement! Ready for more {subject}?'
RECALL_GREETING = "Hey! Remember when we talked about {topic}? Let's build on that!"
INTEREST_GREETING = "Hey! Want to explore more about {interest} today?"


def _user_key(user_id: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", user_id) or "_"


class MemoryConsolidator(BaseDataManager):
    """Short-term ring buffer plus long-term profile, per learner."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[MemoryConfig] = None,
        writer: Optional[BestEffortWriter] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(store, "MemoryConsolidator", writer)
        self.config = config or MemoryConfig()
        self._clock = clock
        self._rng = rng or random.Random()
        self.profiles: Dict[str, LongTermProfile] = {}
        self.short_term: Dict[str, Deque[ShortTermMemoryEntry]] = {}
        self.mastery: Dict[str, Dict[str, ConceptMasteryRecord]] = {}
        self._loaded: Set[str] = set()

    async def _load_data(self) -> None:
        """Profiles load lazily per user; just report what is on disk."""
        known = await self.store.list("memory/profiles")
        logger.info(f"{len(known)} learner profiles available")

    async def _save_data(self) -> None:
        for user_id in list(self._loaded):
            await self._write_user(user_id)
        await self.writer.flush()

    # ------------------------------------------------------------------
    # Loading and persistence

    async def ensure_loaded(self, user_id: str) -> LongTermProfile:
        """Load a learner's memory from the store on first use."""
        if user_id in self._loaded:
            return self.profiles[user_id]

        key = _user_key(user_id)
        raw_profile = await self.store.get(f"memory/profiles/{key}")
        raw_recent = await self.store.get(f"memory/short_term/{key}", [])
        raw_mastery = await self.store.get(f"memory/mastery/{key}", {})

        profile = (
            LongTermProfile.from_dict(raw_profile)
            if raw_profile
            else LongTermProfile(user_id=user_id)
        )
        self.profiles[user_id] = profile
        self.short_term[user_id] = deque(
            (ShortTermMemoryEntry.from_dict(e) for e in raw_recent),
            maxlen=self.config.short_term_capacity,
        )
        self.mastery[user_id] = {
            concept: ConceptMasteryRecord.from_dict(r) for concept, r in raw_mastery.items()
        }
        self._loaded.add(user_id)
        logger.debug(f"Loaded memory for {user_id} ({len(self.short_term[user_id])} recent sessions)")
        return profile

    def _persist(self, user_id: str) -> None:
        key = _user_key(user_id)
        profile = self.profiles[user_id].to_dict()
        recent = [e.to_dict() for e in self.short_term[user_id]]
        mastery = {c: r.to_dict() for c, r in self.mastery[user_id].items()}

        async def write() -> None:
            await self.store.put(f"memory/profiles/{key}", profile)
            await self.store.put(f"memory/short_term/{key}", recent)
            await self.store.put(f"memory/mastery/{key}", mastery)

        self.writer.submit(f"memory for {user_id}", write, key=f"memory/{key}")

    async def _write_user(self, user_id: str) -> None:
        key = _user_key(user_id)
        await self.store.put(f"memory/profiles/{key}", self.profiles[user_id].to_dict())
        await self.store.put(
            f"memory/short_term/{key}", [e.to_dict() for e in self.short_term[user_id]]
        )
        await self.store.put(
            f"memory/mastery/{key}",
            {c: r.to_dict() for c, r in self.mastery[user_id].items()},
        )

    # ------------------------------------------------------------------
    # Context building

    def _ranked_interests(self, profile: LongTermProfile) -> List[Interest]:
        now = self._clock()
        decay = self.config.interest_decay_days
        live = [i for i in profile.interests if i.effective_strength(now, decay) > 0]
        return sorted(
            live,
            key=lambda i: (-i.effective_strength(now, decay), -i.last_mentioned),
        )

    def suggested_topics(self, user_id: str) -> List[str]:
        profile = self.profiles[user_id]
        ranked = self._ranked_interests(profile)
        return [i.topic for i in ranked[: self.config.max_suggestions]]

    def avoid_topics(self, user_id: str) -> List[str]:
        """Topics covered in the last few sessions, first-seen order, newest session first."""
        recent = list(self.short_term[user_id])[-self.config.avoid_recent_sessions :]
        avoid: List[str] = []
        for entry in reversed(recent):
            for topic in entry.topics:
                if topic not in avoid:
                    avoid.append(topic)
        return avoid

    def _greeting(self, user_id: str, module: str) -> str:
        profile = self.profiles[user_id]
        subject = SUBJECT_NAMES.get(module, module)
        candidates: List[str] = []

        if profile.streak_days > 3:
            candidates.append(
                STREAK_GREETING.format(streak=profile.streak_days, subject=subject)
            )
        if profile.achievements:
            candidates.append(
                ACHIEVEMENT_GREETING.format(
                    achievement=profile.achievements[-1], subject=subject
                )
            )
        recent = self.short_term[user_id]
        if recent and recent[-1].topics:
            candidates.append(RECALL_GREETING.format(topic=recent[-1].topics[0]))
        ranked = self._ranked_interests(profile)
        if ranked:
            candidates.append(INTEREST_GREETING.format(interest=ranked[0].topic))

        if not candidates:
            candidates = [g.format(subject=subject) for g in BASE_GREETINGS]
        return self._rng.choice(candidates)

    async def build_context(self, user_id: str, module: str = "general") -> MemoryContext:
        """Greeting, ranked suggestions and an avoid-list for a new session."""
        profile = await self.ensure_loaded(user_id)
        recent = list(self.short_term[user_id])
        return MemoryContext(
            user_id=user_id,
            greeting=self._greeting(user_id, module),
            suggested_topics=self.suggested_topics(user_id),
            avoid_topics=self.avoid_topics(user_id),
            recent_sessions=recent[-self.config.avoid_recent_sessions :],
            interests=[i.topic for i in self._ranked_interests(profile)],
            mastery={c: r.level for c, r in self.mastery[user_id].items()},
        )

    # ------------------------------------------------------------------
    # Updates

    def _update_interests(self, profile: LongTermProfile, utterance: str, now: float) -> None:
        for topic in extract_interest_mentions(utterance):
            interest = profile.get_interest(topic)
            if interest is None:
                interest = Interest(topic=topic, discovered_at=now)
                profile.interests.append(interest)
            interest.mention_count += 1
            interest.strength = min(10, interest.mention_count * 2)
            interest.last_mentioned = now

        profile.interests.sort(key=lambda i: (-i.strength, -i.last_mentioned))
        del profile.interests[self.config.max_interests :]

    def _update_traits(self, profile: LongTermProfile, utterance: str) -> None:
        for trait in detect_traits(utterance):
            profile.trait_counts[trait] = profile.trait_counts.get(trait, 0) + 1
            if (
                profile.trait_counts[trait] > self.config.trait_min_matches
                and trait not in profile.personality_traits
            ):
                profile.personality_traits.append(trait)

    def _update_challenges(self, profile: LongTermProfile, record: ConceptMasteryRecord) -> None:
        challenging = (
            not record.mastered
            and record.attempts >= self.config.challenge_min_attempts
            and record.accuracy < self.config.challenge_max_accuracy
        )
        if challenging and record.concept not in profile.challenging_concepts:
            profile.challenging_concepts.append(record.concept)
        elif not challenging and record.concept in profile.challenging_concepts:
            profile.challenging_concepts.remove(record.concept)

    async def update_long_term(self, user_id: str, signals: LearningSignals) -> List[str]:
        """Fold learning signals into the profile. Returns newly mastered concepts."""
        profile = await self.ensure_loaded(user_id)
        now = self._clock()

        for utterance in signals.utterances:
            self._update_interests(profile, utterance, now)
            for style in detect_style_indicators(utterance):
                profile.learning_style.counts[style] = (
                    profile.learning_style.counts.get(style, 0) + 1
                )
            self._update_traits(profile, utterance)
            for question in extract_questions(utterance):
                profile.question_counts[question] = profile.question_counts.get(question, 0) + 1
        profile.learning_style.recompute()

        for topic in signals.topics:
            profile.topic_counts[topic] = profile.topic_counts.get(topic, 0) + 1

        newly_mastered: List[str] = []
        records = self.mastery[user_id]
        for attempt in signals.concept_attempts:
            record = records.get(attempt.concept)
            if record is None:
                record = ConceptMasteryRecord(concept=attempt.concept, module=attempt.module)
                records[attempt.concept] = record
            if record.record_attempt(
                attempt.correct,
                now,
                min_attempts=self.config.mastery_min_attempts,
                required_accuracy=self.config.mastery_accuracy,
                confidence_increment=self.config.confidence_increment,
            ):
                newly_mastered.append(attempt.concept)
                logger.info(
                    f"{user_id} mastered {attempt.concept} after "
                    f"{record.hours_to_mastery:.1f}h"
                )
            self._update_challenges(profile, record)

        for achievement in signals.achievements:
            if achievement not in profile.achievements:
                profile.achievements.append(achievement)

        profile.updated_at = now
        self._persist(user_id)
        return newly_mastered

    def _advance_streak(self, profile: LongTermProfile, when: float) -> None:
        today = datetime.fromtimestamp(when).date()
        last = date.fromisoformat(profile.last_session_day) if profile.last_session_day else None
        if last == today:
            return
        if last is not None and last == today - timedelta(days=1):
            profile.streak_days += 1
        else:
            profile.streak_days = 1
        profile.last_session_day = today.isoformat()

    async def record_session(self, user_id: str, entry: ShortTermMemoryEntry) -> None:
        """Push a finished session into the ring buffer (oldest falls off)."""
        profile = await self.ensure_loaded(user_id)
        self.short_term[user_id].append(entry)
        self._advance_streak(profile, entry.date)
        self._persist(user_id)

    def get_mastery(self, user_id: str, concept: str) -> Optional[ConceptMasteryRecord]:
        return self.mastery.get(user_id, {}).get(concept)

    # ------------------------------------------------------------------
    # Prompt injection

    async def generate_memory_prompt(self, user_id: str) -> str:
        """Compact learner profile block appended to the tutor instructions."""
        profile = await self.ensure_loaded(user_id)
        style = profile.learning_style
        interests = [i.topic for i in self._ranked_interests(profile)[:5]]
        recent = list(self.short_term[user_id])[-self.config.avoid_recent_sessions :]
        strengths = [c for c, r in self.mastery[user_id].items() if r.mastered or r.level > 70]

        lines = [
            "LEARNER PROFILE:",
            f"Learning style: {style.primary} learner who likes "
            f"{', '.join(style.preferred_activities[:3])}",
            f"Interests: {', '.join(interests) or 'exploring various topics'}",
        ]
        if recent:
            lines.append("Recent learning:")
            for entry in reversed(recent):
                lines.append(f"- {entry.module}: {', '.join(entry.topics[:2]) or 'general chat'}")
        else:
            lines.append("Recent learning: starting fresh today")
        lines.append(f"Strengths: {', '.join(strengths) or 'building confidence'}")
        lines.append(
            f"Areas for growth: {', '.join(profile.challenging_concepts[:2]) or 'none identified'}"
        )
        lines.append(
            f"Traits: {', '.join(profile.personality_traits) or 'curious and eager to learn'}"
        )
        avoid = self.avoid_topics(user_id)
        if avoid:
            lines.append(f"Avoid repeating: {', '.join(avoid)}")
        return "\n".join(lines)
