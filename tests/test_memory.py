"""
Tests for the memory consolidator.
"""

import random

import pytest

from learning_companion.core.config.runtime import MemoryConfig
from learning_companion.core.persistence import InMemoryStore
from learning_companion.features.memory import (
    ConceptAttempt,
    LearningSignals,
    MemoryConsolidator,
    ShortTermMemoryEntry,
)
from learning_companion.features.memory.analysis import (
    detect_style_indicators,
    detect_traits,
    extract_interest_mentions,
    extract_questions,
)
from learning_companion.features.memory.consolidator import BASE_GREETINGS

DAY = 86400


def _memory(store: InMemoryStore, clock, config: MemoryConfig = None) -> MemoryConsolidator:
    return MemoryConsolidator(store, config, clock=clock, rng=random.Random(3))


def _entry(n: int, when: float, topics=None) -> ShortTermMemoryEntry:
    return ShortTermMemoryEntry(session_id=f"s{n}", date=when, module="science", topics=topics or [])


class TestAnalysis:
    """Test keyword extraction."""

    def test_interest_mentions(self) -> None:
        assert extract_interest_mentions("I love volcanoes") == ["volcanoes"]
        assert extract_interest_mentions("I like it") == []

    def test_style_and_traits(self) -> None:
        assert detect_style_indicators("Can you show me a picture?") == ["visual"]
        assert detect_style_indicators("Let's build a tower") == ["kinesthetic"]
        assert "curious" in detect_traits("Why is the sky blue?")

    def test_questions(self) -> None:
        assert extract_questions("Cool. Why is it hot? How big is it?") == [
            "why is it hot?",
            "how big is it?",
        ]


class TestMemoryConsolidator:
    """Test profile updates, context building and persistence."""

    @pytest.mark.asyncio
    async def test_fresh_learner_context(self, store, clock) -> None:
        memory = _memory(store, clock)
        context = await memory.build_context("kid", "math")

        assert context.greeting in [g.format(subject="math") for g in BASE_GREETINGS]
        assert context.suggested_topics == []
        assert context.avoid_topics == []

    @pytest.mark.asyncio
    async def test_interests_strengthen_and_rank(self, store, clock) -> None:
        memory = _memory(store, clock)
        await memory.update_long_term("kid", LearningSignals(utterances=["I love volcanoes"]))
        clock.advance(60)
        await memory.update_long_term(
            "kid", LearningSignals(utterances=["I love volcanoes", "I enjoy planets"])
        )

        profile = memory.profiles["kid"]
        volcanoes = profile.get_interest("volcanoes")
        assert volcanoes.mention_count == 2
        assert volcanoes.strength == 4
        assert memory.suggested_topics("kid") == ["volcanoes", "planets"]

    @pytest.mark.asyncio
    async def test_interests_decay(self, store, clock) -> None:
        memory = _memory(store, clock, MemoryConfig(interest_decay_days=30))
        await memory.update_long_term("kid", LearningSignals(utterances=["I love volcanoes"]))

        clock.advance(61 * DAY)
        assert memory.suggested_topics("kid") == []
        assert memory.profiles["kid"].get_interest("volcanoes") is not None

    @pytest.mark.asyncio
    async def test_learning_style(self, store, clock) -> None:
        memory = _memory(store, clock)
        await memory.update_long_term(
            "kid",
            LearningSignals(
                utterances=["Let's build a tower", "I want to play a game", "Can I touch it"]
            ),
        )

        style = memory.profiles["kid"].learning_style
        assert style.primary == "kinesthetic"
        assert style.secondary == "visual"
        assert style.counts["kinesthetic"] == 3
        assert "experiments" in style.preferred_activities

    @pytest.mark.asyncio
    async def test_traits_need_repeated_evidence(self, store, clock) -> None:
        memory = _memory(store, clock)
        await memory.update_long_term(
            "kid", LearningSignals(utterances=["Why is the sky blue?"] * 3)
        )
        assert memory.profiles["kid"].personality_traits == []

        await memory.update_long_term("kid", LearningSignals(utterances=["Why is the sky blue?"]))
        profile = memory.profiles["kid"]
        assert profile.personality_traits == ["curious"]
        assert profile.recurring_questions == ["why is the sky blue?"]

    @pytest.mark.asyncio
    async def test_mastery_is_reported_once(self, store, clock) -> None:
        memory = _memory(store, clock)
        attempts = [
            ConceptAttempt("multiplication", "math", correct)
            for correct in (True, True, True, True, False)
        ]

        mastered = await memory.update_long_term("kid", LearningSignals(concept_attempts=attempts))
        assert mastered == ["multiplication"]

        more = [ConceptAttempt("multiplication", "math", False)] * 3
        assert await memory.update_long_term("kid", LearningSignals(concept_attempts=more)) == []
        record = memory.get_mastery("kid", "multiplication")
        assert record.mastered is True
        assert record.attempts == 8

    @pytest.mark.asyncio
    async def test_challenging_concepts(self, store, clock) -> None:
        memory = _memory(store, clock)
        struggle = [
            ConceptAttempt("fractions", "math", correct) for correct in (False, True, False)
        ]
        await memory.update_long_term("kid", LearningSignals(concept_attempts=struggle))
        assert memory.profiles["kid"].challenging_concepts == ["fractions"]

        better = [ConceptAttempt("fractions", "math", True)] * 3
        await memory.update_long_term("kid", LearningSignals(concept_attempts=better))
        assert memory.profiles["kid"].challenging_concepts == []

    @pytest.mark.asyncio
    async def test_ring_buffer_and_avoid_list(self, store, clock) -> None:
        memory = _memory(store, clock)
        topics = [["a"], ["b"], ["c", "a"], ["d"]]
        for n, session_topics in enumerate(topics):
            await memory.record_session("kid", _entry(n, clock(), session_topics))

        assert memory.avoid_topics("kid") == ["d", "c", "a", "b"]

        for n in range(4, 12):
            await memory.record_session("kid", _entry(n, clock()))
        recent = memory.short_term["kid"]
        assert len(recent) == 10
        assert recent[0].session_id == "s2"

    @pytest.mark.asyncio
    async def test_streak_counts_consecutive_days(self, store, clock) -> None:
        memory = _memory(store, clock)
        for n in range(4):
            await memory.record_session("kid", _entry(n, clock()))
            await memory.record_session("kid", _entry(n + 100, clock()))
            clock.advance(DAY)

        assert memory.profiles["kid"].streak_days == 4
        context = await memory.build_context("kid", "science")
        assert context.greeting.startswith("Wow, 4 days in a row!")

        clock.advance(DAY)
        await memory.record_session("kid", _entry(99, clock()))
        assert memory.profiles["kid"].streak_days == 1

    @pytest.mark.asyncio
    async def test_memory_prompt(self, store, clock) -> None:
        memory = _memory(store, clock)
        await memory.update_long_term("kid", LearningSignals(utterances=["I love volcanoes"]))

        prompt = await memory.generate_memory_prompt("kid")

        assert prompt.startswith("LEARNER PROFILE:")
        assert "Interests: volcanoes" in prompt
        assert "Recent learning: starting fresh today" in prompt
        assert "Avoid repeating" not in prompt

    @pytest.mark.asyncio
    async def test_persists_under_sanitized_keys(self, store, clock) -> None:
        memory = _memory(store, clock)
        await memory.update_long_term("kid one", LearningSignals(utterances=["I love volcanoes"]))
        await memory.record_session("kid one", _entry(1, clock(), ["volcanoes"]))
        await memory.writer.flush()

        assert await store.get("memory/profiles/kid_one") is not None

        reloaded = _memory(store, clock)
        context = await reloaded.build_context("kid one", "science")
        assert context.suggested_topics == ["volcanoes"]
        assert context.avoid_topics == ["volcanoes"]

    @pytest.mark.asyncio
    async def test_shutdown_writes_loaded_users(self, store, clock) -> None:
        memory = _memory(store, clock)
        await memory.initialize()
        await memory.ensure_loaded("kid")
        await memory.shutdown()

        assert (await store.get("memory/profiles/kid"))["user_id"] == "kid"
