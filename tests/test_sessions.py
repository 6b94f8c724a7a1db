"""
Tests for the session orchestrator turn pipeline.
"""

import asyncio
import random
from typing import Any

import pytest

from learning_companion.core.config import CacheConfig, CostConfig
from learning_companion.core.config.runtime import SessionConfig
from learning_companion.core.exceptions import (
    ProviderError,
    SessionNotFoundError,
    ValidationError,
)
from learning_companion.core.persistence import InMemoryStore
from learning_companion.core.response_cache import ResponseCache
from learning_companion.features.cost_monitoring import CostTracker, RequestOptimizer
from learning_companion.features.fallback import ContentCatalogue, ErrorHandler
from learning_companion.features.guardian import GuardianDispatcher
from learning_companion.features.memory import MemoryConsolidator
from learning_companion.features.sessions import SessionOrchestrator, SessionState


async def _no_sleep(_: float) -> Any:
    return None


def build_orchestrator(
    store: InMemoryStore, clock, provider, notifier, **session_overrides: Any
) -> SessionOrchestrator:
    catalogue = ContentCatalogue.load(rng=random.Random(5))
    settings = {"encouragement_probability": 0.0, **session_overrides}
    return SessionOrchestrator(
        memory=MemoryConsolidator(store, clock=clock, rng=random.Random(1)),
        optimizer=RequestOptimizer(compact_templates=catalogue.compact_templates),
        cost=CostTracker(store, CostConfig(), clock=clock),
        cache=ResponseCache(CacheConfig(), clock=clock),
        errors=ErrorHandler(catalogue, guardian=GuardianDispatcher(notifier), clock=clock),
        catalogue=catalogue,
        provider=provider,
        store=store,
        config=SessionConfig(**settings),
        clock=clock,
        rng=random.Random(7),
        sleep=_no_sleep,
    )


@pytest.fixture
def orchestrator(store, clock, provider, notifier) -> SessionOrchestrator:
    return build_orchestrator(store, clock, provider, notifier)


class TestSessionLifecycle:
    """Test starting, ending and expiring sessions."""

    @pytest.mark.asyncio
    async def test_start_rejects_bad_input(self, orchestrator) -> None:
        with pytest.raises(ValidationError):
            await orchestrator.start("  ", "math")
        with pytest.raises(ValidationError):
            await orchestrator.start("kid", "art")
        assert orchestrator.active_count == 0

    @pytest.mark.asyncio
    async def test_start_greets_and_creates_session(self, orchestrator) -> None:
        start = await orchestrator.start("kid", "science")

        session = orchestrator.get_session(start.session_id)
        assert session.state is SessionState.CREATED
        assert start.greeting
        assert start.avoid_topics == []
        assert orchestrator.get_active_session("kid") is session
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_session(self, orchestrator) -> None:
        with pytest.raises(SessionNotFoundError):
            await orchestrator.handle_message("nope", "hello there")

    @pytest.mark.asyncio
    async def test_end_summarizes_and_archives(self, orchestrator, store, clock) -> None:
        start = await orchestrator.start("kid", "science")
        await orchestrator.handle_message(start.session_id, "Tell me about planets please")
        clock.advance(5 * 60)

        summary = await orchestrator.end(start.session_id)
        await orchestrator.writer.flush()

        assert summary.duration_minutes == 5
        assert summary.topics_learned == ["planets"]
        assert summary.message_count == 1
        assert summary.total_xp == 5
        assert "Energy level: high" in summary.key_insights

        archived = await store.get(f"sessions/archive/{start.session_id}")
        assert archived["state"] == "ended"
        assert archived["summary"]["topics_learned"] == ["planets"]
        assert orchestrator.memory.short_term["kid"][-1].topics == ["planets"]

        with pytest.raises(SessionNotFoundError):
            await orchestrator.handle_message(start.session_id, "Hello again")

    @pytest.mark.asyncio
    async def test_cleanup_inactive(self, orchestrator, clock) -> None:
        idle = await orchestrator.start("kid", "math")
        clock.advance(7201)
        busy = await orchestrator.start("other", "math")

        summaries = await orchestrator.cleanup_inactive()

        assert [s.session_id for s in summaries] == [idle.session_id]
        assert orchestrator.active_count == 1
        assert orchestrator.get_session(busy.session_id).user_id == "other"
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_cleanup_skips_sessions_ended_meanwhile(self, orchestrator, clock) -> None:
        first = await orchestrator.start("kid-1", "math")
        second = await orchestrator.start("kid-2", "math")
        third = await orchestrator.start("kid-3", "math")
        clock.advance(7201)

        end = orchestrator.end

        async def end_with_race(session_id: str):
            if session_id == first.session_id:
                await end(second.session_id)
            return await end(session_id)

        orchestrator.end = end_with_race
        summaries = await orchestrator.cleanup_inactive()

        assert [s.session_id for s in summaries] == [first.session_id, third.session_id]
        assert orchestrator.active_count == 0
        await orchestrator.shutdown()


class TestTurnPipeline:
    """Test one utterance through the pipeline."""

    @pytest.mark.asyncio
    async def test_normal_turn(self, orchestrator, provider) -> None:
        start = await orchestrator.start("kid", "science")

        result = await orchestrator.handle_message(start.session_id, "Tell me about planets please")

        assert result.reply == "Let's explore: Tell me about planets please"
        assert result.xp_delta == 5
        assert result.cache_hit is False
        assert result.difficulty == "medium"
        assert result.tier == "balanced"
        assert result.error_kind is None

        request = provider.requests[0]
        assert "LEARNER PROFILE:" in request.instructions
        assert request.metadata["session_id"] == start.session_id
        assert orchestrator.get_session(start.session_id).state is SessionState.ACTIVE
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_empty_text_and_bad_priority(self, orchestrator) -> None:
        start = await orchestrator.start("kid", "science")
        with pytest.raises(ValidationError):
            await orchestrator.handle_message(start.session_id, "   ")
        with pytest.raises(ValidationError):
            await orchestrator.handle_message(start.session_id, "Hello there", priority="cheap")
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_struggling_learner(self, orchestrator) -> None:
        start = await orchestrator.start("kid", "math")

        result = await orchestrator.handle_message(start.session_id, "I don't understand fractions")

        assert result.difficulty == "easy"
        assert result.encouragement_type == "motivation"
        summary = await orchestrator.end(start.session_id)
        assert summary.concepts_to_review == ["fractions"]
        assert "Needs practice: fractions" in summary.key_insights

    @pytest.mark.asyncio
    async def test_excelling_learner_earns_bonus(self, orchestrator) -> None:
        start = await orchestrator.start("kid", "math")
        result = await orchestrator.handle_message(
            start.session_id, "Multiplication is easy, I got it!"
        )
        assert result.xp_delta == 10
        assert result.difficulty == "hard"
        assert result.encouragement_type == "celebration"
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_break_suggested_on_fifteenth_message(self, orchestrator, provider) -> None:
        start = await orchestrator.start("kid", "science")

        results = []
        for i in range(16):
            results.append(
                await orchestrator.handle_message(start.session_id, f"Question {i} about {'z' * i}s")
            )

        assert [i for i, r in enumerate(results) if r.break_suggested] == [14]
        assert results[14].encouragement_type == "break-suggestion"
        assert provider.calls == 15
        assert orchestrator.get_session(start.session_id).state is SessionState.ACTIVE
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_break_timer(self, store, clock, provider, notifier) -> None:
        orchestrator = build_orchestrator(
            store, clock, provider, notifier, break_after_minutes=0.002
        )
        start = await orchestrator.start("kid", "science")
        await orchestrator.handle_message(start.session_id, "Tell me about planets please")

        await asyncio.sleep(0.3)
        session = orchestrator.get_session(start.session_id)
        assert session.break_notice_pending is True

        result = await orchestrator.handle_message(start.session_id, "What about magnets then")
        assert result.break_suggested is True
        assert provider.calls == 1
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(self, orchestrator, provider) -> None:
        start = await orchestrator.start("kid", "science")
        await orchestrator.handle_message(start.session_id, "How do magnets work?")
        cost_before = orchestrator.cost.daily_cost()

        result = await orchestrator.handle_message(start.session_id, "how do magnets work")

        assert result.cache_hit is True
        assert result.reply == "Let's explore: How do magnets work?"
        assert provider.calls == 1
        assert orchestrator.cache.tokens_saved == 150
        assert orchestrator.cost.daily_cost() == cost_before
        await orchestrator.shutdown()


class TestProviderFailures:
    """Test degraded replies and queued replay."""

    @pytest.mark.asyncio
    async def test_rate_limit_serves_fallback_and_queues(self, orchestrator, provider) -> None:
        provider.queue(ProviderError("rate limited", status_code=429))
        start = await orchestrator.start("kid", "math")

        result = await orchestrator.handle_message(start.session_id, "What is 3 times 4?")

        assert result.error_kind == "rate_limit"
        assert result.retry_after_s == 60
        assert result.fallback["module"] == "math"
        assert result.xp_delta == result.fallback["reward_value"]
        assert orchestrator.errors.queued_count == 1
        assert provider.calls == 1
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_rate_limit_retry_offered_to_each_learner(self, orchestrator, provider) -> None:
        rate_limited = ProviderError("rate limited", status_code=429)
        provider.queue(rate_limited, rate_limited, rate_limited, rate_limited)

        results = []
        for user_id in ("kid-1", "kid-2", "kid-3", "new-kid"):
            start = await orchestrator.start(user_id, "math")
            results.append(await orchestrator.handle_message(start.session_id, "What is 3 times 4?"))

        assert [r.retry_after_s for r in results] == [60, 60, 60, 60]
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_timeout_retried_inline(self, orchestrator, provider) -> None:
        provider.queue(asyncio.TimeoutError())
        start = await orchestrator.start("kid", "science")

        result = await orchestrator.handle_message(start.session_id, "Tell me about planets please")

        assert result.error_kind is None
        assert result.reply == "Let's explore: Tell me about planets please"
        assert provider.calls == 2
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_auth_failure_notifies_guardian(self, orchestrator, provider, notifier) -> None:
        provider.queue(ProviderError("invalid key", status_code=401))
        start = await orchestrator.start("kid", "math")

        result = await orchestrator.handle_message(start.session_id, "What is 3 times 4?")
        await orchestrator.errors.guardian.flush()

        assert result.error_kind == "auth_failure"
        assert result.fallback is None
        assert result.retry_after_s is None
        assert result.xp_delta == 0
        assert [e.event_type for e in notifier.events] == ["provider_auth_failure"]
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_queued_utterance_is_replayed(self, orchestrator, provider) -> None:
        provider.queue(ProviderError("rate limited", status_code=429))
        start = await orchestrator.start("kid", "math")
        await orchestrator.handle_message(start.session_id, "What is 3 times 4?")

        assert await orchestrator.replay_queued() == 1
        assert orchestrator.errors.queued_count == 0

        result = await orchestrator.handle_message(start.session_id, "And what is 5 times 6?")
        assert result.replayed == ["Let's explore: What is 3 times 4?"]
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_replay_keeps_queue_while_provider_down(self, orchestrator, provider) -> None:
        provider.queue(
            ProviderError("rate limited", status_code=429),
            ProviderError("rate limited", status_code=429),
        )
        start = await orchestrator.start("kid", "math")
        await orchestrator.handle_message(start.session_id, "What is 3 times 4?")

        assert await orchestrator.replay_queued() == 0
        assert orchestrator.errors.queued_count == 1
        await orchestrator.shutdown()
