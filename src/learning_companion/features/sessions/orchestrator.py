"""
Session orchestration for tutoring conversations.

Owns the per-session state machine and runs each learner utterance through
the turn pipeline: state update, memory context, prompt optimization, cache
lookup, provider call (with classified-error fallback) and bookkeeping.
Utterances on the same session are serialized with a per-session lock so at
most one provider call is in flight per session.
"""

import asyncio
import random
import re
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ...core.config import ErrorPolicyConfig, ProviderConfig, SessionConfig
from ...core.exceptions import SessionNotFoundError, ValidationError
from ...core.llm import ChatMessage, GenerationRequest, GenerationResult, LLMInterface
from ...core.logging import get_logger, set_request_context
from ...core.persistence import BestEffortWriter, KeyValueStore
from ...core.resilience import CircuitBreaker, RetryConfig, retry_with_backoff
from ...core.response_cache import ResponseCache
from ..cost_monitoring import CostTracker, ModelTier, Priority, RequestOptimizer
from ..fallback import (
    POLICY_TABLE,
    ContentCatalogue,
    ErrorContext,
    ErrorHandler,
    QueuedUtterance,
    classify_error,
)
from ..memory import (
    ConceptAttempt,
    LearningSignals,
    MemoryConsolidator,
    ShortTermMemoryEntry,
)
from .analysis import (
    analyze_utterance,
    determine_difficulty,
    detect_topics,
    encouragement_type,
    render_encouragement,
)
from .types import (
    EncouragementType,
    PerformanceLevel,
    Session,
    SessionStart,
    SessionState,
    SessionSummary,
    TurnContext,
    TurnResult,
)

logger = get_logger(__name__)

_LONG_WORD = re.compile(r"[a-z]{8,}")


class SessionOrchestrator:
    """Per-conversation state machine and turn pipeline."""

    def __init__(
        self,
        memory: MemoryConsolidator,
        optimizer: RequestOptimizer,
        cost: CostTracker,
        cache: ResponseCache,
        errors: ErrorHandler,
        catalogue: ContentCatalogue,
        provider: LLMInterface,
        store: KeyValueStore,
        config: Optional[SessionConfig] = None,
        error_config: Optional[ErrorPolicyConfig] = None,
        provider_config: Optional[ProviderConfig] = None,
        writer: Optional[BestEffortWriter] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.memory = memory
        self.optimizer = optimizer
        self.cost = cost
        self.cache = cache
        self.errors = errors
        self.catalogue = catalogue
        self.provider = provider
        self.store = store
        self.config = config or SessionConfig()
        self.error_config = error_config or ErrorPolicyConfig()
        self.provider_config = provider_config or ProviderConfig()
        self.writer = writer or BestEffortWriter()
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=self.error_config.circuit_failure_threshold,
            recovery_timeout=self.error_config.circuit_recovery_timeout_s,
            name=provider.name,
        )
        self.retry_config = RetryConfig(
            max_attempts=self.error_config.max_attempts,
            base_delay=self.error_config.base_delay_s,
            max_delay=self.error_config.max_delay_s,
            jitter=self.error_config.jitter,
        )
        self._clock = clock
        self._rng = rng or random.Random()
        self._sleep = sleep

        self.sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._break_timers: Dict[str, "asyncio.Task[None]"] = {}

    # ------------------------------------------------------------------
    # Lookup

    def get_session(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None or not session.is_open:
            raise SessionNotFoundError(session_id)
        return session

    def get_active_session(self, user_id: str) -> Optional[Session]:
        for session in self.sessions.values():
            if session.user_id == user_id and session.is_open:
                return session
        return None

    @property
    def active_count(self) -> int:
        return len(self.sessions)

    def _allowed_modules(self) -> List[str]:
        return self.catalogue.modules + ["general"]

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self, user_id: str, module: str) -> SessionStart:
        """Allocate a session and greet the learner."""
        if not user_id or not user_id.strip():
            raise ValidationError("user_id", user_id, "must not be empty")
        if module not in self._allowed_modules():
            raise ValidationError(
                "module", module, f"must be one of {', '.join(self._allowed_modules())}"
            )

        now = self._clock()
        session = Session(
            session_id=uuid.uuid4().hex,
            user_id=user_id,
            module=module,
            started_at=now,
            last_interaction_at=now,
        )
        self.sessions[session.session_id] = session
        self._locks[session.session_id] = asyncio.Lock()

        context = await self.memory.build_context(user_id, module)
        self._schedule_break_timer(session)

        set_request_context(session_id=session.session_id, user_id=user_id, module=module)
        logger.log_session_event("start", session.session_id, module=module)
        return SessionStart(
            session_id=session.session_id,
            greeting=context.greeting,
            suggested_topics=context.suggested_topics,
            avoid_topics=context.avoid_topics,
        )

    def _schedule_break_timer(self, session: Session) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        delay = self.config.break_after_minutes * 60
        self._break_timers[session.session_id] = loop.create_task(
            self._break_timer(session.session_id, delay)
        )

    async def _break_timer(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        session = self.sessions.get(session_id)
        if session is None or session.state in (SessionState.CREATED, SessionState.ENDED):
            return
        if session.mark_break():
            session.break_notice_pending = True
            logger.log_session_event("break_due", session_id, reason="time")

    def _cancel_break_timer(self, session_id: str) -> None:
        task = self._break_timers.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()

    def ingest(self, session_id: str, utterance: str) -> TurnContext:
        """Update session state from one utterance and evaluate the break rule."""
        session = self.get_session(session_id)
        now = self._clock()

        if session.state is not SessionState.ACTIVE and not session.break_notice_pending:
            session.transition(SessionState.ACTIVE)
        session.last_interaction_at = now
        session.message_count += 1

        session.energy_level, session.performance_level = analyze_utterance(
            utterance, session.energy_level, session.performance_level
        )
        topics = detect_topics(utterance, self.catalogue.topics_for(session.module))
        session.add_topics(topics)

        break_triggered = False
        if session.break_notice_pending:
            session.break_notice_pending = False
            break_triggered = True
        elif not session.break_suggested and (
            session.elapsed_minutes(now) >= self.config.break_after_minutes
            or session.message_count >= self.config.break_after_messages
        ):
            session.mark_break()
            break_triggered = True
            logger.log_session_event(
                "break_suggested", session_id, message_count=session.message_count
            )

        return TurnContext(
            session_id=session_id,
            user_id=session.user_id,
            module=session.module,
            utterance=utterance,
            energy_level=session.energy_level,
            performance_level=session.performance_level,
            difficulty=determine_difficulty(session.performance_level, session.energy_level),
            encouragement_type=encouragement_type(
                session.break_suggested, session.performance_level, session.energy_level
            ),
            break_triggered=break_triggered,
            detected_topics=topics,
            message_count=session.message_count,
            elapsed_minutes=session.elapsed_minutes(now),
            history=list(session.history),
        )

    async def end(self, session_id: str) -> SessionSummary:
        """Summarize, remember and archive a session.

        An in-flight provider call on this session is not aborted; it simply
        finishes against the archived session.
        """
        session = self.get_session(session_id)
        self._cancel_break_timer(session_id)
        session.transition(SessionState.ENDED)

        summary = self._summarize(session)
        entry = ShortTermMemoryEntry(
            session_id=session_id,
            date=session.started_at,
            module=session.module,
            topics=list(session.topics_discussed),
            mistakes=sorted(session.review_concepts),
            vocabulary_used=self._vocabulary(session),
            energy=session.energy_level.value,
        )
        await self.memory.record_session(session.user_id, entry)

        archived = {**session.to_dict(), "summary": summary.to_dict()}
        self.writer.submit(
            f"archive session {session_id}",
            lambda: self.store.put(f"sessions/archive/{session_id}", archived),
            key=f"sessions/archive/{session_id}",
        )

        del self.sessions[session_id]
        self._locks.pop(session_id, None)
        self.errors.clear_recovery_data(session_id)

        logger.log_session_event(
            "end",
            session_id,
            duration_minutes=summary.duration_minutes,
            total_xp=summary.total_xp,
        )
        return summary

    def _vocabulary(self, session: Session) -> List[str]:
        words: List[str] = []
        for utterance in session.utterances:
            for word in _LONG_WORD.findall(utterance.lower()):
                if word not in words:
                    words.append(word)
        return words[:20]

    def _summarize(self, session: Session) -> SessionSummary:
        insights: List[str] = []
        if session.mastered_concepts:
            insights.append(f"Mastered: {', '.join(sorted(session.mastered_concepts))}")
        if session.review_concepts:
            insights.append(f"Needs practice: {', '.join(sorted(session.review_concepts))}")
        insights.append(f"Energy level: {session.energy_level.value}")
        insights.append(f"Performance: {session.performance_level.value}")
        if session.mission_progress_pct > 50:
            insights.append("Great progress on daily mission!")

        return SessionSummary(
            session_id=session.session_id,
            user_id=session.user_id,
            module=session.module,
            started_at=session.started_at,
            duration_minutes=int(session.elapsed_minutes(self._clock())),
            topics_learned=list(session.topics_discussed),
            concepts_mastered=sorted(session.mastered_concepts),
            concepts_to_review=sorted(session.review_concepts),
            key_insights=insights,
            energy_level=session.energy_level.value,
            performance_level=session.performance_level.value,
            total_xp=session.total_xp,
            message_count=session.message_count,
        )

    async def cleanup_inactive(self) -> List[SessionSummary]:
        """End sessions idle past the inactivity timeout."""
        now = self._clock()
        stale = [
            s.session_id
            for s in self.sessions.values()
            if now - s.last_interaction_at > self.config.inactivity_timeout_s
        ]
        summaries = []
        for session_id in stale:
            logger.log_session_event("inactive_timeout", session_id)
            try:
                summaries.append(await self.end(session_id))
            except SessionNotFoundError:
                logger.debug("Session already ended", session_id=session_id)
        return summaries

    async def shutdown(self) -> None:
        for session_id in list(self._break_timers):
            self._cancel_break_timer(session_id)

    # ------------------------------------------------------------------
    # Turn pipeline

    def _priority(self, priority: Optional[str]) -> Priority:
        try:
            return Priority(priority or self.config.default_priority)
        except ValueError:
            raise ValidationError(
                "priority", priority, "must be one of quality, balanced, economy"
            )

    async def handle_message(
        self, session_id: str, text: str, priority: Optional[str] = None
    ) -> TurnResult:
        """Run one learner utterance through the full pipeline."""
        if not text or not text.strip():
            raise ValidationError("text", text, "must not be empty")
        session = self.get_session(session_id)
        requested = self._priority(priority)
        lock = self._locks[session_id]

        async with lock:
            set_request_context(
                session_id=session_id, user_id=session.user_id, module=session.module
            )
            context = self.ingest(session_id, text)
            session.utterances.append(text)
            replayed, session.pending_replays = session.pending_replays, []

            if context.break_triggered:
                reply = render_encouragement(
                    EncouragementType.BREAK_SUGGESTION, session.module, self._rng
                )
                session.history.append(ChatMessage("user", text))
                session.history.append(ChatMessage("assistant", reply))
                self._trim_history(session)
                return TurnResult(
                    session_id=session_id,
                    reply=reply,
                    difficulty=context.difficulty.value,
                    encouragement_type=EncouragementType.BREAK_SUGGESTION.value,
                    break_suggested=True,
                    replayed=replayed,
                )

            session.history.append(ChatMessage("user", text))
            result = await self._respond(session, context, requested)
            result.replayed = replayed

            xp = result.xp_delta
            session.total_xp += xp
            if xp > 10:
                session.mission_progress_pct = min(
                    100, session.mission_progress_pct + self.config.mission_progress_step
                )
            session.history.append(ChatMessage("assistant", result.reply))
            self._trim_history(session)

            await self._learn_from_turn(session, context)
            return result

    async def _respond(
        self, session: Session, context: TurnContext, priority: Priority
    ) -> TurnResult:
        module = session.module
        difficulty = context.difficulty.value
        encouragement = context.encouragement_type

        entry = self.cache.lookup(context.utterance, module)
        if entry is not None:
            tier = self.cost.select_tier(priority)
            self.cost.track_usage(session.session_id, 0, 0, tier, module, cached=True)
            logger.info("Cache hit", cache_key=entry.key, tokens_saved=entry.token_cost)
            return TurnResult(
                session_id=session.session_id,
                reply=self._decorate(entry.response, encouragement, module),
                xp_delta=self._turn_xp(session),
                cache_hit=True,
                difficulty=difficulty,
                encouragement_type=encouragement.value if encouragement else None,
                tier=tier.value,
            )

        try:
            generated, tier = await self.generate(session, priority)
        except Exception as e:
            resolution = self.errors.handle(
                e,
                ErrorContext(
                    module=module,
                    session_id=session.session_id,
                    user_id=session.user_id,
                    utterance=context.utterance,
                    progress={
                        "message_count": session.message_count,
                        "topics_discussed": list(session.topics_discussed),
                        "mission_progress_pct": session.mission_progress_pct,
                        "total_xp": session.total_xp,
                    },
                ),
            )
            return TurnResult(
                session_id=session.session_id,
                reply=resolution.reply_text,
                xp_delta=resolution.fallback.reward_value if resolution.fallback else 0,
                difficulty=difficulty,
                encouragement_type=encouragement.value if encouragement else None,
                error_kind=resolution.kind.value,
                fallback=resolution.fallback.to_dict() if resolution.fallback else None,
                retry_after_s=resolution.wait_time_seconds if resolution.should_retry else None,
            )

        self.cache.store(
            context.utterance, module, generated.text, token_cost=generated.total_tokens
        )
        report = self.cost.track_usage(
            session.session_id,
            generated.input_tokens,
            generated.output_tokens,
            tier,
            module,
        )
        if report.should_fallback:
            logger.warning(
                "Daily budget nearly spent", daily_usage_percent=report.daily_usage_percent
            )
        return TurnResult(
            session_id=session.session_id,
            reply=self._decorate(generated.text, encouragement, module),
            xp_delta=self._turn_xp(session),
            difficulty=difficulty,
            encouragement_type=encouragement.value if encouragement else None,
            tier=tier.value,
        )

    async def generate(
        self, session: Session, priority: Priority, pending: Optional[str] = None
    ) -> Tuple[GenerationResult, ModelTier]:
        """Optimize the session context and call the provider.

        ``pending`` is an utterance answered out of band (a queued replay);
        it is sent as the final user message without entering the history.
        Raises whatever the provider raised once retries are exhausted; a
        successful call resets the error handler's retry accounting.
        """
        history = list(session.history)
        if pending is not None:
            history.append(ChatMessage("user", pending))
        instructions = self.catalogue.instructions_for(session.module)
        personalization = await self.memory.generate_memory_prompt(session.user_id)
        optimized = self.optimizer.optimize(
            history, instructions, session.module, personalization
        )
        tier = self.cost.select_tier(priority)
        request = GenerationRequest(
            messages=optimized.messages,
            instructions=optimized.instructions,
            tier=tier.value,
            model=self.cost.tier_config(tier).model,
            max_tokens=self.provider_config.max_tokens,
            temperature=self.provider_config.temperature,
            metadata={
                "session_id": session.session_id,
                "module": session.module,
                "compression_ratio": optimized.compression_ratio,
            },
        )

        started = time.perf_counter()
        result = await retry_with_backoff(
            lambda: self.breaker.call(lambda: self._call_provider(request)),
            self.retry_config,
            should_retry=self._retry_inline,
            sleep=self._sleep,
        )
        self.errors.record_success(session.session_id)
        logger.log_provider_call(
            self.provider.name,
            request.model,
            tier.value,
            result.input_tokens,
            result.output_tokens,
            (time.perf_counter() - started) * 1000,
            compression_ratio=optimized.compression_ratio,
        )
        return result, tier

    async def _call_provider(self, request: GenerationRequest) -> GenerationResult:
        return await asyncio.wait_for(
            self.provider.generate(request), timeout=self.error_config.provider_timeout_s
        )

    def _retry_inline(self, error: BaseException) -> bool:
        """Only short-wait kinds are retried within the turn; long waits go to the queue."""
        policy = POLICY_TABLE[classify_error(error)]
        return policy.retry and policy.wait_time_s <= self.error_config.max_delay_s

    def _turn_xp(self, session: Session) -> int:
        xp = self.config.base_xp_per_message
        if session.performance_level is PerformanceLevel.EXCELLING:
            xp += self.config.excelling_xp_bonus
        return xp

    def _decorate(
        self, reply: str, kind: Optional[EncouragementType], module: str
    ) -> str:
        # The break message is delivered on its own turn; don't repeat it.
        if kind is None or kind is EncouragementType.BREAK_SUGGESTION:
            return reply
        if self._rng.random() >= self.config.encouragement_probability:
            return reply
        return f"{render_encouragement(kind, module, self._rng)}\n\n{reply}"

    def _trim_history(self, session: Session) -> None:
        limit = self.config.history_limit
        if len(session.history) > limit:
            # keep the opening message, which the optimizer always retains
            session.history = [session.history[0]] + session.history[-(limit - 1) :]

    async def _learn_from_turn(self, session: Session, context: TurnContext) -> None:
        struggling = context.performance_level is PerformanceLevel.STRUGGLING
        signals = LearningSignals(
            utterances=[context.utterance],
            topics=context.detected_topics,
            concept_attempts=[
                ConceptAttempt(concept=topic, module=session.module, correct=not struggling)
                for topic in context.detected_topics
            ],
        )
        newly_mastered = await self.memory.update_long_term(session.user_id, signals)
        session.mastered_concepts.update(newly_mastered)
        if struggling:
            session.review_concepts.update(context.detected_topics)
        session.review_concepts.difference_update(session.mastered_concepts)

    # ------------------------------------------------------------------
    # Replay

    async def _replay(self, item: QueuedUtterance) -> bool:
        session = self.sessions.get(item.session_id)
        if session is None or not session.is_open:
            logger.info("Dropping queued utterance for closed session", tutor_session=item.session_id)
            return True

        async with self._locks[item.session_id]:
            try:
                generated, tier = await self.generate(
                    session, self._priority(None), pending=item.text
                )
            except Exception as e:
                logger.info("Provider still unavailable, keeping queue", error=str(e))
                return False

            self.cache.store(item.text, item.module, generated.text, token_cost=generated.total_tokens)
            self.cost.track_usage(
                session.session_id,
                generated.input_tokens,
                generated.output_tokens,
                tier,
                item.module,
            )
            session.history.append(ChatMessage("assistant", generated.text))
            session.pending_replays.append(generated.text)
            return True

    async def replay_queued(self) -> int:
        """Answer queued utterances oldest first once the provider is back."""
        if not self.errors.queued_count:
            return 0
        replayed = await self.errors.process_queued(self._replay)
        return len(replayed)

