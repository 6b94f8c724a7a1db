"""
Tutor service composition root.

Builds every component from a ``Config`` and owns their lifecycle: stores,
memory, cost ledger, response cache, error handler, provider, session
orchestrator, batch scheduler and the background ticker.
"""

import random
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..core.config import Config
from ..core.llm import LLMInterface, create_provider
from ..core.logging import get_logger
from ..core.persistence import BestEffortWriter, KeyValueStore, create_store
from ..core.response_cache import ResponseCache
from ..core.scheduler import Ticker
from ..features.batch import BatchScheduler, ContentGenerator, LLMContentGenerator
from ..features.cost_monitoring import CostTracker, RequestOptimizer
from ..features.fallback import ContentCatalogue, ErrorHandler
from ..features.guardian import GuardianDispatcher, GuardianNotifier, create_notifier
from ..features.memory import MemoryConsolidator
from ..features.sessions import SessionOrchestrator, SessionStart, SessionSummary, TurnResult

logger = get_logger(__name__)

CACHE_SNAPSHOT_KEY = "cache/snapshot"


class TutorService:
    """Learning companion backend with a single initialize/shutdown lifecycle."""

    def __init__(
        self,
        config: Optional[Config] = None,
        provider: Optional[LLMInterface] = None,
        store: Optional[KeyValueStore] = None,
        notifier: Optional[GuardianNotifier] = None,
        generator: Optional[ContentGenerator] = None,
        catalogue_path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        run_background_jobs: bool = True,
    ):
        self.config = config or Config()
        self._clock = clock
        self._rng = rng or random.Random()
        self.run_background_jobs = run_background_jobs
        self._initialized = False

        persistence = self.config.persistence
        self.store = store or create_store(persistence.backend, persistence.data_dir)
        self.writer = BestEffortWriter(
            max_retries=persistence.max_write_retries,
            retry_delay_s=persistence.retry_delay_s,
        )

        self.catalogue = ContentCatalogue.load(catalogue_path, rng=self._rng)
        self.cache = ResponseCache(self.config.cache, clock=clock)
        self.optimizer = RequestOptimizer(
            self.config.optimizer, compact_templates=self.catalogue.compact_templates
        )
        self.cost = CostTracker(self.store, self.config.cost, self.writer, clock=clock)
        self.memory = MemoryConsolidator(
            self.store, self.config.memory, self.writer, clock=clock, rng=self._rng
        )
        self.guardian = GuardianDispatcher(
            notifier
            or create_notifier(
                self.config.guardian.webhook_url, self.config.guardian.timeout_s
            )
        )
        self.errors = ErrorHandler(
            self.catalogue,
            guardian=self.guardian,
            max_retries=self.config.errors.max_attempts,
            clock=clock,
        )
        self.provider = provider or create_provider(self.config.provider)

        self.orchestrator = SessionOrchestrator(
            memory=self.memory,
            optimizer=self.optimizer,
            cost=self.cost,
            cache=self.cache,
            errors=self.errors,
            catalogue=self.catalogue,
            provider=self.provider,
            store=self.store,
            config=self.config.session,
            error_config=self.config.errors,
            provider_config=self.config.provider,
            writer=self.writer,
            clock=clock,
            rng=self._rng,
        )

        economy_model = self.config.cost.tiers["economy"].model
        self.batch = BatchScheduler(
            generator or LLMContentGenerator(self.provider, economy_model),
            self.store,
            self.config.batch,
            cost=self.cost,
            writer=self.writer,
            bundle_ttl_s=self.config.cache.bulk_ttl_s,
            clock=clock,
        )
        self.ticker = Ticker()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Load persisted state and start the background jobs."""
        if self._initialized:
            return

        await self.cost.initialize()
        await self.memory.initialize()

        snapshot = await self.store.get(CACHE_SNAPSHOT_KEY)
        if snapshot:
            restored = self.cache.restore(snapshot)
            logger.info("Restored response cache", entries=restored)
        if self.config.cache.seed_common_questions:
            self.cache.seed(self.catalogue.common_questions)

        await self.batch.load_weekly_bundle()
        self._register_jobs()
        if self.run_background_jobs:
            self.ticker.start()

        self._initialized = True
        logger.info(
            "TutorService initialized",
            provider=self.provider.name,
            modules=self.catalogue.modules,
        )

    def _register_jobs(self) -> None:
        if self.ticker.jobs():
            return
        self.ticker.add_job(
            "cache_maintenance",
            self.config.cache.maintenance_interval_s,
            self.maintain_cache,
        )
        self.ticker.add_job(
            "batch_drain", self.config.batch.drain_interval_s, self.batch.drain
        )
        self.ticker.add_job(
            "weekly_bundle",
            self.config.batch.weekly_interval_s,
            self.batch.generate_weekly_bundle,
        )
        self.ticker.add_job(
            "inactivity_cleanup",
            self.config.session.cleanup_interval_s,
            self.orchestrator.cleanup_inactive,
        )
        self.ticker.add_job(
            "queued_replay",
            self.config.errors.replay_interval_s,
            self.orchestrator.replay_queued,
        )

    async def maintain_cache(self) -> int:
        """Drop expired entries and persist a snapshot."""
        removed = self.cache.cleanup_expired()
        snapshot = self.cache.snapshot()
        self.writer.submit(
            "cache snapshot",
            lambda: self.store.put(CACHE_SNAPSHOT_KEY, snapshot),
            key=CACHE_SNAPSHOT_KEY,
        )
        return removed

    async def shutdown(self) -> None:
        """Stop jobs, persist state and release the provider and notifier."""
        if not self._initialized:
            return

        await self.ticker.stop()
        await self.orchestrator.shutdown()
        await self.batch.wait_idle()
        await self.maintain_cache()
        await self.memory.shutdown()
        await self.cost.shutdown()
        await self.writer.flush()
        await self.guardian.close()
        await self.provider.close()

        self._initialized = False
        logger.info("TutorService shutdown")

    async def health_check(self) -> bool:
        try:
            return (
                self._initialized
                and await self.memory.health_check()
                and await self.cost.health_check()
            )
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def get_health(self) -> Dict[str, Any]:
        healthy = await self.health_check()
        return {
            "status": "healthy" if healthy else "unhealthy",
            "provider": self.provider.get_capabilities(),
            "active_sessions": self.orchestrator.active_count,
            "circuit": self.orchestrator.breaker.get_state(),
            "errors": self.errors.get_stats(),
            "cache": self.cache.get_stats(),
            "batch": self.batch.get_stats(),
            "pending_writes": self.writer.pending,
            "jobs": {
                job.name: {"runs": job.runs, "failures": job.failures}
                for job in self.ticker.jobs()
            },
        }

    # ------------------------------------------------------------------
    # Learner-facing operations

    async def start_session(self, user_id: str, module: str = "general") -> SessionStart:
        return await self.orchestrator.start(user_id, module)

    async def send_message(
        self, session_id: str, text: str, priority: Optional[str] = None
    ) -> TurnResult:
        return await self.orchestrator.handle_message(session_id, text, priority)

    async def end_session(self, session_id: str) -> SessionSummary:
        return await self.orchestrator.end(session_id)

    def request_content(
        self, content_type: str, module: str, count: int, priority: str = "medium"
    ) -> str:
        return self.batch.enqueue(content_type, module, count, priority)

    def get_usage(self) -> Dict[str, Any]:
        """Usage analytics with cache effectiveness."""
        analytics = self.cost.get_usage_analytics()
        analytics["cache"] = self.cache.get_stats()
        analytics["top_questions"] = self.cache.top_questions()
        return analytics
