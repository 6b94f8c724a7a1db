"""
Batch scheduling for bulk content generation.

Requests for the same (content type, module) are merged into one provider
call and the generated items are sliced back to each request in enqueue
order. Draining runs in the background and never blocks the live turn path.
"""

import asyncio
import heapq
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ...core.config import BatchConfig
from ...core.exceptions import ValidationError
from ...core.persistence import BestEffortWriter, KeyValueStore
from ..cost_monitoring import CostTracker, ModelTier
from .generator import ContentGenerator

logger = logging.getLogger(__name__)

WEEKLY_BUNDLE_KEY = "batch/weekly_bundle"
BATCH_SESSION_ID = "batch"


class BatchPriority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


@dataclass(order=True)
class BatchRequest:
    """One caller's request for ``count`` items."""

    sort_key: Tuple[int, int] = field(init=False, repr=False)
    sequence: int
    request_id: str = field(compare=False)
    content_type: str = field(compare=False)
    module: str = field(compare=False)
    count: int = field(compare=False)
    priority: BatchPriority = field(compare=False, default=BatchPriority.MEDIUM)
    enqueued_at: float = field(compare=False, default=0.0)

    def __post_init__(self) -> None:
        self.sort_key = (self.priority.rank, self.sequence)


@dataclass
class BatchResult:
    """Items delivered to one request."""

    request_id: str
    content_type: str
    module: str
    items: List[Any]
    group_tokens: int
    generated_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "content_type": self.content_type,
            "module": self.module,
            "items": self.items,
            "group_tokens": self.group_tokens,
            "generated_at": self.generated_at,
        }


class BatchScheduler:
    """Priority queue of bulk content requests plus the weekly bundle job."""

    def __init__(
        self,
        generator: ContentGenerator,
        store: KeyValueStore,
        config: Optional[BatchConfig] = None,
        cost: Optional[CostTracker] = None,
        writer: Optional[BestEffortWriter] = None,
        bundle_ttl_s: float = 7 * 24 * 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.generator = generator
        self.store = store
        self.config = config or BatchConfig()
        self.cost = cost
        self.writer = writer or BestEffortWriter()
        self.bundle_ttl_s = bundle_ttl_s
        self._clock = clock

        self._queue: List[BatchRequest] = []
        self._sequence = 0
        self._draining = False
        self._drain_tasks: Set["asyncio.Task[Dict[str, BatchResult]]"] = set()
        self.results: Dict[str, BatchResult] = {}
        self.weekly_content: Dict[str, Dict[str, List[Any]]] = {}
        self.weekly_generated_at: Optional[float] = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def draining(self) -> bool:
        return self._draining

    def enqueue(
        self, content_type: str, module: str, count: int, priority: str = "medium"
    ) -> str:
        """Queue a request; a high-priority request triggers a drain if idle."""
        if count <= 0:
            raise ValidationError("count", count, "must be positive")
        try:
            level = BatchPriority(priority)
        except ValueError:
            raise ValidationError("priority", priority, "must be high, medium or low")

        self._sequence += 1
        request = BatchRequest(
            sequence=self._sequence,
            request_id=f"batch_{uuid.uuid4().hex[:12]}",
            content_type=content_type,
            module=module,
            count=count,
            priority=level,
            enqueued_at=self._clock(),
        )
        heapq.heappush(self._queue, request)
        logger.debug(f"Queued {count} {content_type} for {module} ({level.value})")

        if level is BatchPriority.HIGH and not self._draining:
            self._drain_in_background()
        return request.request_id

    def _drain_in_background(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; high-priority batch waits for the next drain")
            return
        task = loop.create_task(self.drain())
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for background drains started by high-priority requests."""
        while self._drain_tasks:
            await asyncio.gather(*list(self._drain_tasks), return_exceptions=True)

    def _take_groups(self) -> List[Tuple[str, str, List[BatchRequest]]]:
        """Pop everything queued, grouped by (type, module), highest priority group first."""
        ordered = [heapq.heappop(self._queue) for _ in range(len(self._queue))]
        groups: Dict[Tuple[str, str], List[BatchRequest]] = {}
        for request in ordered:
            groups.setdefault((request.content_type, request.module), []).append(request)

        result = []
        for (content_type, module), requests in groups.items():
            requests.sort(key=lambda r: r.sequence)
            result.append((content_type, module, requests))
        return result

    async def drain(self) -> Dict[str, BatchResult]:
        """Issue one generation call per group and hand out the items."""
        if self._draining or not self._queue:
            return {}

        self._draining = True
        delivered: Dict[str, BatchResult] = {}
        try:
            for content_type, module, requests in self._take_groups():
                total = sum(r.count for r in requests)
                try:
                    content = await self.generator.generate(content_type, module, total)
                except Exception as e:
                    logger.error(
                        f"Batch generation failed for {content_type}/{module}, "
                        f"requeueing {len(requests)} requests: {e}"
                    )
                    for request in requests:
                        heapq.heappush(self._queue, request)
                    continue

                if self.cost is not None:
                    self.cost.track_usage(
                        BATCH_SESSION_ID,
                        content.input_tokens,
                        content.output_tokens,
                        ModelTier.ECONOMY,
                        module,
                    )

                now = self._clock()
                offset = 0
                for request in requests:
                    items = content.items[offset : offset + request.count]
                    offset += request.count
                    result = BatchResult(
                        request_id=request.request_id,
                        content_type=content_type,
                        module=module,
                        items=items,
                        group_tokens=content.total_tokens,
                        generated_at=now,
                    )
                    self.results[request.request_id] = result
                    delivered[request.request_id] = result

                logger.info(
                    f"Generated {len(content.items)} {content_type} for {module} "
                    f"in one call for {len(requests)} requests"
                )
        finally:
            self._draining = False
        return delivered

    def get_result(self, request_id: str) -> Optional[BatchResult]:
        return self.results.get(request_id)

    # ------------------------------------------------------------------
    # Weekly bundle

    async def load_weekly_bundle(self) -> bool:
        """Load a persisted bundle if it is still fresh."""
        stored = await self.store.get(WEEKLY_BUNDLE_KEY)
        if not stored:
            return False
        generated_at = stored.get("generated_at", 0.0)
        if self._clock() - generated_at >= self.bundle_ttl_s:
            return False
        self.weekly_content = stored.get("content", {})
        self.weekly_generated_at = generated_at
        return True

    def bundle_is_fresh(self) -> bool:
        if self.weekly_generated_at is None:
            return False
        return self._clock() - self.weekly_generated_at < self.bundle_ttl_s

    async def generate_weekly_bundle(
        self, modules: Optional[List[str]] = None, force: bool = False
    ) -> bool:
        """Pre-generate the per-module bundle. Returns False if a fresh one exists."""
        if not force and (self.bundle_is_fresh() or await self.load_weekly_bundle()):
            logger.info("Weekly bundle still fresh, skipping generation")
            return False

        content: Dict[str, Dict[str, List[Any]]] = {}
        total_tokens = 0
        for module in modules or self.config.modules:
            content[module] = {}
            for content_type, count in self.config.weekly_bundle.items():
                generated = await self.generator.generate(content_type, module, count)
                content[module][content_type] = generated.items[:count]
                total_tokens += generated.total_tokens
                if self.cost is not None:
                    self.cost.track_usage(
                        BATCH_SESSION_ID,
                        generated.input_tokens,
                        generated.output_tokens,
                        ModelTier.ECONOMY,
                        module,
                    )

        generated_at = self._clock()
        self.weekly_content = content
        self.weekly_generated_at = generated_at
        document = {"generated_at": generated_at, "content": content}
        self.writer.submit(
            "weekly bundle",
            lambda: self.store.put(WEEKLY_BUNDLE_KEY, document),
            key=WEEKLY_BUNDLE_KEY,
        )
        logger.info(f"Generated weekly bundle for {len(content)} modules ({total_tokens} tokens)")
        return True

    def get_weekly_content(self, content_type: str, module: str) -> Optional[List[Any]]:
        if not self.bundle_is_fresh():
            return None
        return self.weekly_content.get(module, {}).get(content_type)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "pending": self.pending,
            "draining": self._draining,
            "results": len(self.results),
            "weekly_bundle_fresh": self.bundle_is_fresh(),
        }
