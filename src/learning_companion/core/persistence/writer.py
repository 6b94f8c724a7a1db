"""
Best-effort background persistence.

User-facing replies never wait on storage: writes are scheduled as background
tasks, retried a bounded number of times, then logged and dropped.

Writes submitted under the same ``key`` are whole-value snapshots. They run one
at a time per key and only the newest pending snapshot is written; an older one
is never retried once a newer one has been submitted.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

logger = logging.getLogger(__name__)

WriteFn = Callable[[], Awaitable[None]]


class BestEffortWriter:
    """Schedules persistence coroutines without surfacing their failures."""

    def __init__(self, max_retries: int = 3, retry_delay_s: float = 0.5):
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self._pending: Set["asyncio.Task[None]"] = set()
        self._latest: Dict[str, Tuple[str, WriteFn]] = {}
        self._workers: Dict[str, "asyncio.Task[None]"] = {}
        self.failed_writes = 0
        self.completed_writes = 0
        self.superseded_writes = 0

    def submit(self, description: str, write: WriteFn, key: Optional[str] = None) -> None:
        """Schedule a write. Callers do not await it.

        With a ``key``, the write replaces any not-yet-started write for that
        key and runs after the in-flight one finishes. Without one (appends),
        every write runs independently.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop; dropping write '{description}'")
            self.failed_writes += 1
            return

        if key is None:
            self._spawn(loop, self._run(description, write))
            return

        if key in self._latest:
            self.superseded_writes += 1
        self._latest[key] = (description, write)
        if key not in self._workers:
            self._workers[key] = self._spawn(loop, self._drain_key(key))

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro: Awaitable[None]) -> "asyncio.Task[None]":
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _drain_key(self, key: str) -> None:
        try:
            while key in self._latest:
                description, write = self._latest.pop(key)
                await self._run(description, write, superseded=lambda: key in self._latest)
        finally:
            self._workers.pop(key, None)

    async def _run(
        self,
        description: str,
        write: WriteFn,
        superseded: Callable[[], bool] = lambda: False,
    ) -> None:
        for attempt in range(1, self.max_retries + 1):
            try:
                await write()
                self.completed_writes += 1
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if superseded():
                    self.superseded_writes += 1
                    logger.warning(f"Write '{description}' failed and was superseded: {e}")
                    return
                if attempt == self.max_retries:
                    self.failed_writes += 1
                    logger.error(
                        f"Dropping write '{description}' after {attempt} attempts: {e}"
                    )
                    return
                logger.warning(
                    f"Write '{description}' failed (attempt {attempt}), retrying: {e}"
                )
                await asyncio.sleep(self.retry_delay_s * attempt)
                if superseded():
                    self.superseded_writes += 1
                    return

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
