"""
Guardian notification channel.

Notifications are fire-and-forget: ``GuardianDispatcher.notify`` schedules
delivery and returns immediately, and delivery failures are logged only.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Set

import httpx

logger = logging.getLogger(__name__)


@dataclass
class GuardianEvent:
    """Something a parent or guardian should know about."""

    event_type: str
    message: str
    severity: str = "medium"  # low, medium, high
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "message": self.message,
            "severity": self.severity,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class GuardianNotifier(ABC):
    """Delivery backend for guardian events."""

    @abstractmethod
    async def notify(self, event: GuardianEvent) -> None:
        """Deliver one event. May raise; the dispatcher absorbs failures."""
        pass

    async def close(self) -> None:
        return None


class LoggingGuardianNotifier(GuardianNotifier):
    """Writes events to the log. Used when no webhook is configured."""

    async def notify(self, event: GuardianEvent) -> None:
        logger.warning(
            f"Guardian alert [{event.severity}] {event.event_type}: {event.message}"
        )


class WebhookGuardianNotifier(GuardianNotifier):
    """POSTs events as JSON to a guardian webhook."""

    def __init__(self, url: str, timeout_s: float = 5.0):
        self.url = url
        self.timeout_s = timeout_s
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def notify(self, event: GuardianEvent) -> None:
        client = await self._get_client()
        response = await client.post(self.url, json=event.to_dict())
        response.raise_for_status()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class GuardianDispatcher:
    """Schedules deliveries in the background and never raises to the caller."""

    def __init__(self, notifier: GuardianNotifier, recent_limit: int = 100):
        self.notifier = notifier
        self._pending: Set["asyncio.Task[None]"] = set()
        self.recent: Deque[str] = deque(maxlen=recent_limit)
        self.sent = 0
        self.failed = 0

    def notify(self, event: GuardianEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No event loop; guardian event {event.event_type} dropped")
            self.failed += 1
            return

        task = loop.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: GuardianEvent) -> None:
        try:
            await self.notifier.notify(event)
            self.sent += 1
            self.recent.append(event.event_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed += 1
            logger.warning(f"Guardian notification {event.event_type} failed: {e}")

    async def flush(self) -> None:
        """Wait for in-flight deliveries."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        await self.notifier.close()


def create_notifier(webhook_url: str = "", timeout_s: float = 5.0) -> GuardianNotifier:
    """Webhook delivery when a URL is configured, otherwise log delivery."""
    if webhook_url:
        return WebhookGuardianNotifier(webhook_url, timeout_s)
    return LoggingGuardianNotifier()
