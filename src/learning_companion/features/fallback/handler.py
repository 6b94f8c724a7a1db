"""
Provider failure handling.

Turns a classified provider error into a safe degraded response: fallback
content, a retry/wait decision, optional queueing of the utterance for replay
and an optional guardian notification.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from ..guardian import GuardianDispatcher, GuardianEvent
from .catalogue import ContentCatalogue, FallbackContentItem
from .classifier import ErrorKind, classify_error

logger = logging.getLogger(__name__)

GENERIC_RETRY_MESSAGE = "Oops! I couldn't answer just now. Please try again in a moment."


@dataclass(frozen=True)
class ErrorPolicy:
    """What to do for one error kind."""

    queue: bool
    fallback: bool
    retry: bool
    wait_time_s: int
    notify_guardian: bool


POLICY_TABLE: Dict[ErrorKind, ErrorPolicy] = {
    ErrorKind.RATE_LIMIT: ErrorPolicy(True, True, True, 60, False),
    ErrorKind.TIMEOUT: ErrorPolicy(False, True, True, 0, False),
    ErrorKind.NETWORK_UNAVAILABLE: ErrorPolicy(True, True, True, 5, False),
    ErrorKind.AUTH_FAILURE: ErrorPolicy(False, False, False, 0, True),
    ErrorKind.SERVICE_MAINTENANCE: ErrorPolicy(True, True, True, 300, True),
    ErrorKind.UNKNOWN: ErrorPolicy(False, False, True, 3, False),
}


@dataclass(frozen=True)
class FriendlyMessage:
    """Child-facing explanation of an outage."""

    title: str
    message: str
    show_mini_game: bool = False


FRIENDLY_MESSAGES: Dict[ErrorKind, FriendlyMessage] = {
    ErrorKind.RATE_LIMIT: FriendlyMessage(
        "Water Break!",
        "Your tutor needs a quick water break and will be back in about a minute. "
        "Want to play a quick game while we wait?",
        True,
    ),
    ErrorKind.TIMEOUT: FriendlyMessage(
        "Big Think Time!",
        "Wow, that's a tough one! Let's try asking it in a different way.",
    ),
    ErrorKind.NETWORK_UNAVAILABLE: FriendlyMessage(
        "Space Explorer Mode!",
        "Your tutor might be exploring space! Let's check the internet connection "
        "and try again.",
        True,
    ),
    ErrorKind.AUTH_FAILURE: FriendlyMessage(
        "Grown-up Help Needed",
        "We need a grown-up to help reconnect your tutor. Ask a parent for help!",
    ),
    ErrorKind.SERVICE_MAINTENANCE: FriendlyMessage(
        "Super Power Upgrade!",
        "Your tutor is getting new super powers and will be back soon!",
        True,
    ),
    ErrorKind.UNKNOWN: FriendlyMessage(
        "Silly Hiccup!",
        "Something silly happened! Let's shake it off and try again. Ready?",
    ),
}


@dataclass
class ErrorContext:
    """Where the failure happened."""

    module: str = "general"
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    utterance: Optional[str] = None
    progress: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorResolution:
    """Outcome of ``ErrorHandler.handle``."""

    kind: ErrorKind
    should_retry: bool
    wait_time_seconds: int
    fallback: Optional[FallbackContentItem] = None
    queued: bool = False
    guardian_notified: bool = False
    message: str = ""
    show_mini_game: bool = False

    @property
    def reply_text(self) -> str:
        """Friendly message followed by the rendered fallback item, if any."""
        if self.fallback is not None:
            return f"{self.message}\n\n{self.fallback.render()}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "should_retry": self.should_retry,
            "wait_time_seconds": self.wait_time_seconds,
            "fallback": self.fallback.to_dict() if self.fallback else None,
            "queued": self.queued,
            "guardian_notified": self.guardian_notified,
            "message": self.message,
        }


@dataclass
class QueuedUtterance:
    """An utterance waiting for the provider to come back."""

    session_id: str
    text: str
    module: str
    enqueued_at: float


class ErrorHandler:
    """Applies the fixed error policy and owns the replay queue."""

    def __init__(
        self,
        catalogue: ContentCatalogue,
        guardian: Optional[GuardianDispatcher] = None,
        max_retries: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.catalogue = catalogue
        self.guardian = guardian
        self.max_retries = max_retries
        self._clock = clock
        self.retry_counts: Dict[Optional[str], int] = {}
        self.queue: Deque[QueuedUtterance] = deque()
        self.saved_progress: Dict[str, Dict[str, Any]] = {}
        self.kind_counts: Dict[ErrorKind, int] = {kind: 0 for kind in ErrorKind}
        self.offline = False
        self.last_success_at: Optional[float] = None

    @staticmethod
    def policy_for(kind: ErrorKind) -> ErrorPolicy:
        return POLICY_TABLE[kind]

    def get_fallback(self, module: str) -> Optional[FallbackContentItem]:
        """Offline content for the module, or None when the bank is empty."""
        return self.catalogue.pick(module)

    def handle(self, error: BaseException, context: Optional[ErrorContext] = None) -> ErrorResolution:
        """Classify a provider failure and decide the degraded response."""
        context = context or ErrorContext()
        kind = classify_error(error)
        policy = self.policy_for(kind)
        friendly = FRIENDLY_MESSAGES[kind]
        self.kind_counts[kind] += 1
        self.offline = True

        logger.warning(
            f"Provider failure classified as {kind.value} "
            f"(module={context.module}, session={context.session_id}): {error}"
        )

        queued = False
        if policy.queue and context.utterance and context.session_id:
            self.queue.append(
                QueuedUtterance(
                    session_id=context.session_id,
                    text=context.utterance,
                    module=context.module,
                    enqueued_at=self._clock(),
                )
            )
            queued = True
            logger.info(f"Queued utterance for replay ({len(self.queue)} waiting)")

        if context.session_id:
            self.saved_progress[context.session_id] = {
                **context.progress,
                "module": context.module,
                "error_kind": kind.value,
                "saved_at": self._clock(),
                "queued_messages": [
                    q.text for q in self.queue if q.session_id == context.session_id
                ],
            }

        notified = False
        if policy.notify_guardian and self.guardian is not None:
            self.guardian.notify(
                GuardianEvent(
                    event_type=f"provider_{kind.value}",
                    message=friendly.message,
                    user_id=context.user_id,
                    session_id=context.session_id,
                    details={"error": str(error), "module": context.module},
                )
            )
            notified = True

        fallback = self.get_fallback(context.module) if policy.fallback else None
        message = friendly.message
        if policy.fallback and fallback is None:
            logger.error(f"Fallback bank empty for module {context.module}")
            message = GENERIC_RETRY_MESSAGE

        attempts = self.retry_counts.get(context.session_id, 0)
        should_retry = policy.retry and attempts < self.max_retries
        if should_retry:
            self.retry_counts[context.session_id] = attempts + 1

        return ErrorResolution(
            kind=kind,
            should_retry=should_retry,
            wait_time_seconds=policy.wait_time_s,
            fallback=fallback,
            queued=queued,
            guardian_notified=notified,
            message=message,
            show_mini_game=friendly.show_mini_game,
        )

    def record_success(self, session_id: Optional[str] = None) -> None:
        """Provider answered; reset retry accounting for that session."""
        self.retry_counts.pop(session_id, None)
        self.offline = False
        self.last_success_at = self._clock()

    def get_recovery_data(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.saved_progress.get(session_id)

    def clear_recovery_data(self, session_id: str) -> None:
        self.saved_progress.pop(session_id, None)
        self.retry_counts.pop(session_id, None)

    @property
    def queued_count(self) -> int:
        return len(self.queue)

    async def process_queued(
        self, replay: Callable[[QueuedUtterance], Awaitable[bool]]
    ) -> List[QueuedUtterance]:
        """Replay queued utterances oldest first.

        ``replay`` returns False when the provider is still unavailable; that
        utterance and everything behind it stay queued in order.
        """
        replayed: List[QueuedUtterance] = []
        while self.queue:
            item = self.queue[0]
            if not await replay(item):
                break
            self.queue.popleft()
            replayed.append(item)

        if replayed:
            logger.info(f"Replayed {len(replayed)} queued utterances")
        return replayed

    def get_stats(self) -> Dict[str, Any]:
        return {
            "offline": self.offline,
            "queued": len(self.queue),
            "retrying_sessions": len(self.retry_counts),
            "errors": {k.value: v for k, v in self.kind_counts.items() if v},
        }
