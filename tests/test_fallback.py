"""
Tests for error classification, the fallback catalogue, the error handler and
guardian notification.
"""

import asyncio
import random

import httpx
import pytest

from learning_companion.core.exceptions import CatalogueError, CircuitOpenError, ProviderError
from learning_companion.features.fallback import (
    GENERIC_RETRY_MESSAGE,
    POLICY_TABLE,
    ContentCatalogue,
    ContentType,
    ErrorContext,
    ErrorHandler,
    ErrorKind,
    FallbackContentItem,
    QueuedUtterance,
    classify_error,
)
from learning_companion.features.guardian import (
    GuardianDispatcher,
    GuardianEvent,
    GuardianNotifier,
    LoggingGuardianNotifier,
    WebhookGuardianNotifier,
    create_notifier,
)


class TestClassifier:
    """Test the provider error taxonomy."""

    @pytest.mark.parametrize(
        "error,kind",
        [
            (ProviderError("slow down", status_code=429), ErrorKind.RATE_LIMIT),
            (ProviderError("Rate limit exceeded"), ErrorKind.RATE_LIMIT),
            (asyncio.TimeoutError(), ErrorKind.TIMEOUT),
            (ProviderError("failed", code="ETIMEDOUT"), ErrorKind.TIMEOUT),
            (ProviderError("dns", code="ENOTFOUND"), ErrorKind.NETWORK_UNAVAILABLE),
            (ConnectionRefusedError("refused"), ErrorKind.NETWORK_UNAVAILABLE),
            (CircuitOpenError(provider="fake"), ErrorKind.NETWORK_UNAVAILABLE),
            (ProviderError("bad key", status_code=401), ErrorKind.AUTH_FAILURE),
            (ProviderError("forbidden", status_code=403), ErrorKind.AUTH_FAILURE),
            (ProviderError("upgrading", status_code=503), ErrorKind.SERVICE_MAINTENANCE),
            (ValueError("weird"), ErrorKind.UNKNOWN),
        ],
    )
    def test_classify(self, error: BaseException, kind: ErrorKind) -> None:
        assert classify_error(error) is kind

    def test_none_is_unknown(self) -> None:
        assert classify_error(None) is ErrorKind.UNKNOWN

    def test_policy_table(self) -> None:
        rate = POLICY_TABLE[ErrorKind.RATE_LIMIT]
        assert (rate.queue, rate.fallback, rate.retry, rate.wait_time_s) == (True, True, True, 60)
        auth = POLICY_TABLE[ErrorKind.AUTH_FAILURE]
        assert auth.notify_guardian and not auth.retry and not auth.fallback
        assert POLICY_TABLE[ErrorKind.SERVICE_MAINTENANCE].wait_time_s == 300
        assert POLICY_TABLE[ErrorKind.UNKNOWN].fallback is False


class TestContentCatalogue:
    """Test the packaged catalogue and the picker."""

    def test_packaged_catalogue_loads(self) -> None:
        catalogue = ContentCatalogue.load()
        assert catalogue.modules == ["entrepreneur", "math", "science", "stories", "world"]
        assert "photosynthesis" in catalogue.topics_for("science")
        assert "What is multiplication?" in catalogue.common_questions["math"]
        assert catalogue.compact_templates["math"].startswith("Grade 4 math")

    def test_pick_prefers_module_items(self) -> None:
        catalogue = ContentCatalogue.load(rng=random.Random(1))
        for _ in range(10):
            assert catalogue.pick("math").module == "math"
        assert catalogue.pick("general").module == "general"

    def test_pick_avoids_immediate_repeat(self) -> None:
        catalogue = ContentCatalogue.load(rng=random.Random(3))
        picks = [catalogue.pick("math").id for _ in range(6)]
        assert all(a != b for a, b in zip(picks, picks[1:]))

    def test_unknown_module_uses_general_items(self) -> None:
        catalogue = ContentCatalogue.load(rng=random.Random(1))
        assert catalogue.pick("art").module == "general"

    def test_empty_catalogue(self) -> None:
        assert ContentCatalogue().pick("math") is None

    def test_duplicate_ids_rejected(self) -> None:
        raw = {"id": "x", "type": "fact", "module": "math", "payload": {"fact": "1"}}
        with pytest.raises(CatalogueError):
            ContentCatalogue.from_dict({"fallback_items": [raw, raw]})

    def test_render(self) -> None:
        joke = FallbackContentItem(
            "j", ContentType.JOKE, "general", {"setup": "Why?", "punchline": "Because!"}
        )
        challenge = FallbackContentItem(
            "c", ContentType.CHALLENGE, "math", {"title": "Hunt", "challenge": "Find shapes", "hint": "Look up"}
        )
        assert joke.render() == "Why? ... Because!"
        assert challenge.render() == "Hunt: Find shapes (Look up)"


class TestErrorHandler:
    """Test the error policy application."""

    def _handler(self, guardian: GuardianDispatcher = None) -> ErrorHandler:
        catalogue = ContentCatalogue.load(rng=random.Random(5))
        return ErrorHandler(catalogue, guardian=guardian, clock=lambda: 100.0)

    def test_rate_limit(self) -> None:
        handler = self._handler()
        resolution = handler.handle(
            ProviderError("too many", status_code=429),
            ErrorContext(module="math", session_id="s1", utterance="What is 3 x 4?"),
        )

        assert resolution.kind is ErrorKind.RATE_LIMIT
        assert resolution.should_retry is True
        assert resolution.wait_time_seconds == 60
        assert resolution.fallback is not None and resolution.fallback.module == "math"
        assert resolution.queued is True
        assert resolution.show_mini_game is True
        assert handler.queued_count == 1
        assert resolution.reply_text.startswith("Your tutor needs a quick water break")

    def test_timeout_is_not_queued(self) -> None:
        handler = self._handler()
        resolution = handler.handle(
            asyncio.TimeoutError(), ErrorContext(module="science", session_id="s1", utterance="hi")
        )
        assert resolution.kind is ErrorKind.TIMEOUT
        assert resolution.queued is False
        assert resolution.wait_time_seconds == 0
        assert resolution.fallback.module == "science"

    def test_unknown_has_no_fallback(self) -> None:
        handler = self._handler()
        resolution = handler.handle(ValueError("odd"), ErrorContext(module="math"))
        assert resolution.fallback is None
        assert resolution.should_retry is True
        assert resolution.wait_time_seconds == 3

    def test_retry_budget_resets_on_success(self) -> None:
        handler = self._handler()
        error = ProviderError("down", code="ECONNREFUSED")
        results = [handler.handle(error).should_retry for _ in range(4)]
        assert results == [True, True, True, False]

        handler.record_success()
        assert handler.handle(error).should_retry is True
        assert handler.offline is True

    def test_retry_budget_is_per_session(self) -> None:
        handler = self._handler()
        rate_limited = ProviderError("slow down", status_code=429)
        for session_id in ("s1", "s2", "s3"):
            handler.handle(rate_limited, ErrorContext(module="math", session_id=session_id))

        resolution = handler.handle(
            rate_limited, ErrorContext(module="math", session_id="new-kid", utterance="What is 7 x 8?")
        )

        assert resolution.should_retry is True
        assert resolution.wait_time_seconds == 60
        assert resolution.fallback.module == "math"

    def test_success_resets_only_that_session(self) -> None:
        handler = self._handler()
        error = ProviderError("down", code="ECONNREFUSED")
        for _ in range(3):
            handler.handle(error, ErrorContext(session_id="s1"))
            handler.handle(error, ErrorContext(session_id="s2"))

        handler.record_success("s1")

        assert handler.handle(error, ErrorContext(session_id="s1")).should_retry is True
        assert handler.handle(error, ErrorContext(session_id="s2")).should_retry is False

        handler.clear_recovery_data("s2")
        assert handler.handle(error, ErrorContext(session_id="s2")).should_retry is True

    def test_empty_bank_uses_generic_message(self) -> None:
        handler = ErrorHandler(ContentCatalogue())
        resolution = handler.handle(ProviderError("x", status_code=429), ErrorContext(module="math"))
        assert resolution.fallback is None
        assert resolution.message == GENERIC_RETRY_MESSAGE

    def test_recovery_data(self) -> None:
        handler = self._handler()
        handler.handle(
            ProviderError("x", status_code=503),
            ErrorContext(
                module="world",
                session_id="s9",
                utterance="Where is Peru?",
                progress={"message_count": 4},
            ),
        )

        saved = handler.get_recovery_data("s9")
        assert saved["message_count"] == 4
        assert saved["error_kind"] == "service_maintenance"
        assert saved["queued_messages"] == ["Where is Peru?"]

        handler.clear_recovery_data("s9")
        assert handler.get_recovery_data("s9") is None

    @pytest.mark.asyncio
    async def test_guardian_notified_on_auth_failure(self, notifier: GuardianNotifier) -> None:
        handler = self._handler(GuardianDispatcher(notifier))

        resolution = handler.handle(
            ProviderError("bad key", status_code=401),
            ErrorContext(module="math", session_id="s1", user_id="kid"),
        )
        await handler.guardian.flush()

        assert resolution.guardian_notified is True
        assert resolution.should_retry is False
        assert resolution.fallback is None
        assert [e.event_type for e in notifier.events] == ["provider_auth_failure"]
        assert notifier.events[0].user_id == "kid"

    @pytest.mark.asyncio
    async def test_process_queued_stops_at_first_failure(self) -> None:
        handler = self._handler()
        for text in ("one", "two", "three"):
            handler.queue.append(QueuedUtterance("s1", text, "math", 0.0))

        seen = []

        async def replay(item: QueuedUtterance) -> bool:
            seen.append(item.text)
            return item.text != "two"

        replayed = await handler.process_queued(replay)

        assert [q.text for q in replayed] == ["one"]
        assert [q.text for q in handler.queue] == ["two", "three"]
        assert seen == ["one", "two"]


class TestGuardian:
    """Test guardian notification delivery."""

    def test_create_notifier(self) -> None:
        assert isinstance(create_notifier(""), LoggingGuardianNotifier)
        assert isinstance(create_notifier("http://parent.example/hook"), WebhookGuardianNotifier)

    def test_event_to_dict(self) -> None:
        event = GuardianEvent("provider_auth_failure", "Ask a parent", user_id="kid")
        data = event.to_dict()
        assert data["event_type"] == "provider_auth_failure"
        assert data["severity"] == "medium"
        assert data["event_id"] == event.event_id

    @pytest.mark.asyncio
    async def test_failed_delivery_is_counted_not_raised(self) -> None:
        class Broken(GuardianNotifier):
            async def notify(self, event: GuardianEvent) -> None:
                raise RuntimeError("webhook down")

            async def close(self) -> None:
                return None

        dispatcher = GuardianDispatcher(Broken())
        dispatcher.notify(GuardianEvent("x", "y"))
        await dispatcher.flush()

        assert dispatcher.failed == 1
        assert dispatcher.sent == 0
        assert list(dispatcher.recent) == []

    @pytest.mark.asyncio
    async def test_delivery_history_is_bounded(self, notifier: GuardianNotifier) -> None:
        dispatcher = GuardianDispatcher(notifier, recent_limit=2)
        events = [GuardianEvent("provider_auth_failure", f"event {n}") for n in range(5)]
        for event in events:
            dispatcher.notify(event)
        await dispatcher.flush()

        assert dispatcher.sent == 5
        assert list(dispatcher.recent) == [e.event_id for e in events[-2:]]

    @pytest.mark.asyncio
    async def test_webhook_posts_json(self) -> None:
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(200)

        notifier = WebhookGuardianNotifier("http://parent.example/hook")
        notifier._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        await notifier.notify(GuardianEvent("provider_auth_failure", "Ask a parent"))
        await notifier.close()

        assert len(received) == 1
        assert received[0].url == "http://parent.example/hook"
        assert b"provider_auth_failure" in received[0].content
