"""
Pytest configuration and fixtures for the Learning Companion.
Only the LLM provider and the guardian channel are faked.
"""

import random
import shutil
import tempfile
from pathlib import Path
from typing import Generator, List, Optional, Union

import pytest

from learning_companion.core.config import Config
from learning_companion.core.config.runtime import (
    CacheConfig,
    PersistenceConfig,
    SessionConfig,
)
from learning_companion.core.llm import GenerationRequest, GenerationResult, LLMInterface
from learning_companion.core.persistence import InMemoryStore
from learning_companion.features.guardian import GuardianEvent, GuardianNotifier


class FakeClock:
    """Settable clock; starts at a fixed daytime timestamp."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(LLMInterface):
    """Scripted provider: pops results or exceptions, else echoes."""

    name = "fake"

    def __init__(self, script: Optional[List[Union[GenerationResult, Exception]]] = None):
        self.script: List[Union[GenerationResult, Exception]] = list(script or [])
        self.requests: List[GenerationRequest] = []
        self.closed = False

    def queue(self, *items: Union[GenerationResult, Exception]) -> None:
        self.script.extend(items)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        last = request.messages[-1].content if request.messages else ""
        return GenerationResult(
            text=f"Let's explore: {last}",
            input_tokens=100,
            output_tokens=50,
            model=request.model,
        )

    async def close(self) -> None:
        self.closed = True

    @property
    def calls(self) -> int:
        return len(self.requests)


class RecordingNotifier(GuardianNotifier):
    """Keeps every guardian event it is asked to deliver."""

    def __init__(self) -> None:
        self.events: List[GuardianEvent] = []

    async def notify(self, event: GuardianEvent) -> None:
        self.events.append(event)

    async def close(self) -> None:
        return None


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    """Config with deterministic replies and an in-memory backend."""
    return Config(
        session=SessionConfig(encouragement_probability=0.0),
        cache=CacheConfig(seed_common_questions=False),
        persistence=PersistenceConfig(backend="memory", data_dir=temp_dir),
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(7)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
