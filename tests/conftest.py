"""Shared fixtures: local backends and deterministic fakes for external services."""

import uuid
from unittest.mock import AsyncMock

import pytest

from npc_cognition.events import EventBus
from npc_cognition.queues import DurableQueues
from npc_cognition.storage import MemoryStore
from npc_cognition.world import WorldStore


class FakeEmbedder:
    """One-hot embeddings: equal text gives equal vectors, distinct text is sqrt(2) apart.

    Tests can pin a vector for specific text through `vectors`.
    """

    def __init__(self, dimensions: int = 128):
        self.dimensions = dimensions
        self.vectors: dict[str, list[float]] = {}
        self.fail = False
        self.calls: list[str] = []

    async def generate(self, content: str) -> list[float]:
        self.calls.append(content)
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        if content not in self.vectors:
            vector = [0.0] * self.dimensions
            vector[len(self.vectors) % self.dimensions] = 1.0
            self.vectors[content] = vector
        return list(self.vectors[content])

    def zero_vector(self) -> list[float]:
        return [0.0] * self.dimensions


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def mock_completions():
    """Completion service mock with a fixed reply."""
    completions = AsyncMock()
    completions.complete.return_value = "I have been busy lately and people seem to trust me."
    return completions


@pytest.fixture
def world(tmp_path):
    store = WorldStore(str(tmp_path / f"world_{uuid.uuid4().hex}.db"))
    store.ensure_schema()
    yield store
    store.close()


@pytest.fixture
def queues(world):
    return DurableQueues(world)


@pytest.fixture
def memory_store(world, queues, fake_embedder, mock_completions):
    return MemoryStore(
        {"qdrant_location": ":memory:"},
        embeddings=fake_embedder,
        completions=mock_completions,
        world=world,
        queues=queues,
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def unique_agent_id():
    """Provide a unique agent ID for each test."""
    return f"agent-{uuid.uuid4().hex[:8]}"
