"""Runtime assembly: builds and wires every cognition component."""

import logging
import os
from typing import Optional

from qdrant_client import QdrantClient

from .completions import CompletionGenerator
from .config import resolve_config
from .embeddings import EmbeddingGenerator
from .events import EventBus
from .metacognition import MetacognitionWorker
from .observation import ObservationPipeline
from .queues import DurableQueues
from .reflection import ReflectionWorker
from .reputation import ReputationManager
from .storage import MemoryStore
from .thoughts import DecisionClient, ThoughtRouter
from .world import WorldStore

logger = logging.getLogger(__name__)


class CognitionRuntime:
    """Owns the shared collaborators and the lifecycle of the background loops."""

    def __init__(
        self,
        config: dict,
        *,
        world: WorldStore,
        events: EventBus,
        memory: MemoryStore,
        observation: ObservationPipeline,
        reflection: ReflectionWorker,
        metacognition: MetacognitionWorker,
        thoughts: ThoughtRouter,
        decision: DecisionClient,
    ):
        self.config = config
        self.world = world
        self.events = events
        self.memory = memory
        self.observation = observation
        self.reflection = reflection
        self.metacognition = metacognition
        self.thoughts = thoughts
        self.decision = decision

    def start(self) -> None:
        """Start the event bus subscribers and all polling loops."""
        self.events.start()
        self.observation.start()
        self.reflection.start()
        self.metacognition.start()
        logger.info("Cognition runtime started")

    async def stop(self) -> None:
        await self.observation.stop()
        await self.reflection.stop()
        await self.metacognition.stop()
        await self.events.stop()
        await self.decision.aclose()
        logger.info("Cognition runtime stopped")

    async def close(self) -> None:
        await self.stop()
        self.world.close()


def mount(
    config: Optional[dict] = None,
    *,
    embeddings: Optional[EmbeddingGenerator] = None,
    completions: Optional[CompletionGenerator] = None,
    decision: Optional[DecisionClient] = None,
    client: Optional[QdrantClient] = None,
) -> CognitionRuntime:
    """Build a runtime from configuration.

    External services can be injected (tests pass fakes); otherwise they
    are created from config. Loops are not started: call `start()` from
    inside a running event loop.

    Args:
        config: Optional configuration (see config.DEFAULTS)
        embeddings: Embedding service override
        completions: Completion service override
        decision: Decision endpoint client override
        client: Qdrant client override

    Returns:
        CognitionRuntime with every component wired to the event bus
    """
    config = resolve_config(config)

    world = WorldStore(config["db_path"])
    world.ensure_schema()

    if client is None and config["qdrant_location"] != ":memory:":
        os.makedirs(os.path.expanduser(config["qdrant_location"]), exist_ok=True)

    queues = DurableQueues(world)
    events = EventBus()
    embeddings = embeddings or EmbeddingGenerator(
        model=config["embedding_model"], dimensions=int(config["embedding_dimensions"])
    )
    completions = completions or CompletionGenerator(model=config["completion_model"])
    decision = decision or DecisionClient(
        config["decision_url"], timeout=float(config["decision_timeout_seconds"])
    )

    memory = MemoryStore(
        config,
        client=client,
        embeddings=embeddings,
        completions=completions,
        world=world,
        queues=queues,
        events=events,
    )
    thoughts = ThoughtRouter(world, decision, memory=memory, events=events, config=config)
    observation = ObservationPipeline(
        memory, world, ReputationManager(world), thoughts=thoughts, config=config
    )
    reflection = ReflectionWorker(memory, queues, config=config)
    metacognition = MetacognitionWorker(memory, world, queues, completions, config=config)

    observation.attach(events)
    thoughts.attach(events)

    logger.info("Mounted cognition runtime (db=%s, qdrant=%s)", config["db_path"], config["qdrant_location"])
    return CognitionRuntime(
        config,
        world=world,
        events=events,
        memory=memory,
        observation=observation,
        reflection=reflection,
        metacognition=metacognition,
        thoughts=thoughts,
        decision=decision,
    )
