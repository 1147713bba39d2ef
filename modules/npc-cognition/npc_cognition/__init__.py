"""NPC memory and cognition with per-agent memory logs."""

__version__ = "1.0.0"

from .models import Memory
from .embeddings import EmbeddingGenerator
from .completions import CompletionGenerator
from .events import EventBus
from .world import WorldStore
from .queues import DurableQueues
from .storage import MemoryStore
from .reputation import ReputationManager
from .observation import ObservationPipeline
from .reflection import ReflectionWorker
from .metacognition import MetacognitionWorker
from .thoughts import DecisionClient, DecisionServiceError, ThoughtRouter
from .runtime import CognitionRuntime, mount

__all__ = [
    "Memory",
    "EmbeddingGenerator",
    "CompletionGenerator",
    "EventBus",
    "WorldStore",
    "DurableQueues",
    "MemoryStore",
    "ReputationManager",
    "ObservationPipeline",
    "ReflectionWorker",
    "MetacognitionWorker",
    "DecisionClient",
    "DecisionServiceError",
    "ThoughtRouter",
    "CognitionRuntime",
    "mount",
]
