"""Data models for NPC memory and cognition."""

from datetime import datetime, timezone
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

MemoryType = Literal["observation", "reflection", "plan", "metacognition"]

TriggerType = Literal[
    "external_event",
    "internal_reflection",
    "memory_association",
    "conversation",
    "observation",
    "time_based",
]

ActionType = Literal[
    "immediate_activity",
    "schedule_activity",
    "modify_goals",
    "change_personality",
    "initiate_conversation",
    "none",
]


def clamp_score(value: Any, low: int = 1, high: int = 10) -> int:
    """Round to an int and clamp into [low, high]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = float(low)
    return max(low, min(high, int(number + 0.5)))


def _unique(values: Optional[list]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values or []:
        seen.setdefault(str(value), None)
    return list(seen)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Memory(BaseModel):
    """One persisted unit of an agent's experience or synthesized insight.

    Design decisions:
    - id: Auto-generated UUID4 (Qdrant requires valid UUIDs)
    - importance_score / emotional_relevance: always clamped to [1, 10]
    - tags / related_agents / related_players: set semantics, order kept
    - embedding: stored in Qdrant's vector field, not the payload
    - distance: transient, set only on similarity-ranked results
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    agent_id: str
    memory_type: MemoryType = "observation"
    content: str
    importance_score: int = 5
    emotional_relevance: int = 5
    tags: list[str] = []
    related_agents: list[str] = []
    related_players: list[str] = []
    location: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    embedding: list[float] = []
    distance: Optional[float] = None

    @field_validator("importance_score", "emotional_relevance", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_score(value)

    @field_validator("tags", "related_agents", "related_players", mode="before")
    @classmethod
    def _dedupe(cls, value: Any) -> list[str]:
        return _unique(value)

    @field_validator("timestamp")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def dict_for_storage(self) -> dict:
        """Return dict without embedding for Qdrant payload.

        `ts` duplicates the timestamp as epoch seconds so range filters
        work on a numeric field.
        """
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "memory_type": self.memory_type,
            "content": self.content,
            "importance_score": self.importance_score,
            "emotional_relevance": self.emotional_relevance,
            "tags": self.tags,
            "related_agents": self.related_agents,
            "related_players": self.related_players,
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
            "ts": self.timestamp.timestamp(),
        }

    @classmethod
    def from_payload(
        cls,
        payload: dict,
        embedding: Optional[list[float]] = None,
        distance: Optional[float] = None,
    ) -> "Memory":
        return cls(
            id=payload["id"],
            agent_id=payload["agent_id"],
            memory_type=payload.get("memory_type", "observation"),
            content=payload["content"],
            importance_score=payload.get("importance_score", 5),
            emotional_relevance=payload.get("emotional_relevance", 5),
            tags=payload.get("tags", []),
            related_agents=payload.get("related_agents", []),
            related_players=payload.get("related_players", []),
            location=payload.get("location", ""),
            timestamp=datetime.fromisoformat(payload["timestamp"]),
            embedding=embedding or [],
            distance=distance,
        )

    def hours_old(self, now: Optional[datetime] = None) -> float:
        now = now or _utcnow()
        return max(0.0, (now - self.timestamp).total_seconds() / 3600)


class ThoughtTrigger(BaseModel):
    """A classified stimulus handed to the decision endpoint."""

    type: TriggerType
    data: dict[str, Any] = {}
    importance: int = 5
    timestamp: float = Field(default_factory=lambda: _utcnow().timestamp())

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_score(value)


class ThoughtAction(BaseModel):
    type: ActionType = "none"
    details: dict[str, Any] = {}


class ThoughtResult(BaseModel):
    """Decision returned by the external decision endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    thought_type: str = Field(default="INTERNAL_REFLECTION", alias="thoughtType")
    decision: str = ""
    action: Optional[ThoughtAction] = None
    reasoning: str = ""
    importance: int = 5
    urgency: int = 5
    confidence: int = 5

    @property
    def action_type(self) -> str:
        return self.action.type if self.action else "none"


class DailyThoughtLimit(BaseModel):
    """Per-agent, per-day counters for quota-gated thought actions."""

    agent_id: str
    date: str
    personality_changes: int = 0
    goal_changes: int = 0
    spontaneous_conversations: int = 0
    total_thoughts: int = 0


class Observation(BaseModel):
    """Ephemeral result of classifying a world event for one observer."""

    observer_id: str
    target_id: Optional[str] = None
    observation_type: str
    location: str
    description: str
    importance: int
    tags: list[str] = []
    related_agents: list[str] = []
    related_players: list[str] = []
    should_trigger_thought: bool = False


class ScheduleModification(BaseModel):
    time: str = "NOW"
    activity: str
    description: str = ""
    reason: str = ""
    priority: int = 5
    location: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_score(value)


class MetacognitionResult(BaseModel):
    agent_id: str = ""
    performance_evaluation: str
    strategy_adjustments: list[str]
    goal_modifications: list[str] = []
    schedule_modifications: list[ScheduleModification]
    self_awareness_notes: str = ""
    importance_score: int = 8


class ReflectionJob(BaseModel):
    agent_id: str
    cumulative_importance: int
    memory_count: int
    trigger_time: str = Field(default_factory=lambda: _utcnow().isoformat())


class MetacognitionJob(BaseModel):
    agent_id: str
    trigger_reason: str = "manual"
    importance_score: Optional[int] = None


class UrgentMetacognitionJob(BaseModel):
    agent_id: str
    trigger_reason: str = "urgent_conversation_reflection"
    urgency_level: int
    urgency_reason: str
    player_message: str = ""
