"""Unit tests for data models."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from npc_cognition.models import (
    Memory,
    MetacognitionResult,
    Observation,
    ReflectionJob,
    ScheduleModification,
    ThoughtResult,
    ThoughtTrigger,
    UrgentMetacognitionJob,
    clamp_score,
)


class TestMemoryModel:
    """Unit tests for Memory data model."""

    def test_memory_creation_with_defaults(self):
        """Memory can be created with minimal fields."""
        memory = Memory(agent_id="agent-1", content="I saw the baker open the shop")

        assert memory.agent_id == "agent-1"
        assert memory.memory_type == "observation"
        assert memory.importance_score == 5
        assert memory.emotional_relevance == 5
        # ID should be valid UUID4 format
        uuid.UUID(memory.id)
        assert memory.timestamp.tzinfo is not None
        assert memory.tags == []
        assert memory.distance is None

    def test_scores_are_clamped(self):
        """Score fields always land in [1, 10]."""
        high = Memory(agent_id="a", content="x", importance_score=42, emotional_relevance=11)
        low = Memory(agent_id="a", content="x", importance_score=-3, emotional_relevance=0)

        assert high.importance_score == 10
        assert high.emotional_relevance == 10
        assert low.importance_score == 1
        assert low.emotional_relevance == 1

    def test_set_fields_drop_duplicates_keep_order(self):
        memory = Memory(
            agent_id="a",
            content="x",
            tags=["gift_giving", "generosity", "gift_giving"],
            related_players=["p1", "p2", "p1"],
        )

        assert memory.tags == ["gift_giving", "generosity"]
        assert memory.related_players == ["p1", "p2"]

    def test_naive_timestamp_becomes_utc(self):
        memory = Memory(agent_id="a", content="x", timestamp=datetime(2024, 5, 1, 12, 0))
        assert memory.timestamp.tzinfo == timezone.utc

    def test_invalid_memory_type_rejected(self):
        with pytest.raises(ValidationError):
            Memory(agent_id="a", content="x", memory_type="dream")

    def test_memory_dict_for_storage(self):
        """dict_for_storage excludes embedding and adds an epoch timestamp."""
        memory = Memory(agent_id="a", content="Test", embedding=[0.1, 0.2], tags=["tag1"])

        storage_dict = memory.dict_for_storage()

        assert "embedding" not in storage_dict
        assert "distance" not in storage_dict
        assert isinstance(storage_dict["timestamp"], str)  # ISO format
        assert storage_dict["ts"] == pytest.approx(memory.timestamp.timestamp())

    def test_from_payload_restores_memory(self):
        original = Memory(
            agent_id="a",
            memory_type="reflection",
            content="I should spend more time at the market",
            importance_score=8,
            tags=["reflection"],
            related_agents=["b"],
            location="market",
        )

        restored = Memory.from_payload(original.dict_for_storage(), distance=0.5)

        assert restored.id == original.id
        assert restored.memory_type == "reflection"
        assert restored.timestamp == original.timestamp
        assert restored.related_agents == ["b"]
        assert restored.distance == 0.5

    def test_hours_old(self):
        now = datetime.now(timezone.utc)
        memory = Memory(agent_id="a", content="x", timestamp=now - timedelta(hours=5))
        assert memory.hours_old(now) == pytest.approx(5.0)

    def test_memory_id_uniqueness(self):
        """Each memory gets unique ID."""
        m1 = Memory(agent_id="test", content="A")
        m2 = Memory(agent_id="test", content="B")

        assert m1.id != m2.id


class TestClampScore:
    def test_rounds_half_up(self):
        assert clamp_score(8.5) == 9
        assert clamp_score(8.49) == 8

    def test_custom_bounds(self):
        assert clamp_score(5, low=7, high=10) == 7
        assert clamp_score(12, low=7, high=10) == 10

    def test_garbage_falls_back_to_low(self):
        assert clamp_score("lots") == 1


class TestThoughtModels:
    def test_trigger_importance_clamped(self):
        trigger = ThoughtTrigger(type="conversation", importance=15)
        assert trigger.importance == 10

    def test_trigger_type_validated(self):
        with pytest.raises(ValidationError):
            ThoughtTrigger(type="daydream")

    def test_result_accepts_camel_case_alias(self):
        result = ThoughtResult.model_validate(
            {
                "thoughtType": "EXTERNAL_EVENT",
                "decision": "Go help at the farm",
                "action": {"type": "schedule_activity", "details": {"activity": "farming"}},
            }
        )

        assert result.thought_type == "EXTERNAL_EVENT"
        assert result.action_type == "schedule_activity"

    def test_result_without_action(self):
        assert ThoughtResult(decision="Nothing to do").action_type == "none"


class TestObservationModel:
    def test_defaults_are_independent(self):
        first = Observation(
            observer_id="a", observation_type="chat", location="1,1", description="d", importance=7
        )
        second = Observation(
            observer_id="b", observation_type="chat", location="1,1", description="d", importance=7
        )
        first.tags.append("witnessable_social_event")

        assert second.tags == []
        assert not first.should_trigger_thought


class TestMetacognitionModels:
    def test_schedule_modification_priority_clamped(self):
        assert ScheduleModification(activity="rest", priority=99).priority == 10

    def test_result_requires_core_fields(self):
        with pytest.raises(ValidationError):
            MetacognitionResult(performance_evaluation="ok")

    def test_job_defaults(self):
        job = UrgentMetacognitionJob(agent_id="a", urgency_level=9, urgency_reason="fire")
        assert job.trigger_reason == "urgent_conversation_reflection"
        assert job.player_message == ""

        reflection = ReflectionJob(agent_id="a", cumulative_importance=150, memory_count=17)
        assert datetime.fromisoformat(reflection.trigger_time).tzinfo is not None
