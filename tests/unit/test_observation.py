"""Unit tests for the observation pipeline and reputation."""

import uuid
from unittest.mock import AsyncMock

import pytest

from npc_cognition.events import NpcActivityChangeEvent, PlayerCurrentActivityEvent, WorldActionEvent
from npc_cognition.observation import (
    ACTION_KINDS,
    ObservationPipeline,
    classify_npc_activity,
    npc_observation_importance,
    player_display_name,
    reputation_delta,
    time_of_day,
)
from npc_cognition.reputation import ReputationManager
from npc_cognition.sessions import ExpiringRegistry


@pytest.fixture
def reputation(world):
    return ReputationManager(world)


@pytest.fixture
def thoughts():
    return AsyncMock()


@pytest.fixture
def pipeline(memory_store, world, reputation, thoughts):
    return ObservationPipeline(memory_store, world, reputation, thoughts=thoughts)


@pytest.fixture
def player_id():
    return str(uuid.uuid4())


async def add_agent(world, agent_id, x=None, y=None, **fields):
    await world.upsert_agent({"id": agent_id, "name": agent_id.title(), "current_x": x, "current_y": y, **fields})


class TestHelpers:
    def test_action_table(self):
        assert len(ACTION_KINDS) == 18
        witnessable = {name for name, kind in ACTION_KINDS.items() if kind.witnessable}
        assert witnessable == {
            "gift_giving",
            "player_pushing",
            "item_destruction",
            "helping",
            "rude_behavior",
            "generous_act",
            "public_speech",
        }
        assert all(7 <= kind.importance <= 9 for kind in ACTION_KINDS.values())

    def test_reputation_delta(self):
        assert reputation_delta(["positive_action", "generosity"]) == 3
        assert reputation_delta(["positive_action", "caring"]) == 2
        assert reputation_delta(["negative_action", "aggression"]) == -3
        assert reputation_delta(["negative_action", "destructive"]) == -3
        assert reputation_delta(["negative_action", "disrespectful"]) == -2
        assert reputation_delta(["speech"]) == 0

    def test_display_name_fallback(self):
        assert player_display_name("1234567890abcdef") == "Player_12345678"
        assert player_display_name("123", "Kai") == "Kai"

    @pytest.mark.parametrize(
        "hour,phrase",
        [(6, "in the morning"), (11, "in the morning"), (12, "in the afternoon"), (17, "in the evening"), (21, "at night"), (3, "at night")],
    )
    def test_time_of_day(self, hour, phrase):
        assert time_of_day(hour) == phrase

    def test_npc_activity_classification(self):
        assert classify_npc_activity("talking to Bram") == "npc_conversation"
        assert classify_npc_activity("walking home") == "location_change"
        assert classify_npc_activity("baking") == "npc_activity"

    def test_npc_observation_importance(self):
        observer = {"current_location": "square"}
        assert npc_observation_importance(observer, {"current_activity": "baking", "current_location": "bakery"}) == 4
        assert npc_observation_importance(observer, {"current_activity": "urgent fight", "current_location": "square"}) == 8
        assert npc_observation_importance(observer, {"current_activity": "emergency social gathering", "current_location": "square"}) == 9


@pytest.mark.asyncio
class TestReputation:
    async def test_non_uuid_reads_default_and_skips_write(self, reputation, world):
        assert await reputation.get("session-42") == 50
        assert await reputation.update("session-42", 10) == 50
        assert await world.get_reputation_score("session-42") is None

    async def test_update_clamps(self, reputation, player_id):
        assert await reputation.get(player_id) == 50
        assert await reputation.update(player_id, 60) == 100
        assert await reputation.update(player_id, -150) == 0

    async def test_initialize(self, reputation, world, player_id):
        await reputation.initialize(player_id)
        assert await world.get_reputation_score(player_id) == 50


@pytest.mark.asyncio
class TestPlayerActions:
    async def test_move_is_ignored(self, pipeline, memory_store, world, player_id):
        await add_agent(world, "elara", 10, 10)

        stored = await pipeline.process_player_action(
            WorldActionEvent(player_id=player_id, action_type="move", location="10,11")
        )

        assert stored == []
        assert memory_store.count() == 0

    async def test_witnessed_gift(self, pipeline, memory_store, world, reputation, thoughts, player_id):
        await add_agent(world, "elara", 10, 10, current_activity="baking bread")

        stored = await pipeline.process_player_action(
            WorldActionEvent(
                player_id=player_id,
                player_name="Kai",
                action_type="gift_giving",
                location="10,11",
                data={"gift": "a basket of apples", "recipient": "Elara"},
            )
        )

        assert len(stored) == 1
        memory = await memory_store.get_memory(stored[0])
        assert memory.tags == ["witnessable_social_event", "gift_giving", "positive_action", "generosity"]
        assert memory.importance_score == 9
        assert memory.related_players == [player_id]
        assert memory.content.startswith("I saw Kai give a basket of apples to Elara.")
        assert memory.content.endswith(f" while I was baking bread {time_of_day()}")
        assert await reputation.get(player_id) == 53

        thoughts.trigger_post_conversation_thoughts.assert_awaited_once()
        agent_id, summary, duration, importance = thoughts.trigger_post_conversation_thoughts.call_args[0]
        assert agent_id == "elara"
        assert summary.startswith("Witnessed: I saw Kai give")
        assert (duration, importance) == (300, 9)

    async def test_helping_and_pushing_deltas(self, pipeline, world, reputation):
        await add_agent(world, "elara", 0, 0)
        helper, bully = str(uuid.uuid4()), str(uuid.uuid4())

        await pipeline.process_player_action(
            WorldActionEvent(player_id=helper, action_type="helping", location="1,1", data={"help_type": "an old man"})
        )
        await pipeline.process_player_action(
            WorldActionEvent(player_id=bully, action_type="player_pushing", location="1,1", target="Tom")
        )

        assert await reputation.get(helper) == 52
        assert await reputation.get(bully) == 47

    async def test_reputation_changes_once_per_event(self, pipeline, world, reputation, player_id):
        for name in ("elara", "bram", "cora"):
            await add_agent(world, name, 5, 5)

        stored = await pipeline.process_player_action(
            WorldActionEvent(player_id=player_id, action_type="gift_giving", location="5,6")
        )

        assert len(stored) == 3
        assert await reputation.get(player_id) == 53

    async def test_spatial_gates(self, pipeline, memory_store, world, thoughts, player_id):
        """Storage at 20 tiles, thoughts only within 10."""
        await add_agent(world, "near", 10, 10)
        await add_agent(world, "middle", 25, 10)
        await add_agent(world, "far", 40, 10)

        await pipeline.process_player_action(
            WorldActionEvent(player_id=player_id, action_type="fighting", location="10,11", target="Tom")
        )

        assert memory_store.count("near") == 1
        assert memory_store.count("middle") == 1
        assert memory_store.count("far") == 0
        assert [c[0][0] for c in thoughts.trigger_post_conversation_thoughts.call_args_list] == ["near"]

    async def test_thought_range_is_straight_line(self, pipeline, memory_store, world, thoughts, player_id):
        await add_agent(world, "inside", 17, 17)
        await add_agent(world, "corner", 18, 18)

        await pipeline.process_player_action(
            WorldActionEvent(player_id=player_id, action_type="fighting", location="10,10", target="Tom")
        )

        assert memory_store.count("corner") == 1
        assert [c[0][0] for c in thoughts.trigger_post_conversation_thoughts.call_args_list] == ["inside"]

    async def test_no_witness_no_reputation(self, pipeline, world, reputation, player_id):
        await add_agent(world, "far", 100, 100)

        await pipeline.process_player_action(
            WorldActionEvent(player_id=player_id, action_type="gift_giving", location="0,0")
        )

        assert await world.get_reputation_score(player_id) is None

    async def test_named_location_never_triggers_thoughts(self, pipeline, memory_store, world, thoughts, player_id):
        await add_agent(world, "elara", current_location="tavern")

        stored = await pipeline.process_player_action(
            WorldActionEvent(player_id=player_id, action_type="public_speech", location="tavern", data={"speech": "Free ale!"})
        )

        assert len(stored) == 1
        thoughts.trigger_post_conversation_thoughts.assert_not_awaited()

    async def test_witnessable_flag_adds_tag(self, pipeline, memory_store, world, player_id):
        await add_agent(world, "elara", 0, 0)

        stored = await pipeline.process_player_action(
            WorldActionEvent(player_id=player_id, action_type="chat", location="0,0", is_witnessable=True)
        )

        memory = await memory_store.get_memory(stored[0])
        assert memory.tags[0] == "witnessable_social_event"
        assert memory.content.startswith(f"Player_{player_id[:8]} said something at 0,0")


@pytest.mark.asyncio
class TestAwareness:
    async def test_player_current_activity(self, pipeline, memory_store, world, player_id):
        await add_agent(world, "elara", 0, 0)
        event = PlayerCurrentActivityEvent(player_id=player_id, player_name="Kai", activity="fishing", location="1,1")

        first = await pipeline.observe_player_current_activity(event)
        second = await pipeline.observe_player_current_activity(event)

        assert len(first) == 1
        assert second == []
        memory = await memory_store.get_memory(first[0])
        assert memory.importance_score == 6
        assert "player_activity" in memory.tags

    async def test_idle_activity_ignored(self, pipeline, world, player_id):
        await add_agent(world, "elara", 0, 0)
        event = PlayerCurrentActivityEvent(player_id=player_id, activity="idle", location="1,1")
        assert await pipeline.observe_player_current_activity(event) == []

    async def test_npc_activity_change(self, pipeline, memory_store, world):
        await add_agent(world, "elara", 0, 0)
        await add_agent(world, "bram", 2, 2)
        await add_agent(world, "cora", 30, 30)

        stored = await pipeline.process_npc_activity_change(
            NpcActivityChangeEvent(agent_id="bram", agent_name="Bram", activity="hammering", location="2,2")
        )

        assert len(stored) == 1
        memory = await memory_store.get_memory(stored[0])
        assert memory.agent_id == "elara"
        assert memory.content == "I noticed Bram started hammering"
        assert memory.related_agents == ["bram"]

    async def test_scan_once(self, pipeline, memory_store, world, thoughts):
        await add_agent(world, "elara", 10, 10, current_activity="baking bread", current_location="bakery")
        await add_agent(world, "bram", 12, 10, current_activity="fighting with a bear", current_location="forge")

        assert await pipeline.scan_once() == 2

        thoughts.trigger_spontaneous_thought.assert_awaited_once()
        observer_id, observation_type, data = thoughts.trigger_spontaneous_thought.call_args[0]
        assert observer_id == "elara"
        assert observation_type == "npc_activity"
        assert data["targetNPC"] == "Bram"
        assert data["importance"] == 7

        # per-observer cooldown
        assert await pipeline.scan_once() == 0

    async def test_scan_suppresses_recent_duplicates(self, pipeline, world):
        await add_agent(world, "elara", 10, 10, current_activity="baking bread")
        await add_agent(world, "bram", 12, 10, current_activity="hammering")

        assert await pipeline.scan_once() == 2
        pipeline._cooldowns = ExpiringRegistry(0)
        assert await pipeline.scan_once() == 0

    async def test_stats_and_recent(self, pipeline, world, player_id):
        await add_agent(world, "elara", 0, 0)
        await pipeline.process_player_action(
            WorldActionEvent(player_id=player_id, action_type="trade", location="0,0", target="Bram")
        )

        stats = await pipeline.get_observation_stats()
        recent = await pipeline.get_recent_observations("elara")

        assert stats["total_observations"] == 1
        assert stats["observations_by_agent"] == {"elara": 1}
        assert recent[0]["importance"] == 7


class TestRange:
    def test_observation_range_clamped(self, pipeline):
        assert pipeline.set_observation_range(50) == 20
        assert pipeline.set_observation_range(0) == 1
        assert pipeline.set_observation_range(12) == 12
