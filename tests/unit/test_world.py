"""Unit tests for the SQLite world store and durable queues."""

from datetime import datetime, timedelta, timezone

import pytest

from npc_cognition.queues import reflection_mirror_queue


@pytest.fixture
async def villagers(world):
    await world.upsert_agent(
        {
            "id": "elara",
            "name": "Elara",
            "current_location": "bakery",
            "current_activity": "baking bread",
            "primary_goal": "Run the best bakery",
            "likes": ["bread"],
            "current_x": 10,
            "current_y": 10,
        }
    )
    await world.upsert_agent({"id": "bram", "name": "Bram", "current_location": "forge", "current_x": 20, "current_y": 10})
    await world.upsert_agent({"id": "cora", "name": "Cora", "current_location": "bakery"})
    return world


@pytest.mark.asyncio
class TestAgents:
    async def test_get_agent_decodes_json_fields(self, villagers):
        agent = await villagers.get_agent("elara")

        assert agent["name"] == "Elara"
        assert agent["likes"] == ["bread"]
        assert agent["secondary_goals"] == []
        assert agent["schedule"] == {}
        assert (agent["current_x"], agent["current_y"]) == (10, 10)

    async def test_missing_agent(self, world):
        assert await world.get_agent("nobody") is None
        assert await world.get_agent_activity("nobody") is None

    async def test_find_by_coordinates_uses_square_range(self, villagers):
        near = await villagers.find_agents_at_coordinates(15, 15, 5)
        assert [a["id"] for a in near] == ["bram", "elara"]

        excluded = await villagers.find_agents_at_coordinates(10, 10, 1, exclude_id="elara")
        assert excluded == []

    async def test_find_by_named_location(self, villagers):
        found = await villagers.find_agents_at_location("bakery", exclude_id="cora")
        assert [a["id"] for a in found] == ["elara"]

    async def test_active_agents_have_activity(self, villagers):
        await villagers.set_agent_activity("bram", "hammering")
        assert [a["id"] for a in await villagers.list_active_agents()] == ["bram", "elara"]

    async def test_position_update(self, villagers):
        await villagers.upsert_agent({"id": "cora", "name": "Cora", "current_x": 3, "current_y": 4})
        agent = await villagers.get_agent("cora")
        assert (agent["current_x"], agent["current_y"]) == (3, 4)

    async def test_goal_update_keeps_missing_fields(self, villagers):
        await villagers.update_agent_goals("elara", None, ["Learn to brew"])

        agent = await villagers.get_agent("elara")
        assert agent["primary_goal"] == "Run the best bakery"
        assert agent["secondary_goals"] == ["Learn to brew"]

    async def test_personality_merge_skips_duplicates(self, villagers):
        await villagers.merge_agent_personality("elara", ["bread", "music"], ["rain"], ["curious"])

        agent = await villagers.get_agent("elara")
        assert agent["likes"] == ["bread", "music"]
        assert agent["dislikes"] == ["rain"]
        assert agent["personality_traits"] == ["curious"]


@pytest.mark.asyncio
class TestPlansAndMetacognition:
    async def test_plans_round_trip(self, world):
        plan_id = await world.insert_plan("elara", "Open early", [{"step": "wake"}], priority=5)
        await world.set_plan_status(plan_id, "abandoned")

        plans = await world.recent_plans("elara")
        assert plans[0]["plan_steps"] == [{"step": "wake"}]
        assert await world.count_abandoned_plans("elara") == 1

    async def test_metacognition_counts(self, world):
        before = datetime.now(timezone.utc) - timedelta(seconds=1)
        await world.insert_metacognition("elara", "Doing well", ["bake more"], [], "I am diligent")

        assert await world.count_metacognition_since("elara", before) == 1
        assert await world.last_metacognition_at("elara") >= before
        assert await world.last_metacognition_at("bram") is None


@pytest.mark.asyncio
class TestThoughtLimits:
    async def test_increment_stops_at_maximum(self, world):
        results = [await world.try_increment_limit("elara", "goal_changes", 2) for _ in range(3)]

        assert results == [True, True, False]
        limit = await world.get_daily_limit("elara")
        assert limit.goal_changes == 2
        assert limit.total_thoughts == 0

    async def test_counters_are_per_day(self, world):
        assert await world.try_increment_limit("elara", "total_thoughts", 1, date="2024-01-01")
        assert await world.try_increment_limit("elara", "total_thoughts", 1, date="2024-01-02")
        assert not await world.try_increment_limit("elara", "total_thoughts", 1, date="2024-01-02")

    async def test_unused_day_reads_zero(self, world):
        limit = await world.get_daily_limit("elara", date="2030-01-01")
        assert limit.total_thoughts == 0


@pytest.mark.asyncio
class TestReputationRows:
    async def test_adjust_creates_and_clamps(self, world):
        assert await world.get_reputation_score("p") is None
        assert await world.adjust_reputation("p", 3) == 53
        assert await world.adjust_reputation("p", 200) == 100
        assert await world.adjust_reputation("p", -500) == 0


@pytest.mark.asyncio
class TestDurableQueues:
    async def test_fifo_and_destructive_pop(self, queues):
        await queues.push("q", {"n": 1})
        await queues.push("q", {"n": 2})

        assert await queues.pop("q") == {"n": 1}
        assert await queues.length("q") == 1
        assert await queues.pop("q") == {"n": 2}
        assert await queues.pop("q") is None

    async def test_pop_wait_times_out(self, queues):
        assert await queues.pop_wait("empty", timeout=0.05, poll_interval=0.01) is None

    async def test_names_by_prefix(self, queues):
        await queues.push(reflection_mirror_queue("a"), {})
        await queues.push(reflection_mirror_queue("b"), {})
        await queues.push("reflection_queue_other", {})

        assert await queues.names("reflection_queue:") == ["reflection_queue:a", "reflection_queue:b"]

    async def test_clear_and_peek(self, queues):
        await queues.push("q", {"n": 1})
        assert await queues.peek_all("q") == [{"n": 1}]
        assert await queues.clear("q") == 1
        assert await queues.length("q") == 0
