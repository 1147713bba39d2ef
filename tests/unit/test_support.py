"""Unit tests for config, caching, expiring state and tile geometry."""

import pytest

from npc_cognition.cache import TTLCache
from npc_cognition.config import DEFAULTS, resolve_config
from npc_cognition.sessions import ExpiringRegistry
from npc_cognition.spatial import agent_position, euclidean_distance, parse_location, within_range


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("NPC_DECISION_URL", raising=False)
        config = resolve_config()
        assert config["decision_url"] == DEFAULTS["decision_url"]
        assert config["max_daily_thoughts"] == 10

    def test_environment_overrides_default(self, monkeypatch):
        monkeypatch.setenv("NPC_DECISION_URL", "http://decider:9000")
        assert resolve_config()["decision_url"] == "http://decider:9000"

    def test_explicit_overrides_environment(self, monkeypatch):
        monkeypatch.setenv("NPC_DECISION_URL", "http://decider:9000")
        config = resolve_config({"decision_url": "http://local", "extra": 1})
        assert config["decision_url"] == "http://local"
        assert config["extra"] == 1


class TestTTLCache:
    def test_set_get(self):
        cache = TTLCache(ttl_seconds=60)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("b") is None

    def test_expiry(self):
        cache = TTLCache(ttl_seconds=0)
        cache.set("a", 1)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_invalidate_prefix(self):
        cache = TTLCache()
        cache.set("agent-1:recent", [1])
        cache.set("agent-1:important", [2])
        cache.set("agent-10:recent", [3])

        assert cache.invalidate_prefix("agent-1:") == 2
        assert cache.get("agent-10:recent") == [3]


class TestExpiringRegistry:
    def test_touch_and_expire(self):
        clock = FakeClock()
        registry = ExpiringRegistry(30, clock=clock)
        registry.touch("elara", "baking")

        assert registry.is_active("elara")

        clock.now = 31
        assert not registry.is_active("elara")
        assert registry.sweep() == ["elara"]
        assert len(registry) == 0

    def test_touch_restarts_lifetime(self):
        clock = FakeClock()
        registry = ExpiringRegistry(30, clock=clock)
        registry.touch("elara")
        clock.now = 20
        registry.touch("elara")
        clock.now = 40

        assert registry.is_active("elara")
        assert registry.sweep() == []


class TestSpatial:
    @pytest.mark.parametrize(
        "location,expected",
        [("10,11", (10, 11)), (" -3 , 4 ", (-3, 4)), ("tavern", None), ("", None), (None, None), ("1,2,3", None)],
    )
    def test_parse_location(self, location, expected):
        assert parse_location(location) == expected

    def test_distance(self):
        assert euclidean_distance((0, 0), (3, 4)) == 5.0

    def test_agent_position(self):
        assert agent_position({"current_x": 3, "current_y": "4"}) == (3, 4)
        assert agent_position({"current_x": 3, "current_y": None}) is None

    def test_within_range(self):
        assert within_range((10, 10), "20,10", 10)
        assert within_range((10, 10), "17,17", 10)
        assert not within_range((10, 10), "18,18", 10)
        assert not within_range((10, 10), "21,10", 10)
        assert not within_range(None, "10,10", 10)
        assert not within_range((10, 10), "town_square", 10)
