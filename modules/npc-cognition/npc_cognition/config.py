"""Configuration resolution for the cognition runtime.

Config is a plain dict. Each key resolves from the explicit dict first,
then from its environment variable (if it has one), then from DEFAULTS.
"""

import os
from typing import Any, Optional

DEFAULTS: dict[str, Any] = {
    # Storage
    "db_path": os.path.expanduser("~/.npc-cognition/world.db"),
    "qdrant_location": os.path.expanduser("~/.npc-cognition/qdrant"),
    "collection": "agent_memories",
    "cache_ttl_seconds": 3600,
    # External cognition services
    "embedding_model": "text-embedding-3-small",
    "embedding_dimensions": 1536,
    "completion_model": "gpt-4o-mini",
    "decision_url": "http://localhost:3000",
    "decision_timeout_seconds": 30.0,
    # Observation
    "observation_range": 20,
    "thought_trigger_range": 10,
    "awareness_range": 8,
    "awareness_interval_seconds": 30.0,
    "awareness_cooldown_seconds": 30.0,
    # Workers
    "reflection_poll_seconds": 2.0,
    "reflection_error_backoff_seconds": 5.0,
    "urgent_poll_seconds": 0.1,
    "regular_poll_seconds": 30.0,
    "regular_pop_timeout_seconds": 1.0,
    # Daily thought quotas
    "max_daily_thoughts": 10,
    "max_daily_personality_changes": 2,
    "max_daily_goal_changes": 1,
    "max_daily_spontaneous_conversations": 3,
}

ENV_VARS = {
    "db_path": "NPC_COGNITION_DB_PATH",
    "qdrant_location": "NPC_COGNITION_QDRANT",
    "decision_url": "NPC_DECISION_URL",
    "embedding_model": "NPC_EMBEDDING_MODEL",
    "completion_model": "NPC_COMPLETION_MODEL",
}


def resolve_config(config: Optional[dict] = None) -> dict[str, Any]:
    """Merge an explicit config dict with environment and defaults.

    Args:
        config: Optional overrides. Unknown keys are passed through.

    Returns:
        A new dict containing every key in DEFAULTS.
    """
    config = dict(config or {})
    resolved: dict[str, Any] = {}

    for key, default in DEFAULTS.items():
        if key in config:
            resolved[key] = config.pop(key)
            continue
        env_name = ENV_VARS.get(key)
        env_value = os.getenv(env_name) if env_name else None
        resolved[key] = env_value if env_value else default

    resolved.update(config)
    return resolved
