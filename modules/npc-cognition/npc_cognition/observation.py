"""Turns world, player and NPC events into spatially gated observations."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from .config import resolve_config
from .events import (
    EventBus,
    NpcActivityChangeEvent,
    PlayerCurrentActivityEvent,
    WorldActionEvent,
)
from .models import Observation
from .reputation import ReputationManager
from .sessions import ExpiringRegistry
from .spatial import agent_position, parse_location, within_range
from .storage import MemoryStore
from .world import WorldStore

logger = logging.getLogger(__name__)

WITNESSABLE_TAG = "witnessable_social_event"
THOUGHT_IMPORTANCE = 8
WITNESSED_DURATION_SECONDS = 300
MAX_OBSERVATION_RANGE = 20


@dataclass(frozen=True)
class ActionKind:
    importance: int
    tags: tuple[str, ...]
    template: str
    witnessable: bool = False


ACTION_KINDS: dict[str, ActionKind] = {
    "chat": ActionKind(7, ("chat", "social_interaction"), "{name} said something at {location}"),
    "interact": ActionKind(
        7, ("interaction", "social_interaction"), "I saw {name} interact with {target}."
    ),
    "trade": ActionKind(7, ("trade", "commerce"), "I saw {name} trading with {target}."),
    "gift_giving": ActionKind(
        9,
        ("gift_giving", "positive_action", "generosity"),
        "I saw {name} give {gift} to {recipient}. It seemed like a very kind gesture.",
        witnessable=True,
    ),
    "player_pushing": ActionKind(
        9,
        ("player_pushing", "negative_action", "aggression"),
        "I witnessed {name} push {target}. This seemed aggressive and inappropriate.",
        witnessable=True,
    ),
    "item_destruction": ActionKind(
        9,
        ("item_destruction", "negative_action", "destructive"),
        "I saw {name} destroy {item}. This was destructive and concerning behavior.",
        witnessable=True,
    ),
    "helping": ActionKind(
        9,
        ("helping", "positive_action", "caring"),
        "I observed {name} helping {help_type}. This was a thoughtful and caring action.",
        witnessable=True,
    ),
    "rude_behavior": ActionKind(
        9,
        ("rude_behavior", "negative_action", "disrespectful"),
        "I witnessed {name} {rude_action}. This was inappropriate and disrespectful.",
        witnessable=True,
    ),
    "generous_act": ActionKind(
        9,
        ("generous_act", "positive_action", "generosity"),
        "I saw {name} {generous_action}. This was a wonderful display of generosity.",
        witnessable=True,
    ),
    "social_event": ActionKind(
        8,
        ("social_event", "social_interaction"),
        "I observed {name} {event_type}. This was an interesting social interaction.",
    ),
    "public_speech": ActionKind(
        9,
        ("public_speech", "speech", "public_statement"),
        'I heard {name} say publicly: "{speech}". This was a public statement.',
        witnessable=True,
    ),
    "activity_update": ActionKind(
        8, ("activity_update", "public_announcement"), "I noticed {name} is {activity}"
    ),
    "compliment": ActionKind(
        7, ("compliment", "positive_action", "kindness"), "I heard {name} compliment {target}."
    ),
    "insult": ActionKind(
        8,
        ("insult", "negative_action", "disrespectful"),
        "I heard {name} insult {target}. That was hurtful to hear.",
    ),
    "theft": ActionKind(
        9,
        ("theft", "negative_action", "crime"),
        "I saw {name} steal {item}. That was dishonest.",
    ),
    "fighting": ActionKind(
        9,
        ("fighting", "negative_action", "aggression", "conflict"),
        "I saw {name} fighting with {target}. Things got violent.",
    ),
    "performance": ActionKind(
        8,
        ("performance", "entertainment", "social_interaction"),
        "I watched {name} perform {performance}. It drew a small crowd.",
    ),
    "emergency": ActionKind(
        9, ("emergency", "urgent"), "I saw {name} caught up in an emergency: {description}."
    ),
}

UNUSUAL_KEYWORDS = ("emergency", "urgent", "crisis", "fight", "argument", "celebration")
SOCIAL_KEYWORDS = ("talk", "convers", "meet", "gather", "social")


def player_display_name(player_id: str, name: Optional[str] = None) -> str:
    return name or f"Player_{player_id[:8]}"


def time_of_day(hour: Optional[int] = None) -> str:
    """Coarse wall-clock bucket appended to observation text."""
    hour = datetime.now().hour if hour is None else hour
    if 6 <= hour < 12:
        return "in the morning"
    if 12 <= hour < 17:
        return "in the afternoon"
    if 17 <= hour < 21:
        return "in the evening"
    return "at night"


def reputation_delta(tags: list[str]) -> int:
    """Signed reputation change implied by an observation's tags."""
    if "positive_action" in tags:
        return 3 if "generosity" in tags else 2
    if "negative_action" in tags:
        return -3 if "aggression" in tags or "destructive" in tags else -2
    return 0


def classify_npc_activity(activity: str) -> str:
    lowered = activity.lower()
    if any(k in lowered for k in ("talk", "convers", "speak")):
        return "npc_conversation"
    if any(k in lowered for k in ("mov", "walk", "go")):
        return "location_change"
    return "npc_activity"


def npc_observation_importance(observer: dict[str, Any], target: dict[str, Any]) -> int:
    activity = (target.get("current_activity") or "").lower()
    importance = 4
    if any(k in activity for k in UNUSUAL_KEYWORDS):
        importance += 3
    if observer.get("current_location") and observer.get("current_location") == target.get("current_location"):
        importance += 1
    if any(k in activity for k in SOCIAL_KEYWORDS):
        importance += 2
    return min(importance, 9)


class ObservationPipeline:
    """Classifies events for nearby agents and stores what they noticed.

    Design decisions:
    - Storage range (default 20 tiles) decides whether anything is written
    - Thought range (default 10 tiles, straight line) plus importance >= 8 decides whether
      the expensive thought pipeline runs
    - Named locations match agents by name and never trigger thoughts
    - Reputation changes once per witnessed event, not once per witness
    """

    def __init__(
        self,
        memory: MemoryStore,
        world: WorldStore,
        reputation: ReputationManager,
        thoughts: Optional[Any] = None,
        config: Optional[dict] = None,
    ):
        """Initialize pipeline.

        Args:
            memory: Memory store receiving observations
            world: Agent positions and activities
            reputation: Player reputation collaborator
            thoughts: Optional thought router; needs
                trigger_post_conversation_thoughts and trigger_spontaneous_thought
            config: Optional configuration (see config.DEFAULTS)
        """
        config = resolve_config(config)
        self.memory = memory
        self.world = world
        self.reputation = reputation
        self.thoughts = thoughts

        self.observation_range = int(config["observation_range"])
        self.thought_trigger_range = int(config["thought_trigger_range"])
        self.awareness_range = int(config["awareness_range"])
        self.awareness_interval = float(config["awareness_interval_seconds"])
        self._cooldowns = ExpiringRegistry(float(config["awareness_cooldown_seconds"]))

        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ------------------ player actions ------------------

    async def process_player_action(self, event: WorldActionEvent) -> list[str]:
        """Store one observation per nearby agent.

        Returns:
            Ids of the memories written (filtered writes are omitted)
        """
        if event.action_type == "move":
            return []

        kind = ACTION_KINDS[event.action_type]
        tags = list(kind.tags)
        if kind.witnessable or event.is_witnessable:
            tags.insert(0, WITNESSABLE_TAG)

        name = player_display_name(event.player_id, event.player_name or event.data.get("name"))
        base_text = kind.template.format(**self._template_values(event, name))

        observers = await self._find_nearby_agents(event.location, self.observation_range)
        logger.debug(
            "Processing %s at %s: %d agent(s) in range", event.action_type, event.location, len(observers)
        )

        stored = []
        for agent in observers:
            try:
                observation = Observation(
                    observer_id=agent["id"],
                    target_id=event.player_id,
                    observation_type=event.action_type,
                    location=event.location,
                    description=await self._contextualize(agent["id"], base_text),
                    importance=kind.importance,
                    tags=tags,
                    related_agents=event.data.get("related_agents", []),
                    related_players=[event.player_id],
                )
                memory_id = await self._store(observation)
                if memory_id is None:
                    continue
                stored.append(memory_id)
                await self._maybe_trigger_thought(agent, observation)
            except Exception:
                logger.exception("Failed to process %s for agent %s", event.action_type, agent["id"])

        if stored and WITNESSABLE_TAG in tags:
            await self._apply_reputation([event.player_id], tags, event.action_type)
        return stored

    @staticmethod
    def _template_values(event: WorldActionEvent, name: str) -> dict[str, str]:
        data = event.data
        description = data.get("description")
        target = event.target or data.get("target") or "someone"
        return {
            "name": name,
            "location": event.location,
            "target": target,
            "gift": data.get("gift") or data.get("item") or "a gift",
            "recipient": data.get("recipient") or target,
            "item": data.get("item") or "something",
            "help_type": data.get("help_type") or description or target,
            "rude_action": data.get("rude_action") or description or "behave rudely",
            "generous_action": data.get("generous_action") or description or "do something generous",
            "event_type": data.get("event_type") or description or "join a gathering",
            "speech": data.get("speech") or data.get("message") or "",
            "activity": data.get("activity") or description or "busy",
            "performance": data.get("performance") or description or "a song",
            "description": description or "something was wrong",
        }

    async def _contextualize(self, agent_id: str, text: str) -> str:
        activity = await self.world.get_agent_activity(agent_id)
        if activity:
            text += f" while I was {activity}"
        return f"{text} {time_of_day()}"

    async def _store(self, observation: Observation) -> Optional[str]:
        return await self.memory.store_observation(
            observation.observer_id,
            observation.description,
            observation.location,
            related_agents=observation.related_agents,
            related_players=observation.related_players,
            importance=observation.importance,
            tags=observation.tags,
        )

    async def _maybe_trigger_thought(self, agent: dict[str, Any], observation: Observation) -> bool:
        if self.thoughts is None or observation.importance < THOUGHT_IMPORTANCE:
            return False
        if not within_range(agent_position(agent), observation.location, self.thought_trigger_range):
            logger.debug("Agent %s outside thought range, memory only", agent["id"])
            return False

        observation.should_trigger_thought = True
        await self.thoughts.trigger_post_conversation_thoughts(
            agent["id"],
            f"Witnessed: {observation.description}",
            WITNESSED_DURATION_SECONDS,
            observation.importance,
        )
        return True

    async def _apply_reputation(self, player_ids: list[str], tags: list[str], action_type: str) -> None:
        delta = reputation_delta(tags)
        if delta == 0:
            return
        for player_id in player_ids:
            try:
                await self.reputation.update(player_id, delta, reason=f"witnessed {action_type}")
            except Exception:
                logger.exception("Reputation update failed for %s", player_id)

    async def _find_nearby_agents(
        self, location: str, tiles: int, exclude_id: Optional[str] = None
    ) -> list[dict[str, Any]]:
        coords = parse_location(location)
        if coords is None:
            return await self.world.find_agents_at_location(location, exclude_id=exclude_id)
        return await self.world.find_agents_at_coordinates(coords[0], coords[1], tiles, exclude_id=exclude_id)

    # ------------------ player current activity ------------------

    async def observe_player_current_activity(self, event: PlayerCurrentActivityEvent) -> list[str]:
        activity = event.activity.strip()
        if not activity or activity == "idle":
            return []

        name = player_display_name(event.player_id, event.player_name)
        stored = []
        for agent in await self._find_nearby_agents(event.location, self.observation_range):
            if await self.memory.has_recent_memory(
                agent["id"], 5, related_player=event.player_id, content_fragment=activity
            ):
                continue
            observation = Observation(
                observer_id=agent["id"],
                target_id=event.player_id,
                observation_type="player_activity",
                location=event.location,
                description=await self._contextualize(agent["id"], f"I noticed {name} is {activity} nearby"),
                importance=6,
                tags=["current_activity_observation", "player_activity", "proximity_observation"],
                related_players=[event.player_id],
            )
            memory_id = await self._store(observation)
            if memory_id is not None:
                stored.append(memory_id)
        return stored

    # ------------------ NPC awareness ------------------

    async def process_npc_activity_change(self, event: NpcActivityChangeEvent) -> list[str]:
        """Routine activity changes are remembered by co-located agents, without thoughts."""
        name = event.agent_name
        if not name:
            agent = await self.world.get_agent(event.agent_id)
            name = agent["name"] if agent else event.agent_id

        stored = []
        for observer in await self._find_nearby_agents(event.location, self.awareness_range, exclude_id=event.agent_id):
            memory_id = await self.memory.store_observation(
                observer["id"],
                f"I noticed {name} started {event.activity}",
                event.location,
                related_agents=[event.agent_id],
                importance=5,
            )
            if memory_id is not None:
                stored.append(memory_id)
        return stored

    async def scan_once(self) -> int:
        """One proximity sweep over active agents. Returns memories stored."""
        self._cooldowns.sweep()
        stored = 0
        for observer in await self.world.list_active_agents():
            if self._cooldowns.is_active(observer["id"]):
                continue
            try:
                stored += await self._scan_observer(observer)
            except Exception:
                logger.exception("Awareness scan failed for %s", observer["id"])
            self._cooldowns.touch(observer["id"])
        return stored

    async def _scan_observer(self, observer: dict[str, Any]) -> int:
        position = agent_position(observer)
        if position is None:
            targets = await self.world.find_agents_at_location(
                observer.get("current_location") or "", exclude_id=observer["id"]
            )
        else:
            targets = await self.world.find_agents_at_coordinates(
                position[0], position[1], self.awareness_range, exclude_id=observer["id"]
            )

        stored = 0
        for target in targets:
            activity = target.get("current_activity")
            if not activity or activity == "No activity set":
                continue
            if await self.memory.has_recent_memory(
                observer["id"], 30, related_agent=target["id"], content_fragment=activity
            ):
                continue

            importance = npc_observation_importance(observer, target)
            location = target.get("current_location") or observer.get("current_location") or ""
            observation = Observation(
                observer_id=observer["id"],
                target_id=target["id"],
                observation_type=classify_npc_activity(activity),
                location=location,
                description=f"I noticed {target['name']} {activity} at {target.get('current_location') or 'nearby'}",
                importance=importance,
                related_agents=[target["id"]],
                should_trigger_thought=importance >= 6,
            )
            memory_id = await self.memory.store_observation(
                observer["id"],
                observation.description,
                location,
                related_agents=observation.related_agents,
                importance=importance,
            )
            if memory_id is None:
                continue
            stored += 1

            if observation.should_trigger_thought and self.thoughts is not None:
                await self.thoughts.trigger_spontaneous_thought(
                    observer["id"],
                    observation.observation_type,
                    {
                        "observation": observation.description,
                        "targetNPC": target["name"],
                        "location": location,
                        "importance": importance,
                    },
                )
        return stored

    async def run(self) -> None:
        while self._running:
            try:
                await self.scan_once()
            except Exception:
                logger.exception("Awareness sweep failed")
            await asyncio.sleep(self.awareness_interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self.run(), name="awareness-scanner")
            logger.info("Awareness scanner started (every %.0fs)", self.awareness_interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    # ------------------ introspection ------------------

    def set_observation_range(self, tiles: int) -> int:
        self.observation_range = max(1, min(MAX_OBSERVATION_RANGE, int(tiles)))
        logger.info("Observation range set to %d tiles", self.observation_range)
        return self.observation_range

    async def get_observation_stats(self) -> dict[str, Any]:
        stats = await self.memory.get_type_stats("observation", recent_hours=1)
        return {
            "total_observations": stats["total"],
            "recent_observations": stats["recent"],
            "observations_by_agent": stats["by_agent"],
            "observation_range": self.observation_range,
            "thought_trigger_range": self.thought_trigger_range,
        }

    async def get_recent_observations(self, agent_id: str, limit: int = 10) -> list[dict[str, Any]]:
        memories = await self.memory.retrieve_memories(agent_id, memory_types=["observation"], limit=limit)
        return [
            {
                "content": m.content,
                "timestamp": m.timestamp.isoformat(),
                "location": m.location,
                "importance": m.importance_score,
            }
            for m in memories
        ]

    # ------------------ event wiring ------------------

    def attach(self, bus: EventBus) -> None:
        subscriber = bus.subscriber("observation")
        subscriber.on("player_actions", self.process_player_action)
        subscriber.on("player_current_activity", self.observe_player_current_activity)
        subscriber.on("npc_activity_change", self.process_npc_activity_change)
