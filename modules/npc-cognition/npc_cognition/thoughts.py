"""Thought routing: triggers in, decisions out.

Triggers come from event channels and direct calls. Each one consumes a
unit of the agent's daily thought quota before the decision endpoint is
called; the returned action is fanned out to world-store writes and
outbound notification channels. Actions that change the agent itself
(goals, personality, spontaneous conversations) carry their own daily
quotas on top of that.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from .config import resolve_config
from .events import (
    ActivityChangeNotification,
    EventBus,
    GoalUpdateNotification,
    ImmediateActivityChangeEvent,
    InitiateConversationEvent,
    MemoryStoredEvent,
    PersonalityUpdateNotification,
    PlanningUpdateNotification,
    PlayerActionEvent,
    ScheduleActivityEvent,
)
from .models import DailyThoughtLimit, ThoughtResult, ThoughtTrigger
from .spatial import agent_position, parse_location, within_range
from .storage import MemoryStore
from .world import WorldStore

logger = logging.getLogger(__name__)

IMMEDIATE_PRIORITY = 10
SCHEDULED_PRIORITY = 7
CONVERSATION_PRIORITY = 7
MEMORY_ASSOCIATION_THRESHOLD = 7

PLAYER_ACTION_IMPORTANCE = {
    "speech": 6,
    "interaction": 5,
    "aggressive_action": 8,
    "helpful_action": 7,
    "unusual_behavior": 4,
    "emergency_action": 9,
}

SPONTANEOUS_IMPORTANCE = {
    "emergency_situation": 9,
    "conflict": 8,
    "unusual_event": 7,
    "social_interaction": 6,
    "routine_activity": 4,
}


class DecisionServiceError(Exception):
    """The decision endpoint failed or returned an unusable body."""


class DecisionClient:
    """HTTP client for the local decision endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def decide(self, agent_id: str, trigger: ThoughtTrigger) -> ThoughtResult:
        """Ask the decision endpoint what the agent thinks about a trigger.

        Raises:
            DecisionServiceError: Transport error, non-2xx status, or a body
                without a valid `thoughtResult`
        """
        body = {
            "agentId": agent_id,
            "eventType": trigger.type,
            "eventData": trigger.data,
            "importance": trigger.importance,
        }
        try:
            response = await self._client.post(f"{self.base_url}/thought/process", json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise DecisionServiceError(f"Decision endpoint returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise DecisionServiceError(f"Decision endpoint unreachable: {e}") from e
        except ValueError as e:
            raise DecisionServiceError(f"Decision endpoint returned invalid JSON: {e}") from e

        result = payload.get("thoughtResult") if isinstance(payload, dict) else None
        if result is None:
            raise DecisionServiceError("Decision response has no thoughtResult")
        try:
            return ThoughtResult.model_validate(result)
        except ValidationError as e:
            raise DecisionServiceError(f"Malformed thoughtResult: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()


class ThoughtRouter:
    """Dispatches thought triggers and executes the resulting actions.

    Quotas (per agent per calendar day, UTC):
    - total_thoughts gates every decision call
    - goal_changes, personality_changes and spontaneous_conversations
      gate their action kinds; a refused action is skipped, the thought
      itself still counts
    """

    def __init__(
        self,
        world: WorldStore,
        decision: DecisionClient,
        memory: Optional[MemoryStore] = None,
        events: Optional[EventBus] = None,
        config: Optional[dict] = None,
    ):
        config = resolve_config(config)
        self.world = world
        self.decision = decision
        self.memory = memory
        self.events = events

        self.thought_trigger_range = int(config["thought_trigger_range"])
        self.limits = {
            "total_thoughts": int(config["max_daily_thoughts"]),
            "goal_changes": int(config["max_daily_goal_changes"]),
            "personality_changes": int(config["max_daily_personality_changes"]),
            "spontaneous_conversations": int(config["max_daily_spontaneous_conversations"]),
        }

    # ------------------ core dispatch ------------------

    async def trigger_thought(self, agent_id: str, trigger: ThoughtTrigger) -> Optional[ThoughtResult]:
        """Run one trigger through the decision endpoint.

        Returns:
            The decision, or None when over quota or the call failed (in
            which case the trigger is parked in the fallback queue)
        """
        if not await self._consume(agent_id, "total_thoughts"):
            logger.info("Thought quota exhausted for %s, dropping %s trigger", agent_id, trigger.type)
            return None

        try:
            result = await self.decision.decide(agent_id, trigger)
        except DecisionServiceError as e:
            logger.warning("Decision call failed for %s, queueing %s trigger: %s", agent_id, trigger.type, e)
            await self.world.enqueue_thought_fallback(agent_id, trigger.type, trigger.data, trigger.importance)
            return None

        logger.info(
            "Agent %s decided %r (action %s)", agent_id, result.decision[:80], result.action_type
        )
        await self.execute_action(agent_id, result)
        return result

    async def execute_action(self, agent_id: str, result: ThoughtResult) -> bool:
        """Carry out the action attached to a decision.

        Returns:
            True if an action was executed
        """
        if result.action is None or result.action.type == "none":
            return False

        action = result.action.type
        details = result.action.details
        reason = details.get("reason") or result.reasoning

        if action == "immediate_activity":
            event = ImmediateActivityChangeEvent(
                agent_id=agent_id,
                activity=details.get("activity", ""),
                location=details.get("location"),
                reason=reason,
                priority=IMMEDIATE_PRIORITY,
            )
            await self.handle_immediate_activity_change(event)
            return True

        if action == "schedule_activity":
            event = ScheduleActivityEvent(
                agent_id=agent_id,
                activity=details.get("activity", ""),
                time=details.get("time", "NOW"),
                location=details.get("location"),
                reason=reason,
                priority=details.get("priority", SCHEDULED_PRIORITY),
            )
            await self.handle_schedule_activity(event)
            return True

        if action == "modify_goals":
            return await self._modify_goals(agent_id, details, reason)

        if action == "change_personality":
            return await self._change_personality(agent_id, details, reason)

        if action == "initiate_conversation":
            event = InitiateConversationEvent(
                agent_id=agent_id,
                target=details.get("target", ""),
                topic=details.get("topic", ""),
                approach=details.get("approach", ""),
                timing=details.get("timing", "immediate"),
            )
            return await self.handle_initiate_conversation(event)

        logger.warning("Unknown action type %s for %s", action, agent_id)
        return False

    async def _modify_goals(self, agent_id: str, details: dict[str, Any], reason: str) -> bool:
        if not await self._consume(agent_id, "goal_changes"):
            logger.info("Goal change quota exhausted for %s", agent_id)
            return False

        primary = details.get("primary_goal") or details.get("newGoal")
        secondary = details.get("secondary_goals")
        await self.world.update_agent_goals(agent_id, primary, secondary)
        await self._publish(
            "agent_goals_update",
            GoalUpdateNotification(
                agent_id=agent_id,
                primary_goal=primary,
                secondary_goals=secondary or [],
                reason=reason,
            ),
        )
        return True

    async def _change_personality(self, agent_id: str, details: dict[str, Any], reason: str) -> bool:
        if not await self._consume(agent_id, "personality_changes"):
            logger.info("Personality change quota exhausted for %s", agent_id)
            return False

        new_likes = list(details.get("new_likes") or [])
        new_dislikes = list(details.get("new_dislikes") or [])
        trait_changes = list(details.get("trait_changes") or [])
        await self.world.merge_agent_personality(agent_id, new_likes, new_dislikes, trait_changes)
        await self._publish(
            "agent_personality_update",
            PersonalityUpdateNotification(
                agent_id=agent_id,
                new_likes=new_likes,
                new_dislikes=new_dislikes,
                trait_changes=trait_changes,
                reason=reason,
            ),
        )
        return True

    # ------------------ channel handlers ------------------

    async def handle_immediate_activity_change(self, event: ImmediateActivityChangeEvent) -> None:
        logger.info("Immediate activity for %s: %s", event.agent_id, event.activity)
        await self._publish(
            "game_server_activity_change",
            ActivityChangeNotification(
                agent_id=event.agent_id,
                activity_name=event.activity,
                priority=event.priority,
                interrupt_current=True,
                parameters={
                    "specificLocation": event.location,
                    "reason": event.reason,
                    "thoughtTriggered": True,
                    "urgency": "high",
                },
            ),
        )

    async def handle_schedule_activity(self, event: ScheduleActivityEvent) -> None:
        await self.world.insert_schedule(
            event.agent_id,
            event.time,
            event.activity,
            event.location,
            event.priority,
            is_flexible=True,
        )
        await self._publish(
            "planning_system_update",
            PlanningUpdateNotification(
                agent_id=event.agent_id,
                activity=event.activity,
                time=event.time,
                location=event.location,
                priority=event.priority,
                reason=event.reason,
            ),
        )

    async def handle_initiate_conversation(self, event: InitiateConversationEvent) -> bool:
        """Record the intention and schedule a social activity to act on it."""
        if not await self._consume(event.agent_id, "spontaneous_conversations"):
            logger.info("Conversation quota exhausted for %s", event.agent_id)
            return False

        await self.world.insert_conversation_intention(
            event.agent_id, event.target, event.topic, event.approach, event.timing
        )
        await self.handle_schedule_activity(
            ScheduleActivityEvent(
                agent_id=event.agent_id,
                activity="initiate_conversation",
                time="NOW" if event.timing == "immediate" else event.timing,
                location="find_target",
                reason=f"Initiate conversation with {event.target} about {event.topic}",
                priority=CONVERSATION_PRIORITY,
            )
        )
        return True

    async def handle_player_action(self, event: PlayerActionEvent) -> int:
        """Trigger external_event thoughts for agents close to a player action.

        Returns:
            Number of agents whose thought was triggered
        """
        importance = PLAYER_ACTION_IMPORTANCE.get(event.action_type)
        if importance is None:
            return 0

        coords = parse_location(event.location)
        if coords is None:
            return 0

        agents = await self.world.find_agents_at_coordinates(coords[0], coords[1], self.thought_trigger_range)
        agents = [
            agent
            for agent in agents
            if within_range(agent_position(agent), event.location, self.thought_trigger_range)
        ]
        trigger = ThoughtTrigger(
            type="external_event",
            importance=importance,
            data={
                "eventType": "player_action",
                "playerId": event.player_id,
                "actionType": event.action_type,
                "location": event.location,
                "details": event.details,
            },
        )
        triggered = 0
        for agent in agents:
            if await self.trigger_thought(agent["id"], trigger) is not None:
                triggered += 1
        return triggered

    async def handle_memory_stored(self, event: MemoryStoredEvent) -> Optional[ThoughtResult]:
        # observations reach thoughts through the witness range gate only
        if event.memory_type == "observation":
            return None
        if event.importance < MEMORY_ASSOCIATION_THRESHOLD:
            return None
        return await self.trigger_thought(
            event.agent_id,
            ThoughtTrigger(
                type="memory_association",
                importance=event.importance,
                data={
                    "memoryType": event.memory_type,
                    "content": event.content,
                    "importance": event.importance,
                },
            ),
        )

    # ------------------ direct entry points ------------------

    async def trigger_post_conversation_thoughts(
        self, agent_id: str, conversation_summary: str, duration: int, importance: int = 5
    ) -> Optional[ThoughtResult]:
        return await self.trigger_thought(
            agent_id,
            ThoughtTrigger(
                type="conversation",
                importance=importance,
                data={
                    "conversationSummary": conversation_summary,
                    "duration": duration,
                    "importance": importance,
                    "conversationType": "post_conversation_scheduling",
                },
            ),
        )

    async def trigger_conversation_thoughts(
        self, agent_id: str, player_id: str, player_message: str, npc_response: str
    ) -> Optional[ThoughtResult]:
        return await self.trigger_thought(
            agent_id,
            ThoughtTrigger(
                type="conversation",
                importance=4,
                data={
                    "playerId": player_id,
                    "playerMessage": player_message,
                    "npcResponse": npc_response,
                    "conversationType": "post_conversation_thoughts",
                },
            ),
        )

    async def trigger_truth_evaluation(self, agent_id: str, statement: str, speaker: str) -> dict[str, Any]:
        """Queue a truth evaluation of something a speaker claimed.

        The decision itself is asynchronous from the caller's view; the
        return value only acknowledges that evaluation was started.
        """
        await self.trigger_thought(
            agent_id,
            ThoughtTrigger(
                type="conversation",
                importance=5,
                data={
                    "statement": statement,
                    "speaker": speaker,
                    "evaluationType": "truth_evaluation",
                },
            ),
        )
        return {
            "evaluationTriggered": True,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def trigger_relationship_thinking(
        self, agent_id: str, target: str, context: str
    ) -> Optional[ThoughtResult]:
        data: dict[str, Any] = {
            "targetAgent": target,
            "context": context,
            "thinkingType": "relationship_evaluation",
        }
        if self.memory is not None:
            memories = await self.memory.get_contextual_memories(agent_id, f"{target} {context}", limit=5)
            data["relevantMemories"] = [m.content for m in memories]
        return await self.trigger_thought(
            agent_id, ThoughtTrigger(type="internal_reflection", importance=6, data=data)
        )

    async def trigger_spontaneous_thought(
        self, agent_id: str, observation_type: str, observation_data: dict[str, Any]
    ) -> Optional[ThoughtResult]:
        return await self.trigger_thought(
            agent_id,
            ThoughtTrigger(
                type="observation",
                importance=SPONTANEOUS_IMPORTANCE.get(observation_type, 5),
                data={
                    "observationType": observation_type,
                    "observationData": observation_data,
                    "spontaneous": True,
                },
            ),
        )

    # ------------------ introspection ------------------

    async def get_daily_limits(self, agent_id: str) -> DailyThoughtLimit:
        return await self.world.get_daily_limit(agent_id)

    # ------------------ helpers ------------------

    async def _consume(self, agent_id: str, counter: str) -> bool:
        return await self.world.try_increment_limit(agent_id, counter, self.limits[counter])

    async def _publish(self, channel: str, event) -> None:
        if self.events is None:
            logger.debug("No event bus attached, not publishing %s", channel)
            return
        await self.events.publish(channel, event)

    def attach(self, bus: EventBus) -> None:
        self.events = bus
        subscriber = bus.subscriber("thoughts")
        subscriber.on("immediate_activity_change", self.handle_immediate_activity_change)
        subscriber.on("schedule_activity", self.handle_schedule_activity)
        subscriber.on("initiate_conversation", self.handle_initiate_conversation)
        subscriber.on("player_action", self.handle_player_action)
        subscriber.on("memory_stored", self.handle_memory_stored)
