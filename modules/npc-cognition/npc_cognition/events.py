"""Typed event channels and an in-process bus.

Each channel carries exactly one payload model. Payloads are validated at
the boundary (`parse_event`); invalid ones are logged and dropped there,
so handlers only ever see well-formed models.

Every subscriber is a task that owns one inbound queue and handles its
messages strictly in arrival order. A failing handler is logged and does
not affect other handlers or other subscribers.
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

WorldActionType = Literal[
    "move",
    "chat",
    "interact",
    "trade",
    "gift_giving",
    "player_pushing",
    "item_destruction",
    "helping",
    "rude_behavior",
    "generous_act",
    "social_event",
    "public_speech",
    "activity_update",
    "compliment",
    "insult",
    "theft",
    "fighting",
    "performance",
    "emergency",
]


class EventValidationError(ValueError):
    """Raised when a channel payload does not match its model."""


class ChannelEvent(BaseModel):
    """Base for channel payloads: accepts snake_case or camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---- inbound ----


class WorldActionEvent(ChannelEvent):
    player_id: str
    player_name: Optional[str] = None
    action_type: WorldActionType
    location: str
    target: Optional[str] = None
    data: dict[str, Any] = {}
    timestamp: float = Field(default_factory=time.time)
    is_witnessable: Optional[bool] = None


class PlayerCurrentActivityEvent(ChannelEvent):
    player_id: str
    player_name: Optional[str] = None
    activity: str = ""
    location: str
    timestamp: float = Field(default_factory=time.time)


class NpcActivityChangeEvent(ChannelEvent):
    agent_id: str
    agent_name: Optional[str] = None
    activity: str
    location: str
    previous_activity: Optional[str] = None


class ImmediateActivityChangeEvent(ChannelEvent):
    agent_id: str
    activity: str
    location: Optional[str] = None
    reason: str = ""
    priority: int = 10


class ScheduleActivityEvent(ChannelEvent):
    agent_id: str
    activity: str
    time: str = "NOW"
    location: Optional[str] = None
    reason: str = ""
    priority: int = 5


class InitiateConversationEvent(ChannelEvent):
    agent_id: str
    target: str
    topic: str = ""
    approach: str = ""
    timing: str = "immediate"


class PlayerActionEvent(ChannelEvent):
    player_id: str
    action_type: str
    location: str
    details: dict[str, Any] = {}


class MemoryStoredEvent(ChannelEvent):
    agent_id: str
    memory_id: Optional[str] = None
    memory_type: str
    content: str
    importance: int


# ---- outbound ----


class ActivityChangeNotification(ChannelEvent):
    agent_id: str
    activity_name: str
    priority: int
    interrupt_current: bool = True
    parameters: dict[str, Any] = {}


class PlanningUpdateNotification(ChannelEvent):
    agent_id: str
    action: str = "add_scheduled_activity"
    activity: str
    time: str
    location: Optional[str] = None
    priority: int
    reason: str = ""


class GoalUpdateNotification(ChannelEvent):
    agent_id: str
    primary_goal: Optional[str] = None
    secondary_goals: list[str] = []
    reason: str = ""


class PersonalityUpdateNotification(ChannelEvent):
    agent_id: str
    new_likes: list[str] = []
    new_dislikes: list[str] = []
    trait_changes: list[str] = []
    reason: str = ""


CHANNEL_MODELS: dict[str, type[ChannelEvent]] = {
    "player_actions": WorldActionEvent,
    "player_current_activity": PlayerCurrentActivityEvent,
    "npc_activity_change": NpcActivityChangeEvent,
    "immediate_activity_change": ImmediateActivityChangeEvent,
    "schedule_activity": ScheduleActivityEvent,
    "initiate_conversation": InitiateConversationEvent,
    "player_action": PlayerActionEvent,
    "memory_stored": MemoryStoredEvent,
    "game_server_activity_change": ActivityChangeNotification,
    "planning_system_update": PlanningUpdateNotification,
    "agent_goals_update": GoalUpdateNotification,
    "agent_personality_update": PersonalityUpdateNotification,
}


def parse_event(channel: str, payload: Union[ChannelEvent, dict[str, Any], str, bytes]) -> ChannelEvent:
    """Validate payload against the model registered for channel.

    Raises:
        EventValidationError: Unknown channel, bad JSON, wrong model
            instance or failed field validation.
    """
    model = CHANNEL_MODELS.get(channel)
    if model is None:
        raise EventValidationError(f"Unknown channel: {channel}")

    if isinstance(payload, ChannelEvent):
        if not isinstance(payload, model):
            raise EventValidationError(
                f"Channel {channel} expects {model.__name__}, got {type(payload).__name__}"
            )
        return payload

    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise EventValidationError(f"Invalid JSON on {channel}: {e}") from e

    if not isinstance(payload, dict):
        raise EventValidationError(f"Channel {channel} payload must be an object")

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise EventValidationError(f"Invalid payload on {channel}: {e}") from e


Handler = Callable[[Any], Awaitable[None]]


class Subscriber:
    """One consumer task with its own inbound queue."""

    def __init__(self, name: str):
        self.name = name
        self._handlers: dict[str, list[Handler]] = {}
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._outstanding = 0

    def on(self, channel: str, handler: Handler) -> None:
        if channel not in CHANNEL_MODELS:
            raise ValueError(f"Unknown channel: {channel}")
        handlers = self._handlers.setdefault(channel, [])
        if handler not in handlers:
            handlers.append(handler)

    @property
    def channels(self) -> set[str]:
        return set(self._handlers)

    def deliver(self, channel: str, event: ChannelEvent) -> None:
        self._outstanding += 1
        self._queue.put_nowait((channel, event))

    @property
    def pending(self) -> int:
        """Messages delivered but not yet fully handled."""
        return self._outstanding

    async def handle(self, channel: str, event: ChannelEvent) -> None:
        """Run every handler for channel in registration order, isolating failures."""
        for handler in self._handlers.get(channel, []):
            try:
                await handler(event)
            except Exception:
                logger.exception("Subscriber %s failed handling %s", self.name, channel)

    async def run(self) -> None:
        while True:
            channel, event = await self._queue.get()
            try:
                await self.handle(channel, event)
            finally:
                self._outstanding -= 1
                self._queue.task_done()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"subscriber:{self.name}")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def drain(self) -> None:
        """Wait until every delivered message has been handled."""
        await self._queue.join()


class EventBus:
    """Routes validated channel events to subscriber queues."""

    def __init__(self):
        self._subscribers: dict[str, Subscriber] = {}

    def subscriber(self, name: str) -> Subscriber:
        """Get or create the named subscriber."""
        if name not in self._subscribers:
            self._subscribers[name] = Subscriber(name)
        return self._subscribers[name]

    def subscribe(self, channel: str, handler: Handler, subscriber: str = "default") -> Subscriber:
        sub = self.subscriber(subscriber)
        sub.on(channel, handler)
        return sub

    async def publish(self, channel: str, payload: Union[ChannelEvent, dict[str, Any]]) -> int:
        """Validate and fan out one event. Returns the number of subscribers reached.

        Invalid payloads are logged and dropped (returns 0).
        """
        try:
            event = parse_event(channel, payload)
        except EventValidationError as e:
            logger.warning("Dropping event: %s", e)
            return 0

        delivered = 0
        for sub in self._subscribers.values():
            if channel in sub.channels:
                sub.deliver(channel, event)
                delivered += 1
        logger.debug("Published %s to %d subscriber(s)", channel, delivered)
        return delivered

    def start(self) -> None:
        for sub in self._subscribers.values():
            sub.start()

    async def stop(self) -> None:
        for sub in self._subscribers.values():
            await sub.stop()

    async def drain(self) -> None:
        """Wait until no subscriber has outstanding work, including follow-on events."""
        while True:
            for sub in list(self._subscribers.values()):
                await sub.drain()
            if all(sub.pending == 0 for sub in self._subscribers.values()):
                return
