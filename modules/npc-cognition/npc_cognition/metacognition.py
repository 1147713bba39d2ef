"""Metacognitive evaluation: agents review recent performance and adjust schedules.

Two loops share one evaluation path. The urgent loop reacts within a
fraction of a second to high-priority conversation triggers and applies
schedule changes with emergency priority; the regular loop runs a slower
performance review and applies changes as proposed.
"""

import asyncio
import json
import logging
import re
from datetime import datetime, time, timezone
from typing import Any, Optional

from .completions import CompletionGenerator
from .config import resolve_config
from .models import (
    MetacognitionJob,
    MetacognitionResult,
    ScheduleModification,
    UrgentMetacognitionJob,
)
from .queues import (
    METACOGNITION_QUEUE,
    SCHEDULE_RELOAD_QUEUE,
    URGENT_METACOGNITION_QUEUE,
    DurableQueues,
)
from .storage import MemoryStore
from .world import WorldStore

logger = logging.getLogger(__name__)

LOOKBACK_HOURS = 72
MAX_DAILY_EVALUATIONS = 1
ABANDONED_PLAN_THRESHOLD = 2
EMERGENCY_PRIORITY = 10

_LOCATION_END = r"(?:\sto\s|\sand\s|,|\.|$)"
EMERGENCY_LOCATION_PATTERNS = [
    re.compile(rf"{prefix} (.+?){_LOCATION_END}", re.IGNORECASE)
    for prefix in (
        "visit the",
        "to the",
        "at the",
        "in the",
        "near the",
        "by the",
        "visit",
        "to",
        "at",
        "in",
        "near",
        "by",
    )
]

LOCATION_ALIASES = {
    "dj": "dj_stage",
    "stage": "dj_stage",
    "blacksmith": "blacksmith_shop",
    "harbor": "fishing_dock",
    "dock": "fishing_dock",
    "market": "farmers_market",
}

FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")

RESPONSE_FORMAT = """Respond with ONLY a JSON object of this shape:
{{
  "performance_evaluation": "{evaluation_hint}",
  "strategy_adjustments": ["..."],
  "goal_modifications": ["..."],
  "schedule_modifications": [
    {{
      "time": "{time_hint}",
      "activity": "activity_type",
      "description": "specific task, including who, what and where",
      "reason": "{reason_hint}",
      "priority": {priority_hint}
    }}
  ],
  "self_awareness_notes": "...",
  "importance_score": {importance_hint}
}}"""


def parse_emergency_location(description: str) -> Optional[str]:
    """Extract a location id such as "church" from a free-text task description."""
    for pattern in EMERGENCY_LOCATION_PATTERNS:
        match = pattern.search(description)
        if match:
            name = re.sub(r"\s+", "_", match.group(1).strip()).lower()
            return LOCATION_ALIASES.get(name, name)
    return None


def parse_response(response: str) -> Optional[MetacognitionResult]:
    """Parse a model response into a MetacognitionResult, or None if malformed."""
    cleaned = FENCE_PATTERN.sub("", response.strip())
    try:
        parsed = json.loads(cleaned)
        if not isinstance(parsed, dict) or not parsed.get("performance_evaluation"):
            raise ValueError("missing performance_evaluation")
        return MetacognitionResult.model_validate(parsed)
    except ValueError as e:
        logger.error("Invalid metacognition response (%s): %.200s", e, response)
        return None


class MetacognitionWorker:
    """Consumes the urgent and regular metacognition queues."""

    def __init__(
        self,
        memory: MemoryStore,
        world: WorldStore,
        queues: DurableQueues,
        completions: CompletionGenerator,
        config: Optional[dict] = None,
    ):
        config = resolve_config(config)
        self.memory = memory
        self.world = world
        self.queues = queues
        self.completions = completions

        self.urgent_poll = float(config["urgent_poll_seconds"])
        self.regular_poll = float(config["regular_poll_seconds"])
        self.regular_pop_timeout = float(config["regular_pop_timeout_seconds"])

        self._running = False
        self._tasks: list[asyncio.Task] = []

    # ------------------ shared evaluation path ------------------

    async def gather_performance_data(self, agent_id: str) -> dict[str, Any]:
        memories = await self.memory.retrieve_memories(
            agent_id,
            memory_types=["observation", "reflection", "plan"],
            recent_hours=LOOKBACK_HOURS,
            limit=20,
        )
        plans = await self.world.recent_plans(agent_id, hours=LOOKBACK_HOURS)
        reflections = await self.memory.retrieve_memories(
            agent_id, memory_types=["reflection"], recent_hours=LOOKBACK_HOURS, limit=50
        )
        return {
            "memories": memories,
            "plans": plans,
            "reflections": reflections,
            "performance_indicators": {
                "memory_count": len(memories),
                "plan_count": len(plans),
                "reflection_count": len(reflections),
                "completed_plans": sum(1 for p in plans if p["status"] == "completed"),
                "failed_plans": sum(1 for p in plans if p["status"] == "abandoned"),
            },
        }

    def build_prompt(
        self,
        agent: dict[str, Any],
        data: dict[str, Any],
        trigger_reason: str = "manual",
        urgent: Optional[UrgentMetacognitionJob] = None,
    ) -> str:
        """One prompt skeleton; `urgent` switches the framing and the requested timing."""
        indicators = data["performance_indicators"]
        secondary = ", ".join(agent.get("secondary_goals") or []) or "None"

        if urgent is None:
            opening = f"You are {agent['name']}, performing a metacognitive evaluation of your recent performance."
            situation = f"TRIGGER REASON: {trigger_reason}"
            task = (
                "Evaluate your performance over the last 3 days. Are you making progress toward your "
                "primary goal? Are your strategies working? Should your daily schedule change? "
                "Only suggest schedule modifications backed by evidence from your recent experiences."
            )
            response_format = RESPONSE_FORMAT.format(
                evaluation_hint="self-assessment of your recent performance",
                time_hint="HH:MM",
                reason_hint="reason grounded in recent experiences",
                priority_hint="1-10",
                importance_hint=8,
            )
        else:
            opening = (
                f"You are {agent['name']}, facing a HIGH PRIORITY SITUATION that may require "
                "immediate changes to your schedule."
            )
            situation = (
                f"URGENCY LEVEL: {urgent.urgency_level}/10\n"
                f"REASON: {urgent.urgency_reason}\n"
                f'PLAYER MESSAGE: "{urgent.player_message}"'
            )
            task = (
                "Decide whether this situation needs you to drop what you are doing. If it is urgent "
                "or exciting and relevant to your role or interests, propose schedule modifications "
                'timed "NOW" whose description names the specific place and situation '
                '(for example "respond to fire at the church").'
            )
            response_format = RESPONSE_FORMAT.format(
                evaluation_hint="how this situation relates to your role and interests",
                time_hint="NOW",
                reason_hint="why this needs an immediate response",
                priority_hint=10,
                importance_hint=10,
            )

        memory_lines = "\n".join(f"- {m.content}" for m in data["memories"]) or "- None"
        plan_lines = "\n".join(f"- Goal: {p['goal']} (Status: {p['status']})" for p in data["plans"]) or "- None"
        reflection_lines = "\n".join(f"- {r.content}" for r in data["reflections"]) or "- None"

        return f"""{opening}

YOUR IDENTITY:
{agent.get('constitution') or ''}

YOUR GOALS:
Primary Goal: {agent.get('primary_goal') or 'None'}
Secondary Goals: {secondary}

CURRENT SCHEDULE:
{json.dumps(agent.get('schedule') or {}, indent=2)}

{situation}

=== RECENT MEMORIES ===
{memory_lines}

=== RECENT PLANS ===
{plan_lines}

=== RECENT REFLECTIONS ===
{reflection_lines}

PERFORMANCE INDICATORS:
- Total memories: {indicators['memory_count']}
- Total plans: {indicators['plan_count']}
- Completed plans: {indicators['completed_plans']}
- Failed plans: {indicators['failed_plans']}
- Reflections: {indicators['reflection_count']}

{task}

{response_format}"""

    async def _evaluate(
        self,
        agent_id: str,
        trigger_reason: str,
        urgent: Optional[UrgentMetacognitionJob] = None,
    ) -> Optional[MetacognitionResult]:
        agent = await self.world.get_agent(agent_id)
        if agent is None:
            logger.error("Metacognition skipped: agent %s not found", agent_id)
            return None

        data = await self.gather_performance_data(agent_id)
        response = await self.completions.complete(
            self.build_prompt(agent, data, trigger_reason, urgent), max_tokens=800
        )
        result = parse_response(response)
        if result is None:
            return None

        result.agent_id = agent_id
        await self.world.insert_metacognition(
            agent_id,
            result.performance_evaluation,
            result.strategy_adjustments,
            result.goal_modifications,
            result.self_awareness_notes,
        )
        return result

    async def evaluate_agent_performance(
        self, agent_id: str, trigger_reason: str = "manual", importance_score: Optional[int] = None
    ) -> Optional[MetacognitionResult]:
        logger.info("Metacognitive evaluation for %s (%s)", agent_id, trigger_reason)
        result = await self._evaluate(agent_id, trigger_reason)
        if result and result.schedule_modifications:
            await self.apply_schedule_modifications(agent_id, result.schedule_modifications)
        return result

    async def evaluate_urgent_situation(self, job: UrgentMetacognitionJob) -> Optional[MetacognitionResult]:
        logger.info(
            "Urgent metacognition for %s (urgency %d: %s)", job.agent_id, job.urgency_level, job.urgency_reason
        )
        result = await self._evaluate(job.agent_id, job.trigger_reason, urgent=job)
        if result and result.schedule_modifications:
            await self.apply_emergency_schedule_modifications(job.agent_id, result.schedule_modifications)
        return result

    # ------------------ schedule changes ------------------

    async def apply_schedule_modifications(
        self, agent_id: str, modifications: list[ScheduleModification]
    ) -> list[int]:
        plan_ids = []
        for modification in modifications:
            plan_data = {
                "plan_date": f"day_{datetime.now().day}",
                "schedule": {
                    modification.time: {
                        "activity": modification.activity,
                        "description": modification.description,
                    }
                },
                "reasoning": modification.reason,
                "modification_type": "metacognitive",
            }
            plan_ids.append(
                await self.world.insert_plan(
                    agent_id,
                    f"Metacognitive schedule modification: {modification.description}",
                    [plan_data],
                    priority=modification.priority,
                )
            )
        logger.info("Applied %d schedule modification(s) for %s", len(plan_ids), agent_id)
        return plan_ids

    async def apply_emergency_schedule_modifications(
        self, agent_id: str, modifications: list[ScheduleModification]
    ) -> list[int]:
        plan_ids = []
        for modification in modifications:
            location = parse_emergency_location(modification.description) or modification.location
            plan_data = {
                "plan_date": f"day_{datetime.now().day}",
                "schedule": {
                    modification.time: {
                        "activity": modification.activity,
                        "description": modification.description,
                        "location": location,
                    }
                },
                "reasoning": modification.reason,
                "modification_type": "emergency",
                "urgency_level": "maximum",
            }
            plan_ids.append(
                await self.world.insert_plan(
                    agent_id,
                    f"EMERGENCY: {modification.description}",
                    [plan_data],
                    priority=max(EMERGENCY_PRIORITY, modification.priority),
                )
            )

        await self.queues.push(
            SCHEDULE_RELOAD_QUEUE,
            {
                "type": "emergency_schedule_reload",
                "agent_id": agent_id,
                "timestamp": datetime.now(timezone.utc).timestamp(),
            },
        )
        logger.info("Applied %d emergency modification(s) for %s", len(plan_ids), agent_id)
        return plan_ids

    # ------------------ queues ------------------

    async def trigger_metacognition(
        self, agent_id: str, trigger_reason: str = "manual", importance_score: Optional[int] = None
    ) -> None:
        job = MetacognitionJob(agent_id=agent_id, trigger_reason=trigger_reason, importance_score=importance_score)
        await self.queues.push(METACOGNITION_QUEUE, job.model_dump())

    async def trigger_urgent_metacognition(
        self, agent_id: str, urgency_level: int, urgency_reason: str, player_message: str = ""
    ) -> None:
        job = UrgentMetacognitionJob(
            agent_id=agent_id,
            urgency_level=urgency_level,
            urgency_reason=urgency_reason,
            player_message=player_message,
        )
        await self.queues.push(URGENT_METACOGNITION_QUEUE, job.model_dump())

    async def check_metacognition_trigger(self, agent_id: str) -> bool:
        """Queue a performance check when due. At most one evaluation per agent per day.

        Returns:
            True if a job was queued
        """
        today_start = datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)
        if await self.world.count_metacognition_since(agent_id, today_start) >= MAX_DAILY_EVALUATIONS:
            return False

        last = await self.world.last_metacognition_at(agent_id)
        overdue = last is None or (datetime.now(timezone.utc) - last).total_seconds() > 24 * 3600
        struggling = await self.world.count_abandoned_plans(agent_id, hours=48) >= ABANDONED_PLAN_THRESHOLD

        if overdue or struggling:
            await self.trigger_metacognition(agent_id, "performance_check")
            return True
        return False

    async def process_next_urgent(self) -> bool:
        payload = await self.queues.pop(URGENT_METACOGNITION_QUEUE)
        if payload is None:
            return False
        try:
            await self.evaluate_urgent_situation(UrgentMetacognitionJob.model_validate(payload))
        except Exception:
            logger.exception("Urgent metacognition failed for %r", payload.get("agent_id"))
        return True

    async def process_next_regular(self) -> bool:
        payload = await self.queues.pop_wait(METACOGNITION_QUEUE, timeout=self.regular_pop_timeout)
        if payload is None:
            return False
        try:
            job = MetacognitionJob.model_validate(payload)
            await self.evaluate_agent_performance(job.agent_id, job.trigger_reason, job.importance_score)
        except Exception:
            logger.exception("Metacognition failed for %r", payload.get("agent_id"))
        return True

    async def get_queue_status(self) -> dict[str, Any]:
        return {
            "queue_length": await self.queues.length(METACOGNITION_QUEUE),
            "urgent_queue_length": await self.queues.length(URGENT_METACOGNITION_QUEUE),
            "is_processing": self.is_running,
        }

    # ------------------ loops ------------------

    async def _loop(self, step, interval: float, name: str) -> None:
        while self._running:
            try:
                await step()
            except Exception:
                logger.exception("%s loop error", name)
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self.is_running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(
                self._loop(self.process_next_urgent, self.urgent_poll, "urgent"), name="metacognition-urgent"
            ),
            asyncio.create_task(
                self._loop(self.process_next_regular, self.regular_poll, "regular"), name="metacognition-regular"
            ),
        ]
        logger.info("Metacognition worker started")

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Metacognition worker stopped")

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)
