"""Single-consumer worker that drains the global reflection queue."""

import asyncio
import logging
from typing import Any, Optional

from .config import resolve_config
from .models import ReflectionJob
from .queues import GLOBAL_REFLECTION_QUEUE, DurableQueues, reflection_mirror_queue
from .storage import MemoryStore

logger = logging.getLogger(__name__)

MIRROR_PREFIX = "reflection_queue:"


class ReflectionWorker:
    """Pops reflection jobs one at a time and synthesizes reflections.

    The per-agent mirror queues are inspection-only: the worker never pops
    them, it clears an agent's mirror after handling that agent's job.
    """

    def __init__(self, memory: MemoryStore, queues: DurableQueues, config: Optional[dict] = None):
        config = resolve_config(config)
        self.memory = memory
        self.queues = queues
        self.poll_interval = float(config["reflection_poll_seconds"])
        self.error_backoff = float(config["reflection_error_backoff_seconds"])

        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def process_next(self) -> bool:
        """Handle at most one queued job.

        Returns:
            True if a job was popped (whether or not it produced a reflection)
        """
        payload = await self.queues.pop(GLOBAL_REFLECTION_QUEUE)
        if payload is None:
            return False

        try:
            job = ReflectionJob.model_validate(payload)
        except ValueError as e:
            logger.error("Discarding malformed reflection job %r: %s", payload, e)
            return True

        logger.info(
            "Processing reflection for %s (cumulative importance %d)",
            job.agent_id,
            job.cumulative_importance,
        )
        try:
            reflection_id = await self.memory.generate_reflection(job.agent_id)
            if reflection_id:
                logger.info("Reflection %s generated for %s", reflection_id, job.agent_id)
        except Exception:
            logger.exception("Reflection failed for %s", job.agent_id)
        finally:
            await self.queues.clear(reflection_mirror_queue(job.agent_id))
        return True

    async def trigger_reflection(self, agent_id: str) -> Optional[str]:
        """Generate a reflection now, bypassing the queue."""
        try:
            return await self.memory.generate_reflection(agent_id)
        except Exception:
            logger.exception("Manual reflection failed for %s", agent_id)
            return None

    async def get_queue_status(self) -> dict[str, Any]:
        agent_queues = []
        for name in await self.queues.names(MIRROR_PREFIX):
            agent_queues.append(
                {
                    "agent_id": name[len(MIRROR_PREFIX):],
                    "queue_length": await self.queues.length(name),
                }
            )
        return {
            "global_queue_length": await self.queues.length(GLOBAL_REFLECTION_QUEUE),
            "agent_queues": agent_queues,
        }

    async def run(self) -> None:
        while self._running:
            try:
                await self.process_next()
                await asyncio.sleep(self.poll_interval)
            except Exception:
                logger.exception("Reflection loop error, backing off")
                await asyncio.sleep(self.error_backoff)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self.run(), name="reflection-worker")
            logger.info("Reflection worker started")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Reflection worker stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
