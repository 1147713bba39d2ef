"""Durable FIFO queues stored in the world database.

Pops are destructive: an item removed by `pop()` is gone even if the
consumer crashes before finishing it.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .world import WorldStore

logger = logging.getLogger(__name__)

GLOBAL_REFLECTION_QUEUE = "global_reflection_queue"
URGENT_METACOGNITION_QUEUE = "metacognition_urgent_queue"
METACOGNITION_QUEUE = "metacognition_queue"
SCHEDULE_RELOAD_QUEUE = "schedule_reload_queue"


def reflection_mirror_queue(agent_id: str) -> str:
    return f"reflection_queue:{agent_id}"


class DurableQueues:
    """Named FIFO queues backed by the `queue_items` table."""

    def __init__(self, world: WorldStore):
        self.world = world

    async def push(self, queue: str, payload: dict[str, Any]) -> int:
        cursor = self.world.execute(
            "INSERT INTO queue_items (queue, payload, created_at) VALUES (?, ?, ?)",
            (queue, json.dumps(payload, default=str), datetime.now(timezone.utc).isoformat()),
        )
        return cursor.lastrowid

    async def pop(self, queue: str) -> Optional[dict[str, Any]]:
        """Remove and return the oldest item, or None when empty."""
        with self.world.transaction() as conn:
            row = conn.execute(
                "SELECT id, payload FROM queue_items WHERE queue = ? ORDER BY id LIMIT 1",
                (queue,),
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM queue_items WHERE id = ?", (row["id"],))
        return json.loads(row["payload"])

    async def pop_wait(
        self, queue: str, timeout: float, poll_interval: float = 0.1
    ) -> Optional[dict[str, Any]]:
        """Blocking pop: wait up to timeout seconds for an item."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            item = await self.pop(queue)
            if item is not None:
                return item
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(poll_interval, remaining))

    async def length(self, queue: str) -> int:
        row = self.world.execute(
            "SELECT COUNT(*) AS n FROM queue_items WHERE queue = ?", (queue,)
        ).fetchone()
        return int(row["n"])

    async def peek_all(self, queue: str) -> list[dict[str, Any]]:
        rows = self.world.execute(
            "SELECT payload FROM queue_items WHERE queue = ? ORDER BY id", (queue,)
        ).fetchall()
        return [json.loads(row["payload"]) for row in rows]

    async def names(self, prefix: str = "") -> list[str]:
        rows = self.world.execute(
            "SELECT DISTINCT queue FROM queue_items WHERE queue LIKE ? ESCAPE '\\' ORDER BY queue",
            (prefix.replace("%", r"\%").replace("_", r"\_") + "%",),
        ).fetchall()
        return [row["queue"] for row in rows]

    async def clear(self, queue: str) -> int:
        cursor = self.world.execute("DELETE FROM queue_items WHERE queue = ?", (queue,))
        return cursor.rowcount
