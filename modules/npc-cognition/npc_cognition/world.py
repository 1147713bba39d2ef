"""SQLite-backed world store: agents, plans, schedules, quotas, reputation.

The memory log itself lives in Qdrant (see storage.py). Everything else the
cognition core reads or writes is a plain relational row here. All queries
are parameterized. `ensure_schema()` is idempotent and only creates what is
missing, so it is safe against a database provisioned elsewhere.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from .models import DailyThoughtLimit

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    constitution TEXT NOT NULL DEFAULT '',
    current_location TEXT,
    current_activity TEXT,
    primary_goal TEXT,
    secondary_goals TEXT NOT NULL DEFAULT '[]',
    personality_traits TEXT NOT NULL DEFAULT '[]',
    likes TEXT NOT NULL DEFAULT '[]',
    dislikes TEXT NOT NULL DEFAULT '[]',
    schedule TEXT NOT NULL DEFAULT '{}',
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS agent_states (
    agent_id TEXT PRIMARY KEY REFERENCES agents(id),
    current_x INTEGER,
    current_y INTEGER
);

CREATE TABLE IF NOT EXISTS agent_plans (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    goal TEXT NOT NULL,
    plan_steps TEXT NOT NULL DEFAULT '[]',
    current_step INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    priority INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_schedules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    start_time TEXT,
    activity TEXT NOT NULL,
    location TEXT,
    priority INTEGER NOT NULL DEFAULT 1,
    is_flexible INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_metacognition (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    performance_evaluation TEXT,
    strategy_adjustments TEXT NOT NULL DEFAULT '[]',
    goal_modifications TEXT NOT NULL DEFAULT '[]',
    self_awareness_notes TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS thought_limits (
    agent_id TEXT NOT NULL,
    date TEXT NOT NULL,
    personality_changes_count INTEGER NOT NULL DEFAULT 0,
    goal_changes_count INTEGER NOT NULL DEFAULT 0,
    spontaneous_conversations_count INTEGER NOT NULL DEFAULT 0,
    total_thoughts_count INTEGER NOT NULL DEFAULT 0,
    UNIQUE(agent_id, date)
);

CREATE TABLE IF NOT EXISTS thought_processing_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    queue_type TEXT NOT NULL,
    trigger_data TEXT NOT NULL,
    priority INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversation_intentions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    target TEXT NOT NULL,
    topic TEXT NOT NULL DEFAULT '',
    approach TEXT NOT NULL DEFAULT '',
    timing TEXT NOT NULL DEFAULT 'immediate',
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS player_reputations (
    character_id TEXT PRIMARY KEY,
    reputation_score INTEGER NOT NULL DEFAULT 50,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS queue_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    queue TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_agent_plans_agent ON agent_plans(agent_id, created_at);
CREATE INDEX IF NOT EXISTS idx_thought_queue_status ON thought_processing_queue(status);
CREATE INDEX IF NOT EXISTS idx_queue_items_queue ON queue_items(queue, id);
"""

LIMIT_COLUMNS = {
    "personality_changes": "personality_changes_count",
    "goal_changes": "goal_changes_count",
    "spontaneous_conversations": "spontaneous_conversations_count",
    "total_thoughts": "total_thoughts_count",
}

JSON_AGENT_FIELDS = ("secondary_goals", "personality_traits", "likes", "dislikes", "schedule")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _since_iso(hours: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


class WorldStore:
    """Relational side of the cognition core.

    Args:
        db_path: SQLite file path, or ":memory:" for a throwaway store.
    """

    def __init__(self, db_path: str = ":memory:"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row

    def ensure_schema(self) -> None:
        """Create required tables and indexes if missing (idempotent)."""
        self._conn.executescript(SCHEMA)

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE ... COMMIT, rolling back on any exception."""
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self._conn
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self._conn.execute(sql, params)

    # ------------------ agents ------------------

    async def upsert_agent(self, agent: dict[str, Any]) -> None:
        """Insert or replace an agent record and its position."""
        row = {
            "id": agent["id"],
            "name": agent.get("name", agent["id"]),
            "constitution": agent.get("constitution", ""),
            "current_location": agent.get("current_location"),
            "current_activity": agent.get("current_activity"),
            "primary_goal": agent.get("primary_goal"),
        }
        for field in JSON_AGENT_FIELDS:
            default = {} if field == "schedule" else []
            row[field] = json.dumps(agent.get(field, default))

        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO agents
                (id, name, constitution, current_location, current_activity, primary_goal,
                 secondary_goals, personality_traits, likes, dislikes, schedule, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    row["id"],
                    row["name"],
                    row["constitution"],
                    row["current_location"],
                    row["current_activity"],
                    row["primary_goal"],
                    row["secondary_goals"],
                    row["personality_traits"],
                    row["likes"],
                    row["dislikes"],
                    row["schedule"],
                    _now_iso(),
                ),
            )
            if agent.get("current_x") is not None and agent.get("current_y") is not None:
                conn.execute(
                    "INSERT OR REPLACE INTO agent_states (agent_id, current_x, current_y) VALUES (?, ?, ?)",
                    (agent["id"], int(agent["current_x"]), int(agent["current_y"])),
                )

    async def set_agent_activity(self, agent_id: str, activity: Optional[str]) -> None:
        self._conn.execute(
            "UPDATE agents SET current_activity = ?, updated_at = ? WHERE id = ?",
            (activity, _now_iso(), agent_id),
        )

    async def get_agent(self, agent_id: str) -> Optional[dict[str, Any]]:
        row = self._conn.execute(
            f"{self._AGENT_SELECT} WHERE a.id = ?",
            (agent_id,),
        ).fetchone()
        return self._agent_from_row(row) if row else None

    async def get_agent_activity(self, agent_id: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT current_activity FROM agents WHERE id = ?", (agent_id,)
        ).fetchone()
        return row["current_activity"] if row and row["current_activity"] else None

    async def list_active_agents(self) -> list[dict[str, Any]]:
        """Agents with a current activity set."""
        rows = self._conn.execute(
            f"{self._AGENT_SELECT} WHERE a.current_activity IS NOT NULL ORDER BY a.id"
        ).fetchall()
        return [self._agent_from_row(row) for row in rows]

    async def find_agents_at_coordinates(
        self, x: int, y: int, tiles: int, exclude_id: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Chebyshev range query: |dx| <= tiles and |dy| <= tiles."""
        rows = self._conn.execute(
            f"""{self._AGENT_SELECT}
            WHERE s.current_x IS NOT NULL AND s.current_y IS NOT NULL
            AND ABS(s.current_x - ?) <= ? AND ABS(s.current_y - ?) <= ?
            AND a.id != ?
            ORDER BY a.id""",
            (x, tiles, y, tiles, exclude_id or ""),
        ).fetchall()
        return [self._agent_from_row(row) for row in rows]

    async def find_agents_at_location(
        self, location: str, exclude_id: Optional[str] = None
    ) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            f"{self._AGENT_SELECT} WHERE a.current_location = ? AND a.id != ? ORDER BY a.id",
            (location, exclude_id or ""),
        ).fetchall()
        return [self._agent_from_row(row) for row in rows]

    async def update_agent_goals(
        self, agent_id: str, primary_goal: Optional[str], secondary_goals: Optional[list[str]]
    ) -> None:
        agent = await self.get_agent(agent_id)
        if agent is None:
            return
        self._conn.execute(
            "UPDATE agents SET primary_goal = ?, secondary_goals = ?, updated_at = ? WHERE id = ?",
            (
                primary_goal or agent["primary_goal"],
                json.dumps(secondary_goals if secondary_goals is not None else agent["secondary_goals"]),
                _now_iso(),
                agent_id,
            ),
        )

    async def merge_agent_personality(
        self,
        agent_id: str,
        new_likes: list[str],
        new_dislikes: list[str],
        trait_changes: list[str],
    ) -> None:
        """Append new likes, dislikes and traits, skipping ones already present."""
        agent = await self.get_agent(agent_id)
        if agent is None:
            return

        def merged(current: list[str], extra: list[str]) -> str:
            return json.dumps(current + [item for item in extra if item not in current])

        self._conn.execute(
            """UPDATE agents SET likes = ?, dislikes = ?, personality_traits = ?, updated_at = ?
            WHERE id = ?""",
            (
                merged(agent["likes"], new_likes),
                merged(agent["dislikes"], new_dislikes),
                merged(agent["personality_traits"], trait_changes),
                _now_iso(),
                agent_id,
            ),
        )

    _AGENT_SELECT = """
        SELECT a.id, a.name, a.constitution, a.current_location, a.current_activity,
               a.primary_goal, a.secondary_goals, a.personality_traits, a.likes,
               a.dislikes, a.schedule, s.current_x, s.current_y
        FROM agents a
        LEFT JOIN agent_states s ON a.id = s.agent_id
    """

    @staticmethod
    def _agent_from_row(row: sqlite3.Row) -> dict[str, Any]:
        agent = dict(row)
        for field in JSON_AGENT_FIELDS:
            agent[field] = json.loads(agent[field]) if agent[field] else ({} if field == "schedule" else [])
        return agent

    # ------------------ plans & schedules ------------------

    async def insert_plan(
        self,
        agent_id: str,
        goal: str,
        plan_steps: list[Any],
        priority: int,
        status: str = "active",
    ) -> int:
        now = _now_iso()
        cursor = self._conn.execute(
            """INSERT INTO agent_plans (agent_id, goal, plan_steps, status, priority, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (agent_id, goal, json.dumps(plan_steps), status, priority, now, now),
        )
        return cursor.lastrowid

    async def set_plan_status(self, plan_id: int, status: str) -> None:
        self._conn.execute(
            "UPDATE agent_plans SET status = ?, updated_at = ? WHERE id = ?",
            (status, _now_iso(), plan_id),
        )

    async def recent_plans(self, agent_id: str, hours: float = 72) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            """SELECT id, goal, plan_steps, current_step, status, priority, created_at, updated_at
            FROM agent_plans WHERE agent_id = ? AND created_at >= ?
            ORDER BY created_at DESC, id DESC""",
            (agent_id, _since_iso(hours)),
        ).fetchall()
        plans = []
        for row in rows:
            plan = dict(row)
            plan["plan_steps"] = json.loads(plan["plan_steps"])
            plans.append(plan)
        return plans

    async def count_abandoned_plans(self, agent_id: str, hours: float = 48) -> int:
        row = self._conn.execute(
            """SELECT COUNT(*) AS n FROM agent_plans
            WHERE agent_id = ? AND status = 'abandoned' AND updated_at >= ?""",
            (agent_id, _since_iso(hours)),
        ).fetchone()
        return int(row["n"])

    async def insert_schedule(
        self,
        agent_id: str,
        start_time: Optional[str],
        activity: str,
        location: Optional[str],
        priority: int,
        is_flexible: bool = True,
    ) -> int:
        cursor = self._conn.execute(
            """INSERT INTO agent_schedules (agent_id, start_time, activity, location, priority, is_flexible, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (agent_id, start_time, activity, location, priority, int(is_flexible), _now_iso()),
        )
        return cursor.lastrowid

    async def list_schedules(self, agent_id: str) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM agent_schedules WHERE agent_id = ? ORDER BY id", (agent_id,)
        ).fetchall()
        return [dict(row) for row in rows]

    # ------------------ metacognition ------------------

    async def insert_metacognition(
        self,
        agent_id: str,
        performance_evaluation: str,
        strategy_adjustments: list[str],
        goal_modifications: list[str],
        self_awareness_notes: str,
    ) -> int:
        cursor = self._conn.execute(
            """INSERT INTO agent_metacognition
            (agent_id, performance_evaluation, strategy_adjustments, goal_modifications,
             self_awareness_notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?)""",
            (
                agent_id,
                performance_evaluation,
                json.dumps(strategy_adjustments),
                json.dumps(goal_modifications),
                self_awareness_notes,
                _now_iso(),
            ),
        )
        return cursor.lastrowid

    async def count_metacognition_since(self, agent_id: str, since: datetime) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM agent_metacognition WHERE agent_id = ? AND created_at >= ?",
            (agent_id, since.isoformat()),
        ).fetchone()
        return int(row["n"])

    async def last_metacognition_at(self, agent_id: str) -> Optional[datetime]:
        row = self._conn.execute(
            "SELECT MAX(created_at) AS last FROM agent_metacognition WHERE agent_id = ?",
            (agent_id,),
        ).fetchone()
        return datetime.fromisoformat(row["last"]) if row and row["last"] else None

    # ------------------ daily thought limits ------------------

    async def try_increment_limit(
        self, agent_id: str, counter: str, maximum: int, date: Optional[str] = None
    ) -> bool:
        """Atomically consume one unit of a daily counter.

        The row is created lazily; the conditional UPDATE only succeeds while
        the counter is below maximum, so concurrent callers can never push it
        past the limit.
        """
        column = LIMIT_COLUMNS[counter]
        date = date or today()
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO thought_limits (agent_id, date) VALUES (?, ?)",
                (agent_id, date),
            )
            cursor = conn.execute(
                f"UPDATE thought_limits SET {column} = {column} + 1 "
                f"WHERE agent_id = ? AND date = ? AND {column} < ?",
                (agent_id, date, maximum),
            )
        return cursor.rowcount == 1

    async def get_daily_limit(self, agent_id: str, date: Optional[str] = None) -> DailyThoughtLimit:
        date = date or today()
        row = self._conn.execute(
            "SELECT * FROM thought_limits WHERE agent_id = ? AND date = ?", (agent_id, date)
        ).fetchone()
        if row is None:
            return DailyThoughtLimit(agent_id=agent_id, date=date)
        return DailyThoughtLimit(
            agent_id=agent_id,
            date=date,
            **{name: row[column] for name, column in LIMIT_COLUMNS.items()},
        )

    # ------------------ thought fallback queue ------------------

    async def enqueue_thought_fallback(
        self, agent_id: str, queue_type: str, trigger_data: dict[str, Any], priority: int
    ) -> int:
        cursor = self._conn.execute(
            """INSERT INTO thought_processing_queue (agent_id, queue_type, trigger_data, priority, created_at)
            VALUES (?, ?, ?, ?, ?)""",
            (agent_id, queue_type, json.dumps(trigger_data, default=str), priority, _now_iso()),
        )
        return cursor.lastrowid

    async def pending_thought_fallbacks(self, agent_id: Optional[str] = None) -> list[dict[str, Any]]:
        sql = "SELECT * FROM thought_processing_queue WHERE status = 'pending'"
        params: tuple = ()
        if agent_id:
            sql += " AND agent_id = ?"
            params = (agent_id,)
        rows = self._conn.execute(sql + " ORDER BY priority DESC, id", params).fetchall()
        items = []
        for row in rows:
            item = dict(row)
            item["trigger_data"] = json.loads(item["trigger_data"])
            items.append(item)
        return items

    # ------------------ conversation intentions ------------------

    async def insert_conversation_intention(
        self, agent_id: str, target: str, topic: str, approach: str, timing: str
    ) -> int:
        cursor = self._conn.execute(
            """INSERT INTO conversation_intentions (agent_id, target, topic, approach, timing, created_at)
            VALUES (?, ?, ?, ?, ?, ?)""",
            (agent_id, target, topic, approach, timing, _now_iso()),
        )
        return cursor.lastrowid

    # ------------------ reputation ------------------

    async def get_reputation_score(self, character_id: str) -> Optional[int]:
        row = self._conn.execute(
            "SELECT reputation_score FROM player_reputations WHERE character_id = ?",
            (character_id,),
        ).fetchone()
        return int(row["reputation_score"]) if row else None

    async def adjust_reputation(self, character_id: str, delta: int, initial: int = 50) -> int:
        """Apply delta clamped to [0, 100], creating the row at `initial` if needed."""
        now = _now_iso()
        with self.transaction() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO player_reputations (character_id, reputation_score, updated_at)
                VALUES (?, ?, ?)""",
                (character_id, initial, now),
            )
            conn.execute(
                """UPDATE player_reputations
                SET reputation_score = MAX(0, MIN(100, reputation_score + ?)), updated_at = ?
                WHERE character_id = ?""",
                (delta, now, character_id),
            )
            row = conn.execute(
                "SELECT reputation_score FROM player_reputations WHERE character_id = ?",
                (character_id,),
            ).fetchone()
        return int(row["reputation_score"])
