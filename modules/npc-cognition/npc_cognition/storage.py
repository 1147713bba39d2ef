"""Qdrant-backed memory log with write-time filtering and composite retrieval."""

import hashlib
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import numpy as np
from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchAny,
    MatchValue,
    PointStruct,
    Range,
    VectorParams,
)

from .cache import TTLCache
from .completions import CompletionGenerator
from .config import resolve_config
from .embeddings import EmbeddingGenerator
from .events import EventBus, MemoryStoredEvent
from .models import Memory, ReflectionJob, clamp_score
from .queues import GLOBAL_REFLECTION_QUEUE, DurableQueues, reflection_mirror_queue
from .world import WorldStore

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"[a-z0-9']+")

MOVEMENT_MARKERS = ("walking", "moving", "walked", "moved", "wandering")
CONVERSATION_MARKERS = ("conversation", "talked", "said", "told", "asked", "chatted")

TAG_PATTERNS = [
    (re.compile(r"player", re.I), "player"),
    (re.compile(r"moved|walking|running", re.I), "movement"),
    (re.compile(r"talking|conversation", re.I), "conversation"),
    (re.compile(r"entered|left", re.I), "arrival_departure"),
    (re.compile(r"crafting|building", re.I), "crafting"),
    (re.compile(r"farming|planting", re.I), "farming"),
    (re.compile(r"blacksmith|merchant|farmer", re.I), "profession"),
]

EMOTION_CUES = [
    (re.compile(r"happy|smiled|excited|pleased|enjoyed", re.I), 2),
    (re.compile(r"sad|angry|frustrated|upset|worried", re.I), 2),
    (re.compile(r"talked|conversation|greeted|waved", re.I), 1),
    (re.compile(r"entered|left|started|finished|completed", re.I), 1),
]

REFLECTION_SYSTEM_PROMPT = (
    "You are the inner voice of a character in a living village. "
    "Write reflections in the first person, plainly and briefly."
)


def _words(text: str) -> set[str]:
    return set(WORD_PATTERN.findall(text.lower()))


def word_overlap(a: str, b: str) -> float:
    """Shared words divided by the union of words (Jaccard)."""
    words_a, words_b = _words(a), _words(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def is_movement(content: str) -> bool:
    lowered = content.lower()
    return any(marker in lowered for marker in MOVEMENT_MARKERS)


def is_conversational(content: str) -> bool:
    lowered = content.lower()
    return any(marker in lowered for marker in CONVERSATION_MARKERS)


def extract_tags(content: str) -> list[str]:
    return [tag for pattern, tag in TAG_PATTERNS if pattern.search(content)]


def emotional_relevance(content: str) -> int:
    """Neutral 5, nudged up by emotional and social cues, clamped to [1, 10]."""
    score = 5
    for pattern, bonus in EMOTION_CUES:
        if pattern.search(content):
            score += bonus
    return clamp_score(score)


def semantic_threshold(recent_count: int) -> float:
    """Distance under which a new memory counts as a near-duplicate.

    Busier agents get a tighter threshold so fewer memories are rejected.
    """
    if recent_count < 5:
        return 0.25
    if recent_count < 15:
        return 0.20
    return 0.15


def memory_filter(
    agent_id: str,
    memory_types: Optional[list[str]] = None,
    exclude_types: Optional[list[str]] = None,
    min_importance: Optional[int] = None,
    since: Optional[datetime] = None,
    after: Optional[datetime] = None,
    related_player: Optional[str] = None,
    related_agent: Optional[str] = None,
    exclude_tags: Optional[list[str]] = None,
) -> Filter:
    """Build a Qdrant payload filter scoped to one agent."""
    must: list[Any] = [FieldCondition(key="agent_id", match=MatchValue(value=agent_id))]
    must_not: list[Any] = []

    if memory_types:
        must.append(FieldCondition(key="memory_type", match=MatchAny(any=list(memory_types))))
    if exclude_types:
        must_not.append(FieldCondition(key="memory_type", match=MatchAny(any=list(exclude_types))))
    if min_importance is not None:
        must.append(FieldCondition(key="importance_score", range=Range(gte=min_importance)))
    if since is not None:
        must.append(FieldCondition(key="ts", range=Range(gte=since.timestamp())))
    if after is not None:
        must.append(FieldCondition(key="ts", range=Range(gt=after.timestamp())))
    if related_player:
        must.append(FieldCondition(key="related_players", match=MatchValue(value=related_player)))
    if related_agent:
        must.append(FieldCondition(key="related_agents", match=MatchValue(value=related_agent)))
    if exclude_tags:
        must_not.append(FieldCondition(key="tags", match=MatchAny(any=list(exclude_tags))))

    return Filter(must=must, must_not=must_not or None)


class MemoryStore:
    """Durable per-agent memory log.

    Design decisions:
    - One Qdrant collection for every agent, scoped by an agent_id payload filter
    - Euclidean distance; distances are recomputed from returned vectors
    - Writes pass importance, temporal and semantic filters in that order
    - Reflections and consolidation summaries bypass the filters
    - Query cache entries are keyed "<agent_id>:..." and dropped on every write
    """

    IMPORTANCE_THRESHOLD = 4
    TEMPORAL_WINDOW = timedelta(hours=1)
    MOVEMENT_COOLDOWN = timedelta(minutes=5)
    MAX_WORD_OVERLAP = 0.8
    SEMANTIC_WINDOW = timedelta(hours=6)
    SEMANTIC_NEIGHBOURS = 3
    REFLECTION_IMPORTANCE_SUM = 150
    REFLECTION_MIN_MEMORIES = 5
    REFLECTION_LOOKBACK = timedelta(hours=24)
    REFLECTION_MAX_SOURCES = 50
    SESSION_GAP = timedelta(hours=1)
    MIN_SESSION_MEMORIES = 3
    SCROLL_PAGE = 256

    def __init__(
        self,
        config: Optional[dict] = None,
        *,
        client: Optional[QdrantClient] = None,
        embeddings: Optional[EmbeddingGenerator] = None,
        completions: Optional[CompletionGenerator] = None,
        world: Optional[WorldStore] = None,
        queues: Optional[DurableQueues] = None,
        events: Optional[EventBus] = None,
    ):
        """Initialize the store.

        Args:
            config: Optional configuration (see config.DEFAULTS). Relevant keys:
                - qdrant_location: path, or ":memory:" for an in-process log
                - collection: collection name (default: agent_memories)
                - embedding_model / embedding_dimensions
                - completion_model
                - cache_ttl_seconds: point and query cache lifetime
            client, embeddings, completions, world, queues, events:
                Collaborators; created from config when omitted (except
                events, which is optional).
        """
        config = resolve_config(config)
        self.collection = config["collection"]

        if client is None:
            location = config["qdrant_location"]
            client = QdrantClient(location=":memory:") if location == ":memory:" else QdrantClient(path=location)
        self.client = client

        self.embeddings = embeddings or EmbeddingGenerator(
            model=config["embedding_model"], dimensions=int(config["embedding_dimensions"])
        )
        self.completions = completions or CompletionGenerator(model=config["completion_model"])
        self.world = world or WorldStore(config["db_path"])
        self.queues = queues or DurableQueues(self.world)
        self.events = events

        ttl = float(config["cache_ttl_seconds"])
        self._point_cache = TTLCache(ttl_seconds=ttl)
        self._query_cache = TTLCache(ttl_seconds=ttl)

        self._ensure_collection()

    def _ensure_collection(self):
        """Create collection if it doesn't exist."""
        collections = self.client.get_collections().collections
        collection_names = [c.name for c in collections]

        if self.collection not in collection_names:
            self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(
                    size=self.embeddings.dimensions, distance=Distance.EUCLID
                ),
            )

    # ------------------ write path ------------------

    async def store_memory(self, memory: Memory) -> Optional[str]:
        """Filter, embed and persist one memory.

        Returns:
            The memory id, or None when a filter rejected it. None is a
            normal outcome, not an error.

        Raises:
            Exception: If the Qdrant write fails (nothing is cached then)
        """
        if memory.importance_score < self.IMPORTANCE_THRESHOLD:
            logger.info(
                "Filtered low-importance memory for %s (importance %d)",
                memory.agent_id,
                memory.importance_score,
            )
            return None

        if not await self._passes_temporal_filter(memory):
            return None

        memory.embedding = await self._embed(memory.content)

        if not await self._passes_semantic_filter(memory):
            return None

        await self._persist(memory)
        await self.check_reflection_trigger(memory.agent_id)
        return memory.id

    async def store_observation(
        self,
        agent_id: str,
        content: str,
        location: str,
        related_agents: Optional[list[str]] = None,
        related_players: Optional[list[str]] = None,
        importance: int = 5,
        tags: Optional[list[str]] = None,
    ) -> Optional[str]:
        """Store an observation, deriving emotional relevance from its text.

        Tags are extracted from the content only when none are passed.
        """
        memory = Memory(
            agent_id=agent_id,
            memory_type="observation",
            content=content,
            importance_score=importance,
            emotional_relevance=emotional_relevance(content),
            tags=tags if tags is not None else extract_tags(content),
            related_agents=related_agents or [],
            related_players=related_players or [],
            location=location,
        )
        memory_id = await self.store_memory(memory)
        if memory_id is None:
            logger.info("Filtered observation for %s: %.50s", agent_id, content)
        return memory_id

    async def _embed(self, content: str) -> list[float]:
        try:
            return await self.embeddings.generate(content)
        except Exception as e:
            logger.warning("Embedding failed, storing zero vector: %s", e)
            return self.embeddings.zero_vector()

    async def _passes_temporal_filter(self, memory: Memory) -> bool:
        now = datetime.now(timezone.utc)
        recent = self._scroll(
            memory_filter(
                memory.agent_id,
                memory_types=[memory.memory_type],
                since=now - self.TEMPORAL_WINDOW,
            )
        )
        recent.sort(key=lambda m: m.timestamp, reverse=True)

        if is_movement(memory.content):
            last_move = next((m for m in recent if is_movement(m.content)), None)
            if last_move is not None and memory.timestamp - last_move.timestamp < self.MOVEMENT_COOLDOWN:
                logger.info("Filtered movement memory for %s: too soon after the last one", memory.agent_id)
                return False

        for other in recent:
            if word_overlap(memory.content, other.content) > self.MAX_WORD_OVERLAP:
                logger.info("Filtered repetitive memory for %s: %.50s", memory.agent_id, memory.content)
                return False
        return True

    async def _passes_semantic_filter(self, memory: Memory) -> bool:
        if not any(memory.embedding):
            return True

        try:
            since = datetime.now(timezone.utc) - self.SEMANTIC_WINDOW
            nearest = self._search(
                memory.embedding,
                memory_filter(memory.agent_id, since=since),
                self.SEMANTIC_NEIGHBOURS,
            )
            if not nearest:
                return True

            density = self.client.count(
                collection_name=self.collection,
                count_filter=memory_filter(
                    memory.agent_id, memory_types=[memory.memory_type], since=since
                ),
                exact=True,
            ).count
            threshold = semantic_threshold(density)
            if nearest[0].distance < threshold:
                logger.info(
                    "Filtered similar memory for %s (distance %.3f < %.2f)",
                    memory.agent_id,
                    nearest[0].distance,
                    threshold,
                )
                return False
        except Exception as e:
            logger.warning("Semantic filter failed for %s, allowing write: %s", memory.agent_id, e)
        return True

    async def _persist(self, memory: Memory) -> None:
        self.client.upsert(
            collection_name=self.collection,
            points=[
                PointStruct(
                    id=memory.id,
                    vector=memory.embedding,
                    payload=memory.dict_for_storage(),
                )
            ],
        )

        cached = memory.model_copy(update={"embedding": [], "distance": None})
        self._point_cache.set(f"memory:{memory.id}", cached)
        self._query_cache.invalidate_prefix(f"{memory.agent_id}:")

        if self.events is not None:
            await self.events.publish(
                "memory_stored",
                MemoryStoredEvent(
                    agent_id=memory.agent_id,
                    memory_id=memory.id,
                    memory_type=memory.memory_type,
                    content=memory.content,
                    importance=memory.importance_score,
                ),
            )

    # ------------------ reflection trigger ------------------

    def _last_reflection_time(self, agent_id: str) -> Optional[datetime]:
        reflections = self._scroll(memory_filter(agent_id, memory_types=["reflection"]))
        if not reflections:
            return None
        return max(m.timestamp for m in reflections)

    def _unreflected(self, agent_id: str) -> list[Memory]:
        """Non-reflection memories since the last reflection (or the lookback window)."""
        last = self._last_reflection_time(agent_id)
        if last is not None:
            query_filter = memory_filter(agent_id, exclude_types=["reflection"], after=last)
        else:
            since = datetime.now(timezone.utc) - self.REFLECTION_LOOKBACK
            query_filter = memory_filter(agent_id, exclude_types=["reflection"], since=since)
        return self._scroll(query_filter)

    async def check_reflection_trigger(self, agent_id: str) -> bool:
        """Queue a reflection job once enough importance has accumulated.

        Returns:
            True if a job was queued
        """
        memories = self._unreflected(agent_id)
        total = sum(m.importance_score for m in memories)
        if total < self.REFLECTION_IMPORTANCE_SUM or len(memories) < self.REFLECTION_MIN_MEMORIES:
            return False

        job = ReflectionJob(agent_id=agent_id, cumulative_importance=total, memory_count=len(memories))
        payload = job.model_dump()
        await self.queues.push(GLOBAL_REFLECTION_QUEUE, payload)
        await self.queues.push(reflection_mirror_queue(agent_id), payload)
        logger.info(
            "Queued reflection for %s (importance %d over %d memories)",
            agent_id,
            total,
            len(memories),
        )
        return True

    # ------------------ read path ------------------

    async def retrieve_memories(
        self,
        agent_id: str,
        memory_types: Optional[list[str]] = None,
        min_importance: Optional[int] = None,
        recent_hours: Optional[float] = None,
        query_embedding: Optional[list[float]] = None,
        limit: int = 10,
    ) -> list[Memory]:
        """Query one agent's memories.

        Ordered by ascending vector distance when query_embedding is given,
        otherwise newest first.
        """
        since = None
        if recent_hours is not None:
            since = datetime.now(timezone.utc) - timedelta(hours=recent_hours)

        cache_key = self._query_key(agent_id, memory_types, min_importance, recent_hours, query_embedding, limit)
        cached = self._query_cache.get(cache_key)
        if cached is not None:
            # the window slides after caching; drop rows that aged out
            return [m.model_copy() for m in cached if since is None or m.timestamp >= since]

        query_filter = memory_filter(
            agent_id, memory_types=memory_types, min_importance=min_importance, since=since
        )

        if query_embedding is not None:
            memories = self._search(query_embedding, query_filter, limit)
        else:
            memories = self._scroll(query_filter)
            memories.sort(key=lambda m: m.timestamp, reverse=True)
            memories = memories[:limit]

        self._query_cache.set(cache_key, memories)
        return [m.model_copy() for m in memories]

    async def get_contextual_memories(self, agent_id: str, context: str, limit: int = 15) -> list[Memory]:
        """Blend recent, important and context-similar memories, best first."""
        bucket = max(1, limit // 3)

        recent = await self.retrieve_memories(agent_id, recent_hours=24, limit=bucket)
        important = await self.retrieve_memories(agent_id, min_importance=7, limit=bucket)

        similar: list[Memory] = []
        context_embedding = await self._embed(context)
        if any(context_embedding):
            similar = await self.retrieve_memories(agent_id, query_embedding=context_embedding, limit=bucket)

        candidates: dict[str, Memory] = {}
        for memory in recent + important:
            candidates.setdefault(memory.id, memory)
        for memory in similar:
            candidates[memory.id] = memory

        now = datetime.now(timezone.utc)
        ranked = sorted(
            candidates.values(),
            key=lambda m: self.score_memory(m, context, now),
            reverse=True,
        )
        return ranked[:limit]

    @staticmethod
    def score_memory(memory: Memory, context: Optional[str] = None, now: Optional[datetime] = None) -> float:
        """Composite relevance score used to rank contextual memories."""
        recency = max(0.0, 10 - memory.hours_old(now) / 24)

        if memory.distance is not None:
            similarity = 10 * (1 - memory.distance)
            weights = (0.2, 0.3, 0.2, 0.3)
        else:
            similarity = 5.0
            weights = (0.3, 0.4, 0.2, 0.1)

        score = (
            recency * weights[0]
            + memory.importance_score * weights[1]
            + memory.emotional_relevance * weights[2]
            + similarity * weights[3]
        )

        if context:
            if is_conversational(memory.content):
                score *= 1.5
            context_words = {w for w in _words(context) if len(w) > 3}
            memory_words = {w for w in _words(memory.content) if len(w) > 3}
            score += 0.1 * len(context_words & memory_words)
        return score

    async def get_memory(self, memory_id: str) -> Optional[Memory]:
        """Get memory by ID, cache first."""
        cached = self._point_cache.get(f"memory:{memory_id}")
        if cached is not None:
            return cached.model_copy()

        results = self.client.retrieve(collection_name=self.collection, ids=[memory_id], with_payload=True)
        if not results:
            return None

        memory = Memory.from_payload(results[0].payload)
        self._point_cache.set(f"memory:{memory_id}", memory)
        return memory.model_copy()

    async def has_recent_memory(
        self,
        agent_id: str,
        since_minutes: float,
        related_agent: Optional[str] = None,
        related_player: Optional[str] = None,
        content_fragment: Optional[str] = None,
    ) -> bool:
        """True if the agent stored a matching memory within the window."""
        since = datetime.now(timezone.utc) - timedelta(minutes=since_minutes)
        memories = self._scroll(
            memory_filter(agent_id, since=since, related_agent=related_agent, related_player=related_player)
        )
        if content_fragment is None:
            return bool(memories)
        fragment = content_fragment.lower()
        return any(fragment in m.content.lower() for m in memories)

    async def get_memory_stats(self, agent_id: str) -> dict[str, Any]:
        memories = self._scroll(memory_filter(agent_id))
        cutoff = datetime.now(timezone.utc) - timedelta(hours=24)

        memory_types: dict[str, int] = {}
        for memory in memories:
            memory_types[memory.memory_type] = memory_types.get(memory.memory_type, 0) + 1

        return {
            "total_memories": len(memories),
            "recent_memories": sum(1 for m in memories if m.timestamp >= cutoff),
            "memory_types": memory_types,
            "avg_importance": (
                sum(m.importance_score for m in memories) / len(memories) if memories else 0.0
            ),
        }

    async def get_type_stats(self, memory_type: str, recent_hours: float = 1) -> dict[str, Any]:
        """Counts of one memory type across all agents."""
        records = self._scroll(Filter(must=[FieldCondition(key="memory_type", match=MatchValue(value=memory_type))]))
        cutoff = datetime.now(timezone.utc) - timedelta(hours=recent_hours)

        by_agent: dict[str, int] = {}
        for memory in records:
            by_agent[memory.agent_id] = by_agent.get(memory.agent_id, 0) + 1
        return {
            "total": len(records),
            "recent": sum(1 for m in records if m.timestamp >= cutoff),
            "by_agent": by_agent,
        }

    def count(self, agent_id: Optional[str] = None) -> int:
        """Count stored memories, optionally for one agent."""
        if agent_id is None:
            return self.client.count(collection_name=self.collection, exact=True).count
        return self.client.count(
            collection_name=self.collection, count_filter=memory_filter(agent_id), exact=True
        ).count

    # ------------------ reflection & consolidation ------------------

    async def generate_reflection(self, agent_id: str) -> Optional[str]:
        """Synthesize a reflection from memories since the last one.

        Returns:
            The reflection id, or None when there are fewer than 5 sources

        Raises:
            Exception: Completion or storage failures propagate to the worker
        """
        candidates = self._unreflected(agent_id)
        candidates.sort(key=lambda m: (m.importance_score, m.timestamp), reverse=True)
        candidates = candidates[: self.REFLECTION_MAX_SOURCES]

        if len(candidates) < self.REFLECTION_MIN_MEMORIES:
            logger.info("Not enough memories to reflect for %s (%d)", agent_id, len(candidates))
            return None

        agent = await self.world.get_agent(agent_id) or {"id": agent_id, "name": agent_id}
        content = await self.completions.complete(
            self._reflection_prompt(agent, candidates), system=REFLECTION_SYSTEM_PROMPT
        )

        average = sum(m.importance_score for m in candidates) / len(candidates)
        reflection = Memory(
            agent_id=agent_id,
            memory_type="reflection",
            content=content,
            importance_score=clamp_score(average + 2, low=7, high=10),
            emotional_relevance=emotional_relevance(content),
            tags=["reflection"],
            related_agents=[a for m in candidates for a in m.related_agents],
            related_players=[p for m in candidates for p in m.related_players],
            location=candidates[0].location,
        )
        reflection.embedding = await self._embed(content)
        await self._persist(reflection)

        logger.info("Stored reflection %s for %s from %d memories", reflection.id, agent_id, len(candidates))
        return reflection.id

    @staticmethod
    def _reflection_prompt(agent: dict[str, Any], memories: list[Memory]) -> str:
        lines = [f"You are {agent.get('name', agent['id'])}."]
        if agent.get("constitution"):
            lines.append(agent["constitution"])
        if agent.get("primary_goal"):
            lines.append(f"Your primary goal: {agent['primary_goal']}")
        if agent.get("secondary_goals"):
            lines.append(f"Your other goals: {', '.join(agent['secondary_goals'])}")
        if agent.get("personality_traits"):
            lines.append(f"Your personality traits: {', '.join(agent['personality_traits'])}")

        lines.append("")
        lines.append("Your recent experiences, most important first:")
        for i, memory in enumerate(memories, 1):
            lines.append(f"{i}. [importance {memory.importance_score}] {memory.content}")

        lines.append("")
        lines.append(
            "What patterns do you notice in these experiences? What have you learned "
            "about yourself, the people around you, and your goals? "
            "Answer with a short first-person reflection of two to four sentences."
        )
        return "\n".join(lines)

    async def consolidate_player_memories(self, agent_id: str, player_id: str) -> list[str]:
        """Summarize each recent interaction session with a player.

        Originals are tagged "consolidated" and kept. Sessions break where
        consecutive memories are more than an hour apart.

        Returns:
            Ids of the summary memories created
        """
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        memories = self._scroll(
            memory_filter(
                agent_id,
                since=since,
                related_player=player_id,
                exclude_tags=["consolidated", "consolidated_summary"],
            )
        )
        memories.sort(key=lambda m: m.timestamp)

        sessions: list[list[Memory]] = []
        for memory in memories:
            if sessions and memory.timestamp - sessions[-1][-1].timestamp <= self.SESSION_GAP:
                sessions[-1].append(memory)
            else:
                sessions.append([memory])

        summary_ids = []
        for session in sessions:
            if len(session) < self.MIN_SESSION_MEMORIES:
                continue

            average = sum(m.importance_score for m in session) / len(session)
            content = await self._summarize_session(agent_id, player_id, session)
            summary = Memory(
                agent_id=agent_id,
                memory_type="observation",
                content=content,
                importance_score=clamp_score(average + 1),
                emotional_relevance=clamp_score(sum(m.emotional_relevance for m in session) / len(session)),
                tags=["consolidated_summary", "player_interaction"],
                related_agents=[a for m in session for a in m.related_agents],
                related_players=[player_id],
                location=session[-1].location,
            )
            summary.embedding = await self._embed(content)
            await self._persist(summary)

            for original in session:
                self.client.set_payload(
                    collection_name=self.collection,
                    payload={"tags": original.tags + ["consolidated"]},
                    points=[original.id],
                )
                self._point_cache.set(
                    f"memory:{original.id}",
                    original.model_copy(update={"tags": original.tags + ["consolidated"]}),
                )
            self._query_cache.invalidate_prefix(f"{agent_id}:")

            summary_ids.append(summary.id)
            logger.info(
                "Consolidated %d memories about %s for %s into %s",
                len(session),
                player_id,
                agent_id,
                summary.id,
            )
        return summary_ids

    async def _summarize_session(self, agent_id: str, player_id: str, session: list[Memory]) -> str:
        events = "\n".join(f"- {m.timestamp:%H:%M} {m.content}" for m in session)
        prompt = (
            f"Summarize these moments from one encounter with {player_id} into two "
            f"first-person sentences, keeping names and what happened:\n{events}"
        )
        try:
            return await self.completions.complete(prompt, max_tokens=200)
        except Exception as e:
            logger.warning("Session summary failed for %s, using digest: %s", agent_id, e)
            start, end = session[0].timestamp, session[-1].timestamp
            digest = "; ".join(m.content for m in session)
            return (
                f"Between {start:%H:%M} and {end:%H:%M} I had {len(session)} "
                f"interactions with {player_id}: {digest}"
            )

    # ------------------ qdrant helpers ------------------

    def _scroll(self, query_filter: Filter) -> list[Memory]:
        """Every point matching the filter, without vectors."""
        memories = []
        offset = None
        while True:
            records, offset = self.client.scroll(
                collection_name=self.collection,
                scroll_filter=query_filter,
                limit=self.SCROLL_PAGE,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            memories.extend(Memory.from_payload(record.payload) for record in records)
            if offset is None:
                return memories

    def _search(self, query_embedding: list[float], query_filter: Filter, limit: int) -> list[Memory]:
        """Nearest memories by L2 distance, closest first."""
        points = self.client.query_points(
            collection_name=self.collection,
            query=query_embedding,
            query_filter=query_filter,
            limit=limit,
            with_payload=True,
            with_vectors=True,
        ).points

        query = np.asarray(query_embedding, dtype=np.float64)
        memories = []
        for point in points:
            vector = np.asarray(point.vector, dtype=np.float64)
            distance = float(np.linalg.norm(vector - query))
            memories.append(Memory.from_payload(point.payload, distance=distance))
        memories.sort(key=lambda m: m.distance)
        return memories

    @staticmethod
    def _query_key(
        agent_id: str,
        memory_types: Optional[list[str]],
        min_importance: Optional[int],
        recent_hours: Optional[float],
        query_embedding: Optional[list[float]],
        limit: int,
    ) -> str:
        embedding_key = "-"
        if query_embedding is not None:
            raw = np.asarray(query_embedding, dtype=np.float32).tobytes()
            embedding_key = hashlib.sha1(raw).hexdigest()
        types_key = ",".join(sorted(memory_types)) if memory_types else "*"
        return f"{agent_id}:{types_key}:{min_importance}:{recent_hours}:{embedding_key}:{limit}"
