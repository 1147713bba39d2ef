"""Player reputation scores (0-100, neutral 50)."""

import logging
import re

from .world import WorldStore

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

DEFAULT_REPUTATION = 50


class ReputationManager:
    """Reads and adjusts player reputation.

    Live sessions sometimes identify players by a session id instead of a
    character UUID. Those ids read as the neutral default and are never
    written.
    """

    def __init__(self, world: WorldStore):
        self.world = world

    @staticmethod
    def is_character_id(character_id: str) -> bool:
        return bool(UUID_PATTERN.match(character_id or ""))

    async def get(self, character_id: str) -> int:
        if not self.is_character_id(character_id):
            logger.warning("Non-UUID character id %r, using default reputation", character_id)
            return DEFAULT_REPUTATION
        try:
            score = await self.world.get_reputation_score(character_id)
        except Exception as e:
            logger.error("Reputation lookup failed for %s: %s", character_id, e)
            return DEFAULT_REPUTATION
        return DEFAULT_REPUTATION if score is None else score

    async def initialize(self, character_id: str) -> None:
        if self.is_character_id(character_id):
            await self.world.adjust_reputation(character_id, 0, initial=DEFAULT_REPUTATION)

    async def update(self, character_id: str, delta: int, reason: str = "") -> int:
        """Apply delta, clamped to [0, 100]. Returns the new score."""
        if not self.is_character_id(character_id):
            logger.warning("Skipping reputation update for non-UUID id %r (%s)", character_id, reason)
            return DEFAULT_REPUTATION

        score = await self.world.adjust_reputation(character_id, delta, initial=DEFAULT_REPUTATION)
        logger.info("Updated reputation for %s by %+d (%s) -> %d", character_id, delta, reason, score)
        return score
