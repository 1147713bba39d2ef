"""Tile-coordinate helpers shared by observation and thought routing.

Spatial queries against the world store use square ranges; the thought
gate measures straight-line distance.
"""

import math
import re
from typing import Any, Optional

COORDINATE_PATTERN = re.compile(r"^\s*(-?\d+)\s*,\s*(-?\d+)\s*$")


def parse_location(location: Optional[str]) -> Optional[tuple[int, int]]:
    """Parse an "x,y" location string into integer tile coordinates.

    Named locations ("tavern", "town_square") return None.
    """
    if not location:
        return None
    match = COORDINATE_PATTERN.match(location)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def agent_position(agent: dict[str, Any]) -> Optional[tuple[int, int]]:
    if agent.get("current_x") is None or agent.get("current_y") is None:
        return None
    return int(agent["current_x"]), int(agent["current_y"])


def euclidean_distance(a: tuple[int, int], b: tuple[int, int]) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def within_range(
    position: Optional[tuple[int, int]], location: Optional[str], tiles: int
) -> bool:
    """True when position lies within `tiles` straight-line tiles of location.

    Unknown positions and named locations are never "within range": the
    thought-trigger gate requires real coordinates on both sides.
    """
    target = parse_location(location)
    if position is None or target is None:
        return False
    return euclidean_distance(position, target) <= tiles
