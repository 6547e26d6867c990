"""
core/progression.py -- Experience-to-level curve math.

Pure functions over (thresholds, accumulated experience). No storage, no
config, no clock -- the Skill Ledger calls these from inside its store
transaction and the tests call them directly.

A curve is a strictly increasing sequence T[0]=0 < T[1] < T[2] < ...
The level for a total is the largest index i with total >= T[i]. Level is
always derived from the total, never bumped, so awards applied in any order
converge on the same level.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Sequence


def validate_thresholds(thresholds: Sequence[int]) -> tuple[int, ...]:
    """Return thresholds as a tuple, raising ValueError if they are not a valid curve."""
    curve = tuple(thresholds)
    if not curve:
        raise ValueError("A skill curve needs at least one threshold.")
    if curve[0] != 0:
        raise ValueError(f"The first threshold must be 0, got {curve[0]}.")
    for lower, upper in zip(curve, curve[1:]):
        if upper <= lower:
            raise ValueError(f"Thresholds must be strictly increasing ({lower} >= {upper}).")
    return curve


def level_for(thresholds: Sequence[int], experience: int) -> int:
    """Return the largest level whose threshold is <= experience.

    Example: thresholds [0, 100, 500] -> 99 xp is level 0, 150 is level 1,
    550 is level 2. Totals past the last threshold stay at the max level.
    """
    if experience < 0:
        raise ValueError("Experience cannot be negative.")
    # bisect_right counts thresholds <= experience; T[0]=0 guarantees >= 1.
    return bisect_right(thresholds, experience) - 1


def threshold_for(thresholds: Sequence[int], level: int) -> int:
    """Return the experience needed to reach level."""
    if level < 0 or level >= len(thresholds):
        raise ValueError(f"Level {level} is outside 0..{len(thresholds) - 1}.")
    return thresholds[level]


def experience_to_next(thresholds: Sequence[int], experience: int) -> int | None:
    """Experience still missing for the next level, or None at the max level."""
    level = level_for(thresholds, experience)
    if level + 1 >= len(thresholds):
        return None
    return thresholds[level + 1] - experience
