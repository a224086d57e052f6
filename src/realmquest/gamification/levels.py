"""Level thresholds and computation.

Level ``n`` needs ``sum((i - 1) * 100 for i in 2..n)`` cumulative XP:
level 2 at 100, level 3 at 300, level 4 at 600, and so on. Levels are always
recomputed from total XP, never patched incrementally.
"""

from __future__ import annotations

from math import isqrt

from realmquest.gamification.errors import InvalidInputError

XP_PER_LEVEL_STEP = 100

XP_REWARDS: dict[str, int] = {
    "easy": 10,
    "medium": 25,
    "hard": 50,
}


def xp_for_level(level: int) -> int:
    """Cumulative XP required to reach ``level``."""
    if level <= 1:
        return 0
    return XP_PER_LEVEL_STEP * level * (level - 1) // 2


def level_of(xp: int) -> int:
    """Largest level whose threshold is <= ``xp``."""
    if xp < 0:
        msg = f"XP must be non-negative, got {xp}"
        raise InvalidInputError(msg)

    # n(n-1) * 50 <= xp  <=>  n(n-1) <= xp // 50
    k = xp // (XP_PER_LEVEL_STEP // 2)
    level = (1 + isqrt(1 + 4 * k)) // 2
    level = max(level, 1)
    while xp_for_level(level + 1) <= xp:
        level += 1
    while level > 1 and xp_for_level(level) > xp:
        level -= 1
    return level


def xp_to_next_level(xp: int) -> int:
    return max(0, xp_for_level(level_of(xp) + 1) - xp)


def compute_level(total_xp: int) -> dict:
    """Level info for display: current level plus progress toward the next one."""
    level = level_of(total_xp)
    floor = xp_for_level(level)
    ceiling = xp_for_level(level + 1)
    return {
        "level": level,
        "xp_into_level": total_xp - floor,
        "xp_for_level": ceiling - floor,
        "xp_to_next_level": ceiling - total_xp,
        "next_level": level + 1,
    }


def level_thresholds(max_level: int = 50) -> list[dict]:
    """Threshold table for levels 1..max_level."""
    return [
        {
            "level": n,
            "xp_required": xp_for_level(n) - xp_for_level(n - 1),
            "cumulative": xp_for_level(n),
        }
        for n in range(1, max_level + 1)
    ]


def xp_reward_for_difficulty(difficulty: str) -> int:
    """Base XP for a task difficulty; unknown values get the easy reward."""
    return XP_REWARDS.get(difficulty, XP_REWARDS["easy"])
