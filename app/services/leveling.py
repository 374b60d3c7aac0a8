"""Experience to level curve and the rewards tied to levels."""
import math
from typing import Dict, List, Mapping

from app.constants import EXPERIENCE_PER_LEVEL_UNIT, FEATURE_UNLOCKS, TICKETS_PER_LEVEL


def level_for_experience(experience: int) -> int:
    """
    Map cumulative experience to a level.

    level = floor(sqrt(experience / 100)) + 1, computed with integer square
    roots so large totals never suffer float rounding at level boundaries.

    Args:
        experience: Cumulative experience, non-negative

    Returns:
        Level, at least 1 for non-negative input. Negative experience lies
        below the curve and maps to 0.
    """
    if experience < 0:
        return 0
    return math.isqrt(experience // EXPERIENCE_PER_LEVEL_UNIT) + 1


def experience_for_level(level: int) -> int:
    """
    Minimum cumulative experience at which ``level`` is reached.

    Args:
        level: Level, at least 1

    Returns:
        (level - 1)^2 * 100
    """
    return (level - 1) ** 2 * EXPERIENCE_PER_LEVEL_UNIT


def tickets_for_levels(levels_gained: int) -> int:
    """Gacha tickets granted for gaining ``levels_gained`` levels."""
    return max(0, levels_gained) * TICKETS_PER_LEVEL


def features_unlocked_between(
    old_level: int,
    new_level: int,
    table: Mapping[int, str] = FEATURE_UNLOCKS
) -> List[str]:
    """
    Features whose threshold lies in (old_level, new_level].

    A jump over several thresholds unlocks all of them, lowest first.
    """
    return [table[threshold] for threshold in sorted(table) if old_level < threshold <= new_level]


def features_for_level(level: int, table: Mapping[int, str] = FEATURE_UNLOCKS) -> List[str]:
    """All features available at ``level``."""
    return [table[threshold] for threshold in sorted(table) if threshold <= level]


def get_level_progress(experience: int) -> Dict:
    """
    Get progress toward the next level.

    Args:
        experience: Cumulative experience

    Returns:
        Dictionary with level progress:
        {
            "level": 3,
            "experience": 500,
            "current_level_experience": 400,
            "next_level_experience": 900,
            "experience_to_next_level": 400,
            "progress_percentage": 20.0
        }
    """
    level = level_for_experience(experience)
    floor_exp = experience_for_level(level)
    next_exp = experience_for_level(level + 1)
    span = next_exp - floor_exp

    return {
        "level": level,
        "experience": experience,
        "current_level_experience": floor_exp,
        "next_level_experience": next_exp,
        "experience_to_next_level": next_exp - experience,
        "progress_percentage": round((experience - floor_exp) / span * 100, 1),
    }


def next_feature_unlock(level: int, table: Mapping[int, str] = FEATURE_UNLOCKS):
    """The next locked feature as {"level", "feature"}, or None when all are open."""
    for threshold in sorted(table):
        if threshold > level:
            return {"level": threshold, "feature": table[threshold]}
    return None
