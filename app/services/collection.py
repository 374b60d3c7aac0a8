"""Growth of owned collectibles: experience, duplicates and enhancement."""
from dataclasses import replace
from datetime import datetime
from typing import Dict, Mapping

from app.constants import (
    COLLECTIBLE_EXPERIENCE_PER_LEVEL,
    COLLECTIBLE_MAX_LEVEL,
    COLLECTIBLE_STAT_GROWTH_PER_DUPLICATE,
    COLLECTIBLE_STAT_GROWTH_PER_LEVEL,
    DUPLICATE_BONUS_EXPERIENCE,
    ENHANCE_EXPERIENCE,
)
from app.services.records import OwnedCollectible
from app.services.rarity import Rarity


def new_collectible(collectible_id: str, rarity: Rarity, acquired_at: datetime) -> OwnedCollectible:
    """A freshly acquired collectible at level 1."""
    return OwnedCollectible(
        collectible_id=collectible_id,
        rarity=rarity,
        level=1,
        experience=0,
        acquired_at=acquired_at,
        duplicate_count=0,
    )


def add_experience(owned: OwnedCollectible, amount: int) -> OwnedCollectible:
    """
    Add experience to a collectible, levelling it up as thresholds are passed.

    Each level costs ``level * 100`` experience, which is consumed on level-up.
    At the level cap, experience keeps accumulating but no longer levels.

    Args:
        owned: Current collectible state
        amount: Experience to add, non-negative

    Returns:
        Updated collectible state
    """
    level = owned.level
    experience = owned.experience + max(0, amount)

    while level < COLLECTIBLE_MAX_LEVEL and experience >= level * COLLECTIBLE_EXPERIENCE_PER_LEVEL:
        experience -= level * COLLECTIBLE_EXPERIENCE_PER_LEVEL
        level += 1

    return replace(owned, level=level, experience=experience)


def register_duplicate(owned: OwnedCollectible) -> OwnedCollectible:
    """Count a duplicate pull and grant its bonus experience."""
    bumped = replace(owned, duplicate_count=owned.duplicate_count + 1)
    return add_experience(bumped, DUPLICATE_BONUS_EXPERIENCE)


def enhance(owned: OwnedCollectible) -> OwnedCollectible:
    """
    Spend one duplicate for a block of experience.

    Raises:
        ValueError: If the collectible has no duplicates to spend
    """
    if owned.duplicate_count < 1:
        raise ValueError(f"{owned.collectible_id} has no duplicates to spend")
    spent = replace(owned, duplicate_count=owned.duplicate_count - 1)
    return add_experience(spent, ENHANCE_EXPERIENCE)


def stat_multiplier(owned: OwnedCollectible) -> float:
    """Stat scale from level and duplicates: 1 + (level-1)*0.05 + duplicates*0.1."""
    return (
        1.0
        + (owned.level - 1) * COLLECTIBLE_STAT_GROWTH_PER_LEVEL
        + owned.duplicate_count * COLLECTIBLE_STAT_GROWTH_PER_DUPLICATE
    )


def enhanced_stats(owned: OwnedCollectible, base_stats: Mapping[str, int]) -> Dict[str, int]:
    """Base stats scaled by the collectible's multiplier, rounded down."""
    multiplier = stat_multiplier(owned)
    return {name: int(value * multiplier) for name, value in base_stats.items()}
