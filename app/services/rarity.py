"""Weighted rarity selection with a pity guarantee.

The resolver walks a cumulative weight table, lowest tier first. After
``pity_threshold`` consecutive pulls below the second-lowest tier, the next
low draw is forced up to that tier. The random source is injected so pity
behaviour can be tested deterministically.
"""
import random
from enum import Enum
from typing import Optional, Sequence, Tuple


class Rarity(str, Enum):
    """Collectible rarity tiers, lowest first."""
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class RarityResolver:
    """Draws a rarity tier and advances the pity counter."""

    def __init__(
        self,
        weights: Sequence[Tuple[Rarity, float]],
        pity_threshold: int,
        rng: Optional[random.Random] = None
    ):
        """
        Args:
            weights: (rarity, weight) pairs ordered lowest tier first,
                     weights summing to 1.0
            pity_threshold: Counter value at which pity applies
            rng: Random source exposing random() in [0, 1)
        """
        if len(weights) < 2:
            raise ValueError("A rarity table needs at least two tiers")
        if pity_threshold < 1:
            raise ValueError("pity_threshold must be positive")

        self.weights = tuple(weights)
        self.pity_threshold = pity_threshold
        self.rng = rng if rng is not None else random.Random()
        self._tiers = [rarity for rarity, _ in self.weights]

    @property
    def pity_floor(self) -> Rarity:
        """The second-lowest tier, the minimum a pity pull can yield."""
        return self._tiers[1]

    def is_rare_or_better(self, rarity: Rarity) -> bool:
        return self._tiers.index(rarity) >= 1

    def draw(self) -> Rarity:
        """Draw a tier from the weight table, ignoring pity."""
        r = self.rng.random()
        cumulative = 0.0
        for rarity, weight in self.weights:
            cumulative += weight
            if r < cumulative:
                return rarity
        # Float rounding can leave the table summing just under 1.0
        return self._tiers[-1]

    def resolve(self, pulls_since_rare: int) -> Tuple[Rarity, int, bool]:
        """
        Resolve the rarity of one pull.

        Args:
            pulls_since_rare: Consecutive pulls since the last rare-or-better

        Returns:
            (rarity, new counter value, whether pity forced the result)
        """
        rarity = self.draw()
        pity_applied = False

        if pulls_since_rare >= self.pity_threshold and not self.is_rare_or_better(rarity):
            rarity = self.pity_floor
            pity_applied = True

        if self.is_rare_or_better(rarity):
            return rarity, 0, pity_applied
        return rarity, pulls_since_rare + 1, pity_applied
