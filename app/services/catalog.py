"""Read-only content catalog.

Achievements, milestones, collectibles and the gacha pool are authored data.
They are loaded once into an immutable ContentCatalog that is passed to the
services that need it, rather than looked up through process-wide caches.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from app.constants import PITY_THRESHOLD, RARITY_WEIGHTS
from app.services.criteria import Criterion, UnsupportedCriterion, parse_criterion
from app.services.rarity import Rarity

logger = logging.getLogger(__name__)

MILESTONE_COUNTERS = ("lessons_completed", "quizzes_completed", "perfect_scores", "streak_days", "level")
"""Record counters a milestone may track."""


@dataclass(frozen=True)
class Reward:
    """Experience, tickets and optionally a collectible granted once."""
    experience: int = 0
    gacha_tickets: int = 0
    collectible_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Reward":
        data = data or {}
        return cls(
            experience=int(data.get("experience", 0)),
            gacha_tickets=int(data.get("gachaTickets", 0)),
            collectible_id=data.get("collectible"),
        )


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    name: str
    description: str
    category: str
    criterion: Criterion
    reward: Reward


@dataclass(frozen=True)
class MilestoneDefinition:
    id: str
    name: str
    counter: str
    required_value: int
    reward: Reward


@dataclass(frozen=True)
class Collectible:
    id: str
    name: str
    rarity: Rarity
    era: str = ""
    school: str = ""
    base_stats: Mapping[str, int] = field(default_factory=dict, compare=False)
    pullable: bool = True


@dataclass(frozen=True)
class GachaPool:
    """Drop table, pity threshold and pullable collectibles grouped by rarity."""
    weights: Tuple[Tuple[Rarity, float], ...]
    pity_threshold: int
    collectibles: Mapping[Rarity, Tuple[Collectible, ...]] = field(compare=False)

    def slice(self, rarity: Rarity) -> Tuple[Collectible, ...]:
        return self.collectibles.get(rarity, ())

    def rates(self) -> Dict[str, float]:
        return {rarity.value: weight for rarity, weight in self.weights}


class CatalogError(ValueError):
    """Raised when catalog content is structurally unusable."""


class ContentCatalog:
    """Immutable view over all authored content."""

    def __init__(
        self,
        achievements: Iterable[AchievementDefinition],
        milestones: Iterable[MilestoneDefinition],
        collectibles: Iterable[Collectible],
        pool: GachaPool
    ):
        self._achievements: Dict[str, AchievementDefinition] = {a.id: a for a in achievements}
        self._milestones: Tuple[MilestoneDefinition, ...] = tuple(milestones)
        self._collectibles: Dict[str, Collectible] = {c.id: c for c in collectibles}
        self.pool = pool

        # Trigger -> achievement ids whose outcome the trigger can change
        dependency_map: Dict[str, List[str]] = {}
        for achievement in self._achievements.values():
            for trigger in achievement.criterion.triggers:
                dependency_map.setdefault(trigger, []).append(achievement.id)
        self._dependency_map = {k: tuple(v) for k, v in dependency_map.items()}

    @property
    def achievements(self) -> Tuple[AchievementDefinition, ...]:
        return tuple(self._achievements.values())

    @property
    def milestones(self) -> Tuple[MilestoneDefinition, ...]:
        return self._milestones

    @property
    def collectibles(self) -> Tuple[Collectible, ...]:
        return tuple(self._collectibles.values())

    def achievement(self, achievement_id: str) -> Optional[AchievementDefinition]:
        return self._achievements.get(achievement_id)

    def collectible(self, collectible_id: str) -> Optional[Collectible]:
        return self._collectibles.get(collectible_id)

    def candidates_for(self, triggers: Iterable[str]) -> List[str]:
        """
        Achievement ids that could be affected by the given triggers.

        Args:
            triggers: Activity triggers present in an update

        Returns:
            Achievement ids in catalog order, without duplicates
        """
        wanted = set()
        for trigger in triggers:
            wanted.update(self._dependency_map.get(trigger, ()))
        return [aid for aid in self._achievements if aid in wanted]


def build_pool(
    collectibles: Iterable[Collectible],
    weights: Sequence[Tuple[str, float]] = RARITY_WEIGHTS,
    pity_threshold: int = PITY_THRESHOLD
) -> GachaPool:
    """Group pullable collectibles by rarity into a GachaPool."""
    by_rarity: Dict[Rarity, List[Collectible]] = {}
    for collectible in collectibles:
        if collectible.pullable:
            by_rarity.setdefault(collectible.rarity, []).append(collectible)

    return GachaPool(
        weights=tuple((Rarity(name), float(weight)) for name, weight in weights),
        pity_threshold=pity_threshold,
        collectibles={rarity: tuple(items) for rarity, items in by_rarity.items()},
    )


def build_catalog(
    achievements: Sequence[Mapping[str, Any]],
    milestones: Sequence[Mapping[str, Any]],
    philosophers: Sequence[Mapping[str, Any]],
    weights: Sequence[Tuple[str, float]] = RARITY_WEIGHTS,
    pity_threshold: int = PITY_THRESHOLD
) -> ContentCatalog:
    """
    Parse raw content lists into a ContentCatalog.

    Args:
        achievements: Achievement dicts with id, criteria and rewards
        milestones: Milestone dicts with id, counter, requiredValue and reward
        philosophers: Collectible dicts with id, name, rarity and base_stats
        weights: (rarity, weight) pairs, lowest tier first
        pity_threshold: Pulls before the pity guarantee applies

    Returns:
        Catalog ready to be shared between services
    """
    collectibles = [
        Collectible(
            id=p["id"],
            name=p["name"],
            rarity=Rarity(p["rarity"]),
            era=p.get("era", ""),
            school=p.get("school", ""),
            base_stats=dict(p.get("base_stats", {})),
            pullable=p.get("pullable", True),
        )
        for p in philosophers
    ]

    achievement_defs = [
        AchievementDefinition(
            id=a["id"],
            name=a.get("name", a["id"]),
            description=a.get("description", ""),
            category=a.get("category", "general"),
            criterion=parse_criterion(a.get("criteria", {})),
            reward=Reward.from_dict(a.get("rewards")),
        )
        for a in achievements
    ]

    milestone_defs = [
        MilestoneDefinition(
            id=m["id"],
            name=m.get("name", m["id"]),
            counter=m["counter"],
            required_value=int(m["requiredValue"]),
            reward=Reward.from_dict(m.get("reward")),
        )
        for m in milestones
    ]

    pool = build_pool(collectibles, weights, pity_threshold)
    return ContentCatalog(achievement_defs, milestone_defs, collectibles, pool)


def validate_catalog(catalog: ContentCatalog) -> List[str]:
    """
    Check a catalog for content problems.

    Returns:
        Human-readable problems, empty when the catalog is consistent
    """
    problems = []

    total = sum(weight for _, weight in catalog.pool.weights)
    if abs(total - 1.0) > 1e-9:
        problems.append(f"Rarity weights sum to {total}, expected 1.0")

    for rarity, _ in catalog.pool.weights:
        if not catalog.pool.slice(rarity):
            problems.append(f"No pullable collectibles with rarity {rarity.value}")

    for achievement in catalog.achievements:
        if isinstance(achievement.criterion, UnsupportedCriterion):
            problems.append(
                f"Achievement {achievement.id} has unsupported criteria "
                f"type {achievement.criterion.type_name!r}"
            )

    for milestone in catalog.milestones:
        if milestone.counter not in MILESTONE_COUNTERS:
            problems.append(f"Milestone {milestone.id} tracks unknown counter {milestone.counter!r}")
        if milestone.required_value < 1:
            problems.append(f"Milestone {milestone.id} has non-positive requiredValue")
        reward_id = milestone.reward.collectible_id
        if reward_id and catalog.collectible(reward_id) is None:
            problems.append(f"Milestone {milestone.id} rewards unknown collectible {reward_id!r}")

    return problems


def load_default_catalog() -> ContentCatalog:
    """Build the catalog from the bundled content modules."""
    from app.content.achievements import ACHIEVEMENTS
    from app.content.milestones import MILESTONES
    from app.content.philosophers import PHILOSOPHERS

    catalog = build_catalog(ACHIEVEMENTS, MILESTONES, PHILOSOPHERS)
    logger.debug(
        f"Loaded catalog: {len(catalog.achievements)} achievements, "
        f"{len(catalog.milestones)} milestones, {len(catalog.collectibles)} collectibles"
    )
    return catalog
