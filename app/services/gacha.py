"""Gacha engine: ticket-priced pulls from the philosopher pool.

A pull debits tickets, resolves a rarity (advancing the pity counter),
picks a collectible uniformly from that rarity's slice and resolves
ownership. A batch pull does all of this for ten draws against one ticket
debit, and the whole batch (tickets, pity counter, collection, history,
any collection achievements) is written in one transaction.
"""
import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.config import settings
from app.constants import MULTI_PULL_COST, MULTI_PULL_COUNT, PULL_HISTORY_LIMIT, SINGLE_PULL_COST
from app.services.catalog import CatalogError
from app.services.collection import enhance, enhanced_stats, stat_multiplier
from app.services.draft import ProgressionDraft, RewardGrant
from app.services.progression import ProgressionOrchestrator
from app.services.rarity import Rarity, RarityResolver
from app.services.records import OwnedCollectible, PullRecord

logger = logging.getLogger(__name__)

PULL_COSTS = {1: SINGLE_PULL_COST, MULTI_PULL_COUNT: MULTI_PULL_COST}
"""Pull count -> ticket cost."""


class InsufficientTickets(ValueError):
    """The ticket balance does not cover the pull."""

    def __init__(self, required: int, available: int):
        super().__init__(f"Pull costs {required} tickets, only {available} available")
        self.required = required
        self.available = available


class InvalidPullCount(ValueError):
    """Pulls come in singles or batches of ten."""


class UnknownCollectible(LookupError):
    """The collectible is not in the catalog or not owned."""


class NoDuplicatesToSpend(ValueError):
    """Enhancing needs at least one duplicate."""


@dataclass(frozen=True)
class PullResult:
    collectible_id: str
    rarity: Rarity
    is_new: bool
    duplicate_count: int
    pity_applied: bool = False


@dataclass
class PullBatch:
    results: List[PullResult]
    tickets_spent: int
    tickets_remaining: int
    pulls_since_rare: int
    rewards: List[RewardGrant] = field(default_factory=list)
    achievements_unlocked: List[str] = field(default_factory=list)


def pull_cost(count: int) -> int:
    """
    Ticket cost of a pull.

    Raises:
        InvalidPullCount: If count is not 1 or 10
    """
    try:
        return PULL_COSTS[count]
    except KeyError:
        raise InvalidPullCount(f"count must be 1 or {MULTI_PULL_COUNT}, got {count}")


class GachaEngine:
    """Pulls, pull history and collectible enhancement."""

    def __init__(
        self,
        orchestrator: ProgressionOrchestrator,
        rng: Optional[random.Random] = None,
        resolver: Optional[RarityResolver] = None
    ):
        """
        Args:
            orchestrator: Provides the read/compute/write cycle and unlocks
            rng: Random source for rarity draws and collectible choice
            resolver: Rarity resolver; built from the catalog pool by default
        """
        self.orchestrator = orchestrator
        self.catalog = orchestrator.catalog
        self.pool = self.catalog.pool
        self.rng = rng if rng is not None else random.Random(settings.GACHA_RANDOM_SEED)
        self.resolver = resolver or RarityResolver(self.pool.weights, self.pool.pity_threshold, self.rng)

    def draw_into(self, draft: ProgressionDraft, count: int) -> List[PullResult]:
        """
        Perform ``count`` draws on a draft, debiting tickets once.

        The pity counter carries across the batch in draw order, and a
        collectible drawn twice in one batch counts as a duplicate the
        second time.

        Raises:
            InvalidPullCount: If count is not 1 or 10
            InsufficientTickets: If the balance is below the cost
        """
        cost = pull_cost(count)
        available = draft.fields["gacha_tickets"]
        if available < cost:
            raise InsufficientTickets(cost, available)
        draft.fields["gacha_tickets"] = available - cost

        counter = draft.fields["pulls_since_rare"]
        results = []
        for _ in range(count):
            rarity, counter, pity_applied = self.resolver.resolve(counter)
            candidates = self.pool.slice(rarity)
            if not candidates:
                raise CatalogError(f"No pullable collectibles with rarity {rarity.value}")
            collectible = self.rng.choice(candidates)

            is_new = draft.owned(collectible.id) is None
            owned = draft.acquire(collectible)

            result = PullResult(
                collectible_id=collectible.id,
                rarity=rarity,
                is_new=is_new,
                duplicate_count=owned.duplicate_count,
                pity_applied=pity_applied,
            )
            results.append(result)
            draft.pulls.append(PullRecord(
                collectible_id=collectible.id,
                rarity=rarity,
                is_new=is_new,
                duplicate_count=owned.duplicate_count,
                pity_applied=pity_applied,
                pulled_at=draft.now,
            ))

        draft.fields["pulls_since_rare"] = counter
        return results

    def pull_batch(self, user_id: str, count: int) -> PullBatch:
        """
        Pull and persist atomically.

        Args:
            user_id: Puller
            count: 1 or 10

        Returns:
            PullBatch with ordered results and any unlock rewards
        """
        cost = pull_cost(count)

        def build(draft: ProgressionDraft) -> PullBatch:
            results = self.draw_into(draft, count)
            self.orchestrator.evaluate_and_settle(draft)
            return PullBatch(
                results=results,
                tickets_spent=cost,
                tickets_remaining=draft.fields["gacha_tickets"],
                pulls_since_rare=draft.fields["pulls_since_rare"],
                rewards=list(draft.rewards),
                achievements_unlocked=list(draft.unlocked_achievements),
            )

        batch = self.orchestrator.run(user_id, build)
        logger.info(
            f"Pulled {count}: " + ", ".join(f"{r.collectible_id}({r.rarity.value})" for r in batch.results),
            extra={"user_id": user_id}
        )
        return batch

    def pull(self, user_id: str, count: int = 1) -> List[PullResult]:
        """Pull ``count`` (1 or 10) and return the ordered results."""
        return self.pull_batch(user_id, count).results

    def enhance(self, user_id: str, collectible_id: str) -> OwnedCollectible:
        """
        Spend one duplicate of an owned collectible for experience.

        Raises:
            UnknownCollectible: If the collectible is unknown or not owned
            NoDuplicatesToSpend: If there is no duplicate to spend
        """
        if self.catalog.collectible(collectible_id) is None:
            raise UnknownCollectible(collectible_id)

        def build(draft: ProgressionDraft) -> OwnedCollectible:
            owned = draft.owned(collectible_id)
            if owned is None:
                raise UnknownCollectible(f"{collectible_id} is not owned")
            if owned.duplicate_count < 1:
                raise NoDuplicatesToSpend(f"{collectible_id} has no duplicates")
            updated = enhance(owned)
            draft.collection[collectible_id] = updated
            return updated

        return self.orchestrator.run(user_id, build)

    # Read side

    def collection(self, user_id: str) -> List[Dict[str, Any]]:
        """Owned collectibles with their scaled stats, rarest first."""
        record = self.orchestrator.record(user_id)
        order = {rarity: index for index, (rarity, _) in enumerate(self.pool.weights)}
        listing = []
        for owned in record.collection.values():
            collectible = self.catalog.collectible(owned.collectible_id)
            base_stats = collectible.base_stats if collectible else {}
            listing.append({
                "collectible_id": owned.collectible_id,
                "name": collectible.name if collectible else owned.collectible_id,
                "rarity": owned.rarity.value,
                "level": owned.level,
                "experience": owned.experience,
                "duplicate_count": owned.duplicate_count,
                "acquired_at": owned.acquired_at.isoformat() if owned.acquired_at else None,
                "stat_multiplier": round(stat_multiplier(owned), 2),
                "stats": enhanced_stats(owned, base_stats),
            })
        listing.sort(key=lambda item: (-order.get(Rarity(item["rarity"]), 0), item["name"]))
        return listing

    def history(self, user_id: str, limit: int = PULL_HISTORY_LIMIT) -> List[Dict[str, Any]]:
        rows = self.orchestrator.store.pull_history(user_id, limit)
        return [
            {
                "collectible_id": row.collectible_id,
                "rarity": row.rarity,
                "is_new": row.is_new,
                "duplicate_count": row.duplicate_count,
                "pity_applied": row.pity_applied,
                "pulled_at": row.pulled_at.isoformat(),
            }
            for row in rows
        ]

    def stats(self, user_id: str) -> Dict[str, Any]:
        """
        Pull statistics.

        Returns:
            {
                "total_pulls": 25,
                "rarity_breakdown": {"common": 14, "rare": 8, "epic": 2, "legendary": 1},
                "unique_collectibles": 9,
                "last_legendary": {"collectible_id": "socrates", "pulled_at": "..."},
                "pulls_since_rare": 2,
                "pity_threshold": 10
            }
        """
        rows = self.orchestrator.store.pull_history(user_id)
        record = self.orchestrator.record(user_id)

        breakdown = Counter(row.rarity for row in rows)
        last_legendary = next((row for row in rows if row.rarity == Rarity.LEGENDARY.value), None)

        return {
            "total_pulls": len(rows),
            "rarity_breakdown": {rarity.value: breakdown.get(rarity.value, 0) for rarity, _ in self.pool.weights},
            "unique_collectibles": len({row.collectible_id for row in rows}),
            "last_legendary": {
                "collectible_id": last_legendary.collectible_id,
                "pulled_at": last_legendary.pulled_at.isoformat(),
            } if last_legendary else None,
            "pulls_since_rare": record.pulls_since_rare,
            "pity_threshold": self.pool.pity_threshold,
            "gacha_tickets": record.gacha_tickets,
        }

    def pool_info(self) -> Dict[str, Any]:
        return {
            "rates": self.pool.rates(),
            "pity_threshold": self.pool.pity_threshold,
            "costs": {str(count): cost for count, cost in PULL_COSTS.items()},
            "collectibles": {
                rarity.value: [c.id for c in self.pool.slice(rarity)]
                for rarity, _ in self.pool.weights
            },
        }
