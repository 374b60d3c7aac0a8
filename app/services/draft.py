"""Working copy of a progression record while one event is processed.

A ProgressionDraft accumulates every change an activity event causes:
experience and the level-ups it brings, counters, collectible acquisitions,
achievement and milestone unlocks. Nothing is persisted until ``to_delta()``
is handed to the record store as one consolidated write.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from app.constants import DIFFICULTY_WINDOW
from app.services.achievements import AchievementEvaluator
from app.services.catalog import Collectible, ContentCatalog, Reward
from app.services.collection import new_collectible, register_duplicate
from app.services.criteria import COLLECTION, LEVEL
from app.services.leveling import features_unlocked_between, level_for_experience, tickets_for_levels
from app.services.records import (
    SCALAR_FIELDS,
    AchievementProgress,
    OwnedCollectible,
    ProgressionDelta,
    PullRecord,
    UserProgressionRecord,
)
from app.services.streaks import newly_completed_milestones


@dataclass(frozen=True)
class RewardGrant:
    """One reward shown to the player, with where it came from."""
    source: str  # level_up, feature_unlock, achievement, milestone, streak
    source_id: str
    experience: int = 0
    gacha_tickets: int = 0
    collectible_id: Optional[str] = None
    feature: Optional[str] = None


class ProgressionDraft:
    """Accumulates the changes of one event against a record snapshot."""

    def __init__(self, record: UserProgressionRecord, catalog: ContentCatalog, now: datetime):
        self.record = record
        self.catalog = catalog
        self.now = now
        self.fields: Dict[str, Any] = {name: getattr(record, name) for name in SCALAR_FIELDS}

        self.lessons: List[str] = []
        self.achievements: Dict[str, AchievementProgress] = {}
        self.milestones: List[str] = []
        self.collection: Dict[str, OwnedCollectible] = {}
        self.features: List[str] = []
        self.pulls: List[PullRecord] = []
        self.quiz_scores: List[float] = []
        self.level_ups: List[Tuple[int, int, int]] = []
        self.rewards: List[RewardGrant] = []
        self.unlocked_achievements: List[str] = []
        self.triggers: Set[str] = set()

    # Level

    @property
    def old_level(self) -> int:
        return self.record.level

    @property
    def level(self) -> int:
        return self.fields["level"]

    @property
    def levels_gained(self) -> int:
        return self.level - self.old_level

    def add_experience(self, amount: int) -> None:
        if amount < 0:
            raise ValueError("Experience can only increase")
        self.fields["experience"] += amount

    def settle_level(self) -> int:
        """
        Bring the level in line with experience and grant level-up rewards.

        Each gained level grants tickets, and every feature threshold crossed
        is unlocked once. The level never decreases.

        Returns:
            Levels gained by this call
        """
        current = self.fields["level"]
        new_level = level_for_experience(self.fields["experience"])
        if new_level <= current:
            return 0

        gained = new_level - current
        tickets = tickets_for_levels(gained)
        self.fields["gacha_tickets"] += tickets
        self.fields["level"] = new_level
        self.level_ups.append((current, new_level, tickets))
        self.rewards.append(RewardGrant(source="level_up", source_id=str(new_level), gacha_tickets=tickets))
        self.triggers.add(LEVEL)

        for feature in features_unlocked_between(current, new_level):
            if feature in self.record.unlocked_features or feature in self.features:
                continue
            self.features.append(feature)
            self.rewards.append(RewardGrant(source="feature_unlock", source_id=feature, feature=feature))

        return gained

    # Counters and collection

    def increment(self, name: str, amount: int = 1) -> None:
        self.fields[name] += amount

    def add_lessons(self, lesson_ids) -> List[str]:
        """Record lessons not completed before. Returns the newly added ids."""
        added = []
        for lesson_id in lesson_ids:
            if lesson_id in self.record.completed_lessons or lesson_id in self.lessons:
                continue
            self.lessons.append(lesson_id)
            added.append(lesson_id)
        return added

    def owned(self, collectible_id: str) -> Optional[OwnedCollectible]:
        if collectible_id in self.collection:
            return self.collection[collectible_id]
        return self.record.collection.get(collectible_id)

    def acquire(self, collectible: Collectible) -> OwnedCollectible:
        """Add a collectible, or register a duplicate if already owned."""
        current = self.owned(collectible.id)
        if current is None:
            updated = new_collectible(collectible.id, collectible.rarity, self.now)
        else:
            updated = register_duplicate(current)
        self.collection[collectible.id] = updated
        self.triggers.add(COLLECTION)
        return updated

    def grant(self, reward: Reward, source: str, source_id: str) -> RewardGrant:
        """Merge a reward into the draft. Experience is settled later."""
        self.fields["experience"] += reward.experience
        self.fields["gacha_tickets"] += reward.gacha_tickets
        if reward.collectible_id:
            collectible = self.catalog.collectible(reward.collectible_id)
            if collectible is not None:
                self.acquire(collectible)

        grant = RewardGrant(
            source=source,
            source_id=source_id,
            experience=reward.experience,
            gacha_tickets=reward.gacha_tickets,
            collectible_id=reward.collectible_id,
        )
        self.rewards.append(grant)
        return grant

    # Unlocks

    def snapshot(self) -> UserProgressionRecord:
        """The record as it would read after this draft is written."""
        achievements = dict(self.record.achievements)
        achievements.update(self.achievements)
        collection = dict(self.record.collection)
        collection.update(self.collection)
        recent = (self.record.recent_scores + tuple(self.quiz_scores))[-DIFFICULTY_WINDOW:]

        return replace(
            self.record,
            completed_lessons=self.record.completed_lessons | frozenset(self.lessons),
            achievements=achievements,
            milestones=self.record.milestones | frozenset(self.milestones),
            collection=collection,
            unlocked_features=self.record.unlocked_features | frozenset(self.features),
            recent_scores=recent,
            **self.fields,
        )

    def evaluate_unlocks(
        self,
        evaluator: AchievementEvaluator,
        context: Optional[Mapping[str, Any]] = None
    ) -> List[str]:
        """
        Re-check achievements that the draft's triggers could affect, then
        milestones, merging each first-time unlock and its reward.

        Returns:
            Achievement ids unlocked by this call
        """
        snapshot = self.snapshot()
        unlocked = []

        for achievement_id in self.catalog.candidates_for(self.triggers):
            outcome = evaluator.evaluate(snapshot, achievement_id, context, now=self.now)
            if outcome.progress is not None:
                self.achievements[achievement_id] = outcome.progress
            if outcome.unlocked:
                unlocked.append(achievement_id)
                self.grant(outcome.reward, "achievement", achievement_id)

        for milestone in newly_completed_milestones(snapshot, list(self.catalog.milestones)):
            if milestone.id in self.milestones:
                continue
            self.milestones.append(milestone.id)
            self.grant(milestone.reward, "milestone", milestone.id)

        self.unlocked_achievements.extend(unlocked)
        return unlocked

    def to_delta(self) -> ProgressionDelta:
        """Build the consolidated write for everything changed so far."""
        changed = {
            name: value
            for name, value in self.fields.items()
            if value != getattr(self.record, name)
        }
        return ProgressionDelta(
            expected_version=self.record.version,
            user_fields=changed,
            lessons=list(self.lessons),
            achievements=dict(self.achievements),
            milestones=list(self.milestones),
            collection=dict(self.collection),
            features=list(self.features),
            pulls=list(self.pulls),
            quiz_scores=list(self.quiz_scores),
            level_ups=list(self.level_ups),
            occurred_at=self.now,
        )
