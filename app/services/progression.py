"""Progression orchestrator.

Turns activity events into one consolidated write per event. Every operation
follows the same cycle: read the record once, compute all changes on a
ProgressionDraft, write them with a version check. On a version conflict
the whole computation is redone from a fresh read, so no partial result is
ever persisted.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.constants import MAX_VERSION_RETRIES, SUMMARY_MILESTONE_COUNT
from app.services.achievements import AchievementEvaluation, AchievementEvaluator
from app.services.adaptive import DifficultyRecommendation, difficulty_multiplier, recommend
from app.services.catalog import ContentCatalog
from app.services.criteria import DEBATE, LESSON, LEVEL, QUIZ, STREAK
from app.services.draft import ProgressionDraft, RewardGrant
from app.services.leveling import get_level_progress, next_feature_unlock
from app.services.records import UserProgressionRecord
from app.services.store import RecordStore, StoreUnavailable, VersionConflict
from app.services.streaks import MilestoneStatus, compute_streak, milestone_status, streak_reward

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InvalidUpdate(ValueError):
    """A malformed update. Never queued or retried."""


class CustomData(BaseModel):
    """Event details from the learning-content subsystem."""
    model_config = ConfigDict(extra="allow")

    score: Optional[float] = Field(None, ge=0, le=100, description="Quiz score in percent")
    perfect_score: bool = False
    passed: Optional[bool] = Field(None, description="False records a failed quiz")
    debate_results: List[bool] = Field(default_factory=list, description="True for each debate won, in order")


class ProgressionUpdate(BaseModel):
    """Numeric deltas of one activity event."""
    experience_delta: int = Field(0, ge=0)
    lessons_completed: List[str] = Field(default_factory=list)
    quizzes_completed: int = Field(0, ge=0)
    time_spent: int = Field(0, ge=0, description="Seconds spent on the activity")
    custom_data: CustomData = Field(default_factory=CustomData)
    occurred_at: Optional[datetime] = None

    @field_validator("lessons_completed")
    @classmethod
    def validate_lessons(cls, v):
        """Strip lesson ids and reject blank ones."""
        cleaned = [lesson_id.strip() for lesson_id in v]
        if any(not lesson_id for lesson_id in cleaned):
            raise ValueError("lesson ids cannot be empty")
        return cleaned


def coerce_update(data: Any) -> ProgressionUpdate:
    """
    Validate raw update data.

    Raises:
        InvalidUpdate: If the data does not describe a valid update
    """
    if isinstance(data, ProgressionUpdate):
        return data
    try:
        return ProgressionUpdate.model_validate(data)
    except ValidationError as e:
        raise InvalidUpdate(str(e)) from e


@dataclass
class ProgressionResult:
    """What an update did, for the presentation layer."""
    new_level: Optional[int]
    leveled_up: bool = False
    levels_gained: int = 0
    experience: Optional[int] = None
    gacha_tickets: Optional[int] = None
    rewards: List[RewardGrant] = field(default_factory=list)
    achievements_unlocked: List[str] = field(default_factory=list)
    features_unlocked: List[str] = field(default_factory=list)
    deferred: bool = False

    @classmethod
    def from_draft(cls, draft: ProgressionDraft) -> "ProgressionResult":
        return cls(
            new_level=draft.level,
            leveled_up=draft.level > draft.old_level,
            levels_gained=draft.levels_gained,
            experience=draft.fields["experience"],
            gacha_tickets=draft.fields["gacha_tickets"],
            rewards=list(draft.rewards),
            achievements_unlocked=list(draft.unlocked_achievements),
            features_unlocked=list(draft.features),
        )


@dataclass
class StreakResult:
    new_streak: int
    changed: bool
    reward: Optional[RewardGrant] = None
    progression: Optional[ProgressionResult] = None


class ProgressionOrchestrator:
    """Façade over leveling, achievements, streaks and milestones."""

    def __init__(
        self,
        store: RecordStore,
        catalog: ContentCatalog,
        evaluator: Optional[AchievementEvaluator] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_retries: int = MAX_VERSION_RETRIES
    ):
        self.store = store
        self.catalog = catalog
        self.evaluator = evaluator or AchievementEvaluator(catalog)
        self.clock = clock
        self.max_retries = max_retries
        self._pending: Dict[str, List[ProgressionUpdate]] = {}
        self._pending_lock = threading.Lock()

    # Write path

    def run(self, user_id: str, build: Callable[[ProgressionDraft], T]) -> T:
        """
        Read, compute and write one event with optimistic locking.

        ``build`` mutates a fresh draft and may be called again after a
        version conflict, so it must derive everything from the draft.

        Raises:
            InvalidUpdate: If user_id is empty
            StoreUnavailable: On store failure or repeated conflicts
        """
        if not user_id:
            raise InvalidUpdate("user_id is required")

        for attempt in range(1, self.max_retries + 1):
            record = self.store.get_or_create(user_id)
            draft = ProgressionDraft(record, self.catalog, self.clock())
            outcome = build(draft)

            delta = draft.to_delta()
            if delta.is_empty():
                return outcome
            try:
                self.store.atomic_write(user_id, delta)
                return outcome
            except VersionConflict:
                logger.warning(
                    f"Version conflict on attempt {attempt}/{self.max_retries}, recomputing",
                    extra={"user_id": user_id}
                )

        raise StoreUnavailable(f"Record {user_id} kept changing; gave up after {self.max_retries} attempts")

    def apply_update(self, user_id: str, update: ProgressionUpdate, immediate: bool = True) -> ProgressionResult:
        """
        Apply an activity event.

        Order of processing, against one read and one write:
        1. add experience and recompute the level
        2. on level-up grant 2 tickets per level and unlock crossed features
        3. record lessons, quizzes, time and event details
        4. re-check achievements the update can affect, and milestones
        5. merge reward experience, settle the level again and write once

        Args:
            user_id: Record owner
            update: Validated update
            immediate: False buffers the update until flush_pending()

        Returns:
            ProgressionResult; ``deferred`` is True for buffered updates
        """
        update = coerce_update(update)
        if not user_id:
            raise InvalidUpdate("user_id is required")

        if not immediate:
            with self._pending_lock:
                self._pending.setdefault(user_id, []).append(update)
            logger.debug("Buffered deferred update", extra={"user_id": user_id})
            return ProgressionResult(new_level=None, deferred=True)

        result = self.run(user_id, lambda draft: self._apply(draft, update))
        if result.leveled_up:
            logger.info(
                f"Level up {result.new_level - result.levels_gained} -> {result.new_level}",
                extra={"user_id": user_id}
            )
        return result

    def _apply(self, draft: ProgressionDraft, update: ProgressionUpdate) -> ProgressionResult:
        draft.add_experience(update.experience_delta)
        draft.settle_level()

        if draft.add_lessons(update.lessons_completed):
            draft.triggers.add(LESSON)
        if update.quizzes_completed:
            draft.increment("quizzes_completed", update.quizzes_completed)
            draft.triggers.add(QUIZ)
        if update.time_spent:
            draft.increment("total_time_spent", update.time_spent)

        details = update.custom_data
        if details.score is not None:
            draft.quiz_scores.append(details.score)
            recent = draft.record.recent_scores + tuple(draft.quiz_scores)
            draft.fields["difficulty_multiplier"] = difficulty_multiplier(recent)
            draft.triggers.add(QUIZ)
        if details.perfect_score:
            draft.increment("perfect_scores")
            draft.triggers.add(QUIZ)
        if details.passed is False:
            draft.increment("failed_quizzes")
            draft.triggers.add(QUIZ)
        for won in details.debate_results:
            if won:
                draft.increment("debate_wins")
                draft.increment("debate_win_streak")
            else:
                draft.fields["debate_win_streak"] = 0
            draft.triggers.add(DEBATE)

        context = details.model_dump()
        context["time_spent"] = update.time_spent or None
        context["completed_at"] = update.occurred_at or draft.now
        self.evaluate_and_settle(draft, context)
        return ProgressionResult.from_draft(draft)

    def evaluate_and_settle(self, draft: ProgressionDraft, context: Optional[Dict[str, Any]] = None) -> None:
        """Merge achievement and milestone unlocks, then settle the level."""
        draft.evaluate_unlocks(self.evaluator, context)
        self._settle_reward_level(draft, context)

    def _settle_reward_level(self, draft: ProgressionDraft, context: Optional[Dict[str, Any]] = None) -> None:
        if draft.settle_level():
            # Reward experience raised the level again; level-based unlocks only
            draft.triggers = {LEVEL}
            draft.evaluate_unlocks(self.evaluator, context)
            draft.settle_level()

    def update_streak(self, user_id: str) -> StreakResult:
        """
        Register a daily check-in.

        Same-day check-ins write nothing, not even the timestamp.
        """
        def build(draft: ProgressionDraft) -> StreakResult:
            outcome = compute_streak(
                draft.fields["streak_days"], draft.fields["last_streak_update"], draft.now
            )
            if not outcome.changed:
                return StreakResult(new_streak=outcome.new_streak, changed=False)

            draft.fields["streak_days"] = outcome.new_streak
            draft.fields["last_streak_update"] = draft.now
            draft.triggers.add(STREAK)

            grant = None
            reward = streak_reward(outcome.new_streak)
            if reward is not None:
                grant = draft.grant(reward, "streak", str(outcome.new_streak))
            draft.settle_level()
            self.evaluate_and_settle(draft)
            return StreakResult(
                new_streak=outcome.new_streak,
                changed=True,
                reward=grant,
                progression=ProgressionResult.from_draft(draft),
            )

        return self.run(user_id, build)

    def check_achievement(
        self,
        user_id: str,
        achievement_id: str,
        context: Optional[Dict[str, Any]] = None
    ) -> AchievementEvaluation:
        """
        Evaluate one achievement and persist its unlock or progress.

        Re-checking a completed achievement returns ``already_unlocked`` and
        writes nothing.
        """
        def build(draft: ProgressionDraft) -> AchievementEvaluation:
            outcome = self.evaluator.evaluate(draft.record, achievement_id, context, now=draft.now)
            if outcome.progress is not None:
                draft.achievements[achievement_id] = outcome.progress
            if outcome.unlocked:
                draft.unlocked_achievements.append(achievement_id)
                draft.grant(outcome.reward, "achievement", achievement_id)
                self._settle_reward_level(draft, context)
            return outcome

        return self.run(user_id, build)

    # Deferred updates

    def pending_count(self, user_id: Optional[str] = None) -> int:
        with self._pending_lock:
            if user_id is not None:
                return len(self._pending.get(user_id, []))
            return sum(len(updates) for updates in self._pending.values())

    def flush_pending(
        self,
        user_id: Optional[str] = None,
        spill: Optional[Callable[[str, List[ProgressionUpdate]], None]] = None
    ) -> Dict[str, List[ProgressionResult]]:
        """
        Apply buffered updates in the order they were buffered.

        When the store is unavailable, a user's remaining updates are handed
        to ``spill`` (which persists them for replay). Without a spill target,
        or if spilling fails, they are put back in the buffer ahead of
        anything buffered meanwhile.

        Returns:
            user_id -> results of the updates applied
        """
        with self._pending_lock:
            if user_id is not None:
                taken = {user_id: self._pending.pop(user_id, [])}
            else:
                taken, self._pending = self._pending, {}

        results: Dict[str, List[ProgressionResult]] = {}
        for uid, updates in taken.items():
            for index, update in enumerate(updates):
                try:
                    result = self.apply_update(uid, update)
                except StoreUnavailable as e:
                    logger.warning(f"Deferred flush interrupted: {e}", extra={"user_id": uid})
                    self._hand_off(uid, updates[index:], spill)
                    break
                results.setdefault(uid, []).append(result)
        return results

    def _hand_off(
        self,
        user_id: str,
        remaining: List[ProgressionUpdate],
        spill: Optional[Callable[[str, List[ProgressionUpdate]], None]]
    ) -> None:
        if spill is not None:
            try:
                spill(user_id, remaining)
                return
            except Exception as e:
                logger.error(f"Could not persist deferred updates, keeping them buffered: {e}",
                             exc_info=True, extra={"user_id": user_id})
        with self._pending_lock:
            self._pending[user_id] = remaining + self._pending.get(user_id, [])

    # Read side

    def record(self, user_id: str) -> UserProgressionRecord:
        return self.store.get_or_create(user_id)

    def milestones(self, user_id: str) -> List[MilestoneStatus]:
        record = self.store.get_or_create(user_id)
        return [milestone_status(record, m) for m in self.catalog.milestones]

    def achievements(self, user_id: str) -> List[Dict[str, Any]]:
        """Every catalog achievement with the user's progress on it."""
        record = self.store.get_or_create(user_id)
        listing = []
        for definition in self.catalog.achievements:
            progress = record.achievements.get(definition.id)
            listing.append({
                "id": definition.id,
                "name": definition.name,
                "description": definition.description,
                "category": definition.category,
                "current_value": progress.current_value if progress else 0,
                "target_value": progress.target_value if progress else None,
                "completed": bool(progress and progress.completed),
                "unlocked_at": progress.unlocked_at.isoformat() if progress and progress.unlocked_at else None,
                "reward": {
                    "experience": definition.reward.experience,
                    "gacha_tickets": definition.reward.gacha_tickets,
                },
            })
        return listing

    def difficulty(self, user_id: str) -> DifficultyRecommendation:
        record = self.store.get_or_create(user_id)
        return recommend(record.recent_scores)

    def summary(self, user_id: str) -> Dict[str, Any]:
        """
        Progression overview for a profile screen.

        Returns:
            Level progress, totals, streak, unlocked features and the closest
            incomplete milestones
        """
        record = self.store.get_or_create(user_id)
        level_progress = get_level_progress(record.experience)

        statuses = [milestone_status(record, m) for m in self.catalog.milestones]
        upcoming = sorted(
            (s for s in statuses if not s.completed),
            key=lambda s: s.progress,
            reverse=True,
        )[:SUMMARY_MILESTONE_COUNT]

        return {
            "user_id": record.user_id,
            "level": record.level,
            "experience": record.experience,
            "experience_to_next_level": level_progress["experience_to_next_level"],
            "progress_percentage": level_progress["progress_percentage"],
            "gacha_tickets": record.gacha_tickets,
            "streak_days": record.streak_days,
            "lessons_completed": record.lessons_completed,
            "quizzes_completed": record.quizzes_completed,
            "perfect_scores": record.perfect_scores,
            "total_time_spent": record.total_time_spent,
            "collection_size": len(record.collection),
            "achievements_completed": sum(1 for a in record.achievements.values() if a.completed),
            "unlocked_features": sorted(record.unlocked_features),
            "next_feature": next_feature_unlock(record.level),
            "difficulty_multiplier": record.difficulty_multiplier,
            "upcoming_milestones": [
                {
                    "id": s.milestone_id,
                    "name": s.name,
                    "current_value": s.current_value,
                    "required_value": s.required_value,
                    "progress": round(s.progress, 3),
                }
                for s in upcoming
            ],
        }
