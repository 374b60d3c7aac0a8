"""Achievement evaluation.

The evaluator matches one achievement's criterion against a progression
record and an optional event context. It never writes: a met or advanced
achievement comes back as an AchievementProgress entry plus the reward to
merge into the caller's consolidated write.

Context keys understood by the checkers:
    time_spent: Seconds the triggering activity took
    completed_at: datetime the triggering activity finished (UTC)
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from app.services.catalog import ContentCatalog, Reward
from app.services.criteria import (
    CollectionSize,
    DailyStreak,
    DebateWins,
    DebateWinStreak,
    LearningFromFailure,
    LegendaryCollection,
    LessonCount,
    PerfectScoreCount,
    PlayerLevel,
    TimeLimitCompletion,
    TimeOfDay,
    UnsupportedCriterion,
)
from app.services.rarity import Rarity
from app.services.records import AchievementProgress, UserProgressionRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CriterionCheck:
    met: bool
    current: float
    target: float


@dataclass(frozen=True)
class AchievementEvaluation:
    """Outcome of evaluating one achievement.

    ``progress`` is set when the stored entry should change (unlock or
    advanced progress); ``reward`` only when the achievement unlocked.
    """
    achievement_id: str
    unlocked: bool = False
    already_unlocked: bool = False
    progress: Optional[AchievementProgress] = None
    reward: Optional[Reward] = None


def _count_check(current: float, target: float) -> CriterionCheck:
    return CriterionCheck(met=current >= target, current=current, target=target)


def _check_perfect_scores(c: PerfectScoreCount, record, context) -> CriterionCheck:
    return _count_check(record.perfect_scores, c.min_count)


def _check_time_limit(c: TimeLimitCompletion, record, context) -> CriterionCheck:
    time_spent = context.get("time_spent")
    met = time_spent is not None and 0 <= time_spent <= c.max_seconds
    return CriterionCheck(met=met, current=1 if met else 0, target=1)


def _check_debate_wins(c: DebateWins, record, context) -> CriterionCheck:
    return _count_check(record.debate_wins, c.min_wins)


def _check_debate_streak(c: DebateWinStreak, record, context) -> CriterionCheck:
    return _count_check(record.debate_win_streak, c.min_streak)


def _check_collection_size(c: CollectionSize, record, context) -> CriterionCheck:
    return _count_check(len(record.collection), c.min_count)


def _check_legendary_collection(c: LegendaryCollection, record, context) -> CriterionCheck:
    legendary = sum(1 for owned in record.collection.values() if owned.rarity == Rarity.LEGENDARY)
    return _count_check(legendary, c.min_count)


def _check_daily_streak(c: DailyStreak, record, context) -> CriterionCheck:
    return _count_check(record.streak_days, c.min_days)


def _check_player_level(c: PlayerLevel, record, context) -> CriterionCheck:
    return _count_check(record.level, c.min_level)


def _check_lesson_count(c: LessonCount, record, context) -> CriterionCheck:
    return _count_check(record.lessons_completed, c.min_count)


def _check_failures(c: LearningFromFailure, record, context) -> CriterionCheck:
    return _count_check(record.failed_quizzes, c.min_failures)


def _check_time_of_day(c: TimeOfDay, record, context) -> CriterionCheck:
    completed_at = context.get("completed_at")
    met = False
    if isinstance(completed_at, datetime):
        if completed_at.tzinfo is not None:
            completed_at = completed_at.astimezone(timezone.utc)
        hour = completed_at.hour
        if c.start_hour <= c.end_hour:
            met = c.start_hour <= hour < c.end_hour
        else:
            # Window wraps midnight, e.g. 22 -> 3
            met = hour >= c.start_hour or hour < c.end_hour
    return CriterionCheck(met=met, current=1 if met else 0, target=1)


def _check_unsupported(c: UnsupportedCriterion, record, context) -> CriterionCheck:
    logger.warning(f"Unknown achievement criteria type: {c.type_name!r}")
    return CriterionCheck(met=False, current=0, target=1)


CHECKERS: Dict[type, Callable[[Any, UserProgressionRecord, Mapping[str, Any]], CriterionCheck]] = {
    PerfectScoreCount: _check_perfect_scores,
    TimeLimitCompletion: _check_time_limit,
    DebateWins: _check_debate_wins,
    DebateWinStreak: _check_debate_streak,
    CollectionSize: _check_collection_size,
    LegendaryCollection: _check_legendary_collection,
    DailyStreak: _check_daily_streak,
    PlayerLevel: _check_player_level,
    LessonCount: _check_lesson_count,
    LearningFromFailure: _check_failures,
    TimeOfDay: _check_time_of_day,
    UnsupportedCriterion: _check_unsupported,
}
"""Criterion kind -> checker. Covers every member of the Criterion union."""


class AchievementEvaluator:
    """Evaluates achievements from an injected, read-only catalog."""

    def __init__(self, catalog: ContentCatalog):
        self.catalog = catalog

    def evaluate(
        self,
        record: UserProgressionRecord,
        achievement_id: str,
        context: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> AchievementEvaluation:
        """
        Evaluate one achievement against a record.

        Completed achievements short-circuit with ``already_unlocked`` and no
        progress or reward, so re-checking them is always safe. Unknown ids
        and unknown criteria are logged and evaluate as not met.

        Args:
            record: Progression snapshot to evaluate against
            achievement_id: Catalog id of the achievement
            context: Optional event details (see module docstring)
            now: Unlock timestamp, defaults to utcnow

        Returns:
            AchievementEvaluation describing what, if anything, to write
        """
        existing = record.achievements.get(achievement_id)
        if existing is not None and existing.completed:
            return AchievementEvaluation(achievement_id, already_unlocked=True)

        definition = self.catalog.achievement(achievement_id)
        if definition is None:
            logger.warning(
                f"Unknown achievement id: {achievement_id}",
                extra={"achievement_id": achievement_id, "user_id": record.user_id}
            )
            return AchievementEvaluation(achievement_id)

        checker = CHECKERS[type(definition.criterion)]
        check = checker(definition.criterion, record, context or {})

        if check.met:
            progress = AchievementProgress(
                current_value=max(check.current, check.target),
                target_value=check.target,
                completed=True,
                unlocked_at=now or datetime.utcnow(),
            )
            logger.info(
                f"Achievement unlocked: {achievement_id}",
                extra={"achievement_id": achievement_id, "user_id": record.user_id}
            )
            return AchievementEvaluation(
                achievement_id, unlocked=True, progress=progress, reward=definition.reward
            )

        # Record advanced progress only, so idle re-checks produce no writes
        current = min(check.current, check.target)
        previous = existing.current_value if existing is not None else 0
        if current > previous:
            progress = AchievementProgress(current_value=current, target_value=check.target)
            return AchievementEvaluation(achievement_id, progress=progress)

        return AchievementEvaluation(achievement_id)
